"""Metrics sinks and collection for submission runs."""

from fedledger.metrics.sink import MetricsSink, MetricsRecord, CompositeSink, CsvMetricsSink
from fedledger.metrics.collector import MetricsCollector

__all__ = [
    'MetricsSink',
    'MetricsRecord',
    'CompositeSink',
    'CsvMetricsSink',
    'MetricsCollector'
]
