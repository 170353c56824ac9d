"""Metrics sinks: append-only destinations for run records.

A sink receives every AttemptRecord and RoundResult exactly once, in
round order. The orchestrator serializes calls, so sinks need not be
thread-safe, but ``record`` must not block indefinitely and must not
drop records silently.
"""

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Union
import csv
import logging
import os
import threading

from fedledger.records import AttemptRecord, RoundResult


MetricsRecord = Union[AttemptRecord, RoundResult]


class MetricsSink(ABC):
    """Abstract base class for metrics sinks"""

    @abstractmethod
    def record(self, record: MetricsRecord) -> None:
        """Append one record"""
        pass

    def close(self) -> None:
        """Flush and release resources"""
        pass


class CompositeSink(MetricsSink):
    """Forwards every record to several sinks, in order"""

    def __init__(self, sinks: Iterable[MetricsSink]):
        self.sinks: List[MetricsSink] = list(sinks)

    def record(self, record: MetricsRecord) -> None:
        for sink in self.sinks:
            sink.record(record)

    def close(self) -> None:
        for sink in self.sinks:
            sink.close()


class CsvMetricsSink(MetricsSink):
    """Writes records to CSV files in an output directory.

    Files:
        submission_log.csv: one row per submission attempt
        server_reads.csv: one row per reconciliation entry
        rounds.csv: one summary row per round
    """

    SUBMISSION_FIELDS = [
        'round', 'client_index', 'address', 'value', 'attempt', 'outcome',
        'task_state', 'terminal', 'sent', 'gas_used', 'cost_estimate', 'latency',
        'duration', 'backoff_before', 'receipt_id', 'reason',
        'started_at', 'finished_at',
    ]
    READ_FIELDS = [
        'round', 'address', 'client_index', 'status', 'task_state',
        'submitted_value', 'recorded_value', 'read_latency',
    ]
    ROUND_FIELDS = [
        'round', 'clients', 'committed', 'skipped', 'already_recorded',
        'failed', 'fatal_failures', 'retries_exhausted', 'cancelled_tasks',
        'inconsistencies', 'degraded', 'read_error', 'read_latency',
        'total_gas_used', 'total_cost', 'duration', 'run_cancelled',
    ]

    def __init__(self, output_dir: str, logger: Optional[logging.Logger] = None):
        """Initialize CSV sink.

        Args:
            output_dir: Directory for the CSV files (created if missing)
            logger: Logger instance
        """
        self.output_dir = output_dir
        self.logger = logger or logging.getLogger("fedledger.metrics.csv")
        os.makedirs(output_dir, exist_ok=True)

        self.submission_path = os.path.join(output_dir, "submission_log.csv")
        self.read_path = os.path.join(output_dir, "server_reads.csv")
        self.round_path = os.path.join(output_dir, "rounds.csv")

        self._lock = threading.Lock()
        self._files = []
        self._submissions = self._open(self.submission_path, self.SUBMISSION_FIELDS)
        self._reads = self._open(self.read_path, self.READ_FIELDS)
        self._rounds = self._open(self.round_path, self.ROUND_FIELDS)

    def _open(self, path: str, fieldnames: List[str]) -> csv.DictWriter:
        exists = os.path.exists(path) and os.path.getsize(path) > 0
        f = open(path, 'a', newline='')
        self._files.append(f)
        writer = csv.DictWriter(f, fieldnames=fieldnames, extrasaction='ignore')
        if not exists:
            writer.writeheader()
        return writer

    def record(self, record: MetricsRecord) -> None:
        with self._lock:
            if isinstance(record, AttemptRecord):
                self._submissions.writerow(record.to_dict())
            elif isinstance(record, RoundResult):
                for entry in record.reconciliation:
                    row = entry.to_dict()
                    row['round'] = record.round_num
                    row['read_latency'] = record.read_latency
                    self._reads.writerow(row)
                self._rounds.writerow(record.to_dict())
            else:
                raise TypeError(f"Unsupported metrics record: {type(record).__name__}")

            for f in self._files:
                f.flush()

    def close(self) -> None:
        with self._lock:
            for f in self._files:
                f.close()
            self._files = []
        self.logger.info(f"Metrics written to {self.output_dir}")
