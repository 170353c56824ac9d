"""In-memory metrics collection and reporting for submission runs"""

from decimal import Decimal
from typing import Dict, List, Optional
import threading

import numpy as np
import pandas as pd

from fedledger.ledger.outcome import Committed
from fedledger.metrics.sink import MetricsRecord, MetricsSink
from fedledger.records import AttemptRecord, RoundResult


class MetricsCollector(MetricsSink):
    """Collects run records and summarizes them"""

    def __init__(self):
        """Initialize metrics collector"""
        self.attempts: List[AttemptRecord] = []
        self.rounds: List[RoundResult] = []
        self.sequence: List[MetricsRecord] = []
        self._lock = threading.Lock()

    def record(self, record: MetricsRecord) -> None:
        with self._lock:
            if isinstance(record, AttemptRecord):
                self.attempts.append(record)
            elif isinstance(record, RoundResult):
                self.rounds.append(record)
            else:
                raise TypeError(f"Unsupported metrics record: {type(record).__name__}")
            self.sequence.append(record)

    def attempts_for(self, address: str, round_num: Optional[int] = None) -> List[AttemptRecord]:
        """Attempts of one client, optionally within one round"""
        return [
            a for a in self.attempts
            if a.address == address and (round_num is None or a.round_num == round_num)
        ]

    def terminal_attempts(self, round_num: Optional[int] = None) -> List[AttemptRecord]:
        return [
            a for a in self.attempts
            if a.terminal and (round_num is None or a.round_num == round_num)
        ]

    def round_result(self, round_num: int) -> Optional[RoundResult]:
        return next((r for r in self.rounds if r.round_num == round_num), None)

    def get_attempts_dataframe(self) -> pd.DataFrame:
        """Get attempt records as pandas DataFrame"""
        return pd.DataFrame([a.to_dict() for a in self.attempts])

    def get_rounds_dataframe(self) -> pd.DataFrame:
        """Get round summaries as pandas DataFrame"""
        return pd.DataFrame([r.to_dict() for r in self.rounds])

    def get_reconciliation_dataframe(self) -> pd.DataFrame:
        """Get every reconciliation entry as pandas DataFrame"""
        rows = []
        for result in self.rounds:
            for entry in result.reconciliation:
                rows.append({'round': result.round_num, **entry.to_dict()})
        return pd.DataFrame(rows)

    def get_summary(self) -> Dict:
        """Get summary of all metrics"""
        committed = [
            a.outcome for a in self.attempts
            if a.terminal and isinstance(a.outcome, Committed)
        ]
        latencies = np.array([c.latency for c in committed], dtype=float)
        gas = np.array([c.gas_used for c in committed], dtype=float)
        total_cost = sum((c.cost_estimate for c in committed), Decimal(0))
        tasks = len(self.terminal_attempts())
        sent = [a for a in self.attempts if a.sent]
        sent_tasks = len({(a.round_num, a.address) for a in sent})

        return {
            'total_rounds': len(self.rounds),
            'total_attempts': len(sent),
            'unsent_attempts': len(self.attempts) - len(sent),
            'total_tasks': tasks,
            'committed': len(committed),
            'failed': sum(r.failed for r in self.rounds),
            'skipped': sum(r.skipped for r in self.rounds),
            'retries': len(sent) - sent_tasks,
            'degraded_rounds': sum(1 for r in self.rounds if r.degraded),
            'inconsistencies': sum(len(r.inconsistencies) for r in self.rounds),
            'avg_latency': float(np.mean(latencies)) if latencies.size else 0.0,
            'p95_latency': float(np.percentile(latencies, 95)) if latencies.size else 0.0,
            'avg_gas_used': float(np.mean(gas)) if gas.size else 0.0,
            'total_gas_used': int(gas.sum()),
            'total_cost': float(total_cost),
        }

    def export_csv(self, filepath: str, table: str = 'rounds'):
        """Export one of the tables ('rounds', 'attempts', 'reconciliation') to CSV"""
        frames = {
            'rounds': self.get_rounds_dataframe,
            'attempts': self.get_attempts_dataframe,
            'reconciliation': self.get_reconciliation_dataframe,
        }
        if table not in frames:
            raise ValueError(f"Unknown table {table!r}")
        frames[table]().to_csv(filepath, index=False)

    def reset(self):
        """Reset all metrics"""
        with self._lock:
            self.attempts = []
            self.rounds = []
            self.sequence = []
