"""Records produced by a submission run.

AttemptRecord and RoundResult are what a MetricsSink receives. Both are
immutable once emitted.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import time

from fedledger.clients.identity import ClientIdentity
from fedledger.ledger.outcome import Committed, TransactionOutcome


# Round number of a client registration pass; submission rounds start at 1
REGISTRATION_ROUND = 0


class TaskState(Enum):
    """Terminal state of one client's submission in a round"""
    COMMITTED = "committed"
    SKIPPED = "skipped"  # no value available
    ALREADY_RECORDED = "already_recorded"  # pre-check found an existing value
    FATAL_FAILURE = "fatal_failure"
    RETRIES_EXHAUSTED = "retries_exhausted"
    CANCELLED = "cancelled"


FAILED_STATES = frozenset({
    TaskState.FATAL_FAILURE,
    TaskState.RETRIES_EXHAUSTED,
    TaskState.CANCELLED,
})


class ReconciliationStatus(Enum):
    """How a client's submission compares with the ledger read-back"""
    CONFIRMED = "confirmed"
    VALUE_MISMATCH = "value_mismatch"
    MISSING = "missing"  # committed, absent on read
    EXPECTED_ABSENT = "expected_absent"
    RECORDED_DESPITE_FAILURE = "recorded_despite_failure"
    UNEXPECTED = "unexpected"  # on read, no submission this round
    DUPLICATE = "duplicate"


INCONSISTENT_STATUSES = frozenset({
    ReconciliationStatus.VALUE_MISMATCH,
    ReconciliationStatus.MISSING,
    ReconciliationStatus.RECORDED_DESPITE_FAILURE,
    ReconciliationStatus.UNEXPECTED,
    ReconciliationStatus.DUPLICATE,
})


@dataclass(frozen=True)
class SubmissionTask:
    """One client's submission for one round"""
    round_num: int
    client_index: int
    identity: ClientIdentity
    value: Any


@dataclass(frozen=True)
class AttemptRecord:
    """A single try at committing a client's value.

    Attributes:
        round_num: Round number
        client_index: Index of the client
        address: Client address
        value: Submitted value
        attempt_number: 1-based attempt number within the task
        started_at: Wall-clock start (epoch seconds)
        finished_at: Wall-clock end (epoch seconds)
        backoff_before: Seconds waited before this attempt
        outcome: Outcome observed for this attempt
        terminal: True for the last attempt of the task
        task_state: Task's terminal state (terminal attempts only)
        sent: False if cancellation stopped the attempt before it reached
            the ledger adapter
    """
    round_num: int
    client_index: int
    address: str
    value: Any
    attempt_number: int
    started_at: float
    finished_at: float
    backoff_before: float
    outcome: TransactionOutcome
    terminal: bool = False
    task_state: Optional[TaskState] = None
    sent: bool = True

    @property
    def duration(self) -> float:
        return self.finished_at - self.started_at

    def to_dict(self) -> Dict[str, Any]:
        """Flatten into a row for tabular sinks"""
        outcome = self.outcome
        committed = isinstance(outcome, Committed)
        return {
            'round': self.round_num,
            'client_index': self.client_index,
            'address': self.address,
            'value': self.value,
            'attempt': self.attempt_number,
            'started_at': self.started_at,
            'finished_at': self.finished_at,
            'duration': self.duration,
            'backoff_before': self.backoff_before,
            'outcome': outcome.kind.value,
            'gas_used': outcome.gas_used if committed else None,
            'cost_estimate': float(outcome.cost_estimate) if committed else None,
            'latency': outcome.latency if committed else None,
            'receipt_id': outcome.receipt_id if committed else None,
            'reason': None if committed else outcome.reason,
            'terminal': self.terminal,
            'task_state': self.task_state.value if self.task_state else None,
            'sent': self.sent,
        }


@dataclass
class TaskResult:
    """Result of one submission task, assembled while the task runs"""
    task: SubmissionTask
    state: Optional[TaskState] = None
    attempts: List[AttemptRecord] = field(default_factory=list)

    @property
    def final_outcome(self) -> Optional[TransactionOutcome]:
        return self.attempts[-1].outcome if self.attempts else None

    @property
    def committed(self) -> Optional[Committed]:
        outcome = self.final_outcome
        if self.state == TaskState.COMMITTED and isinstance(outcome, Committed):
            return outcome
        return None


@dataclass(frozen=True)
class ReconciliationEntry:
    """One row of a round's submitted-vs-recorded pairing"""
    address: str
    status: ReconciliationStatus
    client_index: Optional[int] = None
    task_state: Optional[TaskState] = None
    submitted_value: Any = None
    recorded_value: Any = None

    @property
    def inconsistent(self) -> bool:
        return self.status in INCONSISTENT_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            'address': self.address,
            'status': self.status.value,
            'client_index': self.client_index,
            'task_state': self.task_state.value if self.task_state else None,
            'submitted_value': self.submitted_value,
            'recorded_value': None if self.recorded_value is None else str(self.recorded_value),
        }


@dataclass(frozen=True)
class RoundResult:
    """Aggregate over all of a round's clients, produced once per round.

    A degraded round (read failure) has ``read_error`` set and no
    reconciliation entries. Partial failures show up in the counts.
    """
    round_num: int
    task_states: Dict[str, TaskState]
    reconciliation: Tuple[ReconciliationEntry, ...] = ()
    read_error: Optional[str] = None
    read_latency: Optional[float] = None
    total_gas_used: int = 0
    total_cost: Decimal = Decimal(0)
    phase_durations: Dict[str, float] = field(default_factory=dict)
    cancelled: bool = False
    started_at: float = 0.0
    finished_at: float = field(default_factory=time.time)

    def count(self, state: TaskState) -> int:
        return sum(1 for s in self.task_states.values() if s == state)

    @property
    def committed(self) -> int:
        return self.count(TaskState.COMMITTED)

    @property
    def skipped(self) -> int:
        return self.count(TaskState.SKIPPED)

    @property
    def already_recorded(self) -> int:
        return self.count(TaskState.ALREADY_RECORDED)

    @property
    def failed(self) -> int:
        return sum(1 for s in self.task_states.values() if s in FAILED_STATES)

    @property
    def degraded(self) -> bool:
        return self.read_error is not None

    @property
    def inconsistencies(self) -> List[ReconciliationEntry]:
        return [e for e in self.reconciliation if e.inconsistent]

    @property
    def healthy(self) -> bool:
        return not self.degraded and self.failed == 0 and not self.inconsistencies

    @property
    def duration(self) -> float:
        return self.finished_at - self.started_at

    def entries_with(self, status: ReconciliationStatus) -> List[ReconciliationEntry]:
        return [e for e in self.reconciliation if e.status == status]

    def to_dict(self) -> Dict[str, Any]:
        """Summary row for tabular sinks"""
        return {
            'round': self.round_num,
            'clients': len(self.task_states),
            'committed': self.committed,
            'skipped': self.skipped,
            'already_recorded': self.already_recorded,
            'failed': self.failed,
            'fatal_failures': self.count(TaskState.FATAL_FAILURE),
            'retries_exhausted': self.count(TaskState.RETRIES_EXHAUSTED),
            'cancelled_tasks': self.count(TaskState.CANCELLED),
            'inconsistencies': len(self.inconsistencies),
            'degraded': self.degraded,
            'read_error': self.read_error,
            'read_latency': self.read_latency,
            'total_gas_used': self.total_gas_used,
            'total_cost': float(self.total_cost),
            'duration': self.duration,
            'run_cancelled': self.cancelled,
        }
