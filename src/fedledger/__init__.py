"""fedledger: round submission orchestration for ledger-backed federated learning.

Many client identities submit a per-round model-quality weight to an
append-only ledger; a coordinator reads each round back to reconcile
what was recorded. This package drives those writes to completion,
round after round, with bounded retries and per-attempt metrics.

Main modules:
- orchestration: SubmissionOrchestrator, RetryPolicy, reconciliation
- ledger: LedgerClient interface, outcome variants, simulated ledger
- clients: identities and value sources
- metrics: metrics sinks and collection
- config: configuration loading and validated settings
- logging: round-aware run logging
"""

from fedledger.errors import (
    FedLedgerError,
    ConfigurationError,
    ReconciliationError,
    CancellationRequested
)
from fedledger.records import (
    REGISTRATION_ROUND,
    TaskState,
    ReconciliationStatus,
    SubmissionTask,
    AttemptRecord,
    ReconciliationEntry,
    RoundResult
)
from fedledger.config import OrchestratorConfig, PrecheckPolicy
from fedledger.orchestration import (
    SubmissionOrchestrator,
    RetryPolicy,
    register_clients,
    run_rounds
)

__version__ = "0.1.0"

__all__ = [
    'FedLedgerError',
    'ConfigurationError',
    'ReconciliationError',
    'CancellationRequested',
    'REGISTRATION_ROUND',
    'TaskState',
    'ReconciliationStatus',
    'SubmissionTask',
    'AttemptRecord',
    'ReconciliationEntry',
    'RoundResult',
    'OrchestratorConfig',
    'PrecheckPolicy',
    'SubmissionOrchestrator',
    'RetryPolicy',
    'register_clients',
    'run_rounds'
]
