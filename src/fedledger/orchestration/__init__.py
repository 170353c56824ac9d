"""Orchestration package for round submission runs.

Provides:
- SubmissionOrchestrator for driving rounds of ledger writes and the
  client registration pass
- RetryPolicy for exponential backoff
- RoundManager for round sequencing and phase tracking
- Reconciliation of submissions against the ledger read-back
"""

from fedledger.orchestration.retry import RetryPolicy
from fedledger.orchestration.round_manager import (
    RoundManager,
    RoundPhase,
    RoundContext
)
from fedledger.orchestration.reconciliation import reconcile
from fedledger.orchestration.fanout import (
    gather_all,
    wait_or_cancel,
    cancellable_sleep
)
from fedledger.orchestration.orchestrator import (
    LedgerOperation,
    SubmissionOrchestrator,
    register_clients,
    run_rounds
)

__all__ = [
    'RetryPolicy',
    'RoundManager',
    'RoundPhase',
    'RoundContext',
    'reconcile',
    'gather_all',
    'wait_or_cancel',
    'cancellable_sleep',
    'LedgerOperation',
    'SubmissionOrchestrator',
    'register_clients',
    'run_rounds'
]
