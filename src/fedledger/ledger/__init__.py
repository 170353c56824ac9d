"""Ledger package: client abstraction, outcome variants and a simulated ledger."""

from fedledger.ledger.outcome import (
    OutcomeKind,
    Committed,
    TransientFailure,
    FatalFailure,
    TransactionOutcome,
    is_outcome
)
from fedledger.ledger.base import LedgerClient
from fedledger.ledger.memory import InMemoryLedger

__all__ = [
    'OutcomeKind',
    'Committed',
    'TransientFailure',
    'FatalFailure',
    'TransactionOutcome',
    'is_outcome',
    'LedgerClient',
    'InMemoryLedger'
]
