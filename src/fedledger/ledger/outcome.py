"""Transaction outcomes returned by ledger adapters.

Every adapter must classify the result of a write into exactly one of
three variants:

- Committed: the write is durable on the ledger
- TransientFailure: the write may succeed if retried (RPC timeout,
  nonce race, fee spike, rate limiting)
- FatalFailure: retrying cannot help (invalid identity, malformed value,
  contract revert)
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Union


class OutcomeKind(Enum):
    """Tag of a TransactionOutcome"""
    COMMITTED = "committed"
    TRANSIENT_FAILURE = "transient_failure"
    FATAL_FAILURE = "fatal_failure"


@dataclass(frozen=True)
class Committed:
    """Successful ledger write.

    Attributes:
        gas_used: Gas consumed by the transaction
        cost_estimate: Native-currency cost (gas used times effective price)
        latency: Seconds from send to receipt, as measured by the adapter
        receipt_id: Transaction hash or other receipt identifier
    """
    gas_used: int
    cost_estimate: Decimal
    latency: float
    receipt_id: str

    kind = OutcomeKind.COMMITTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind.value,
            'gas_used': self.gas_used,
            'cost_estimate': str(self.cost_estimate),
            'latency': self.latency,
            'receipt_id': self.receipt_id,
        }


@dataclass(frozen=True)
class TransientFailure:
    """Retryable failure"""
    reason: str

    kind = OutcomeKind.TRANSIENT_FAILURE

    def to_dict(self) -> Dict[str, Any]:
        return {'kind': self.kind.value, 'reason': self.reason}


@dataclass(frozen=True)
class FatalFailure:
    """Non-retryable failure"""
    reason: str

    kind = OutcomeKind.FATAL_FAILURE

    def to_dict(self) -> Dict[str, Any]:
        return {'kind': self.kind.value, 'reason': self.reason}


TransactionOutcome = Union[Committed, TransientFailure, FatalFailure]


def is_outcome(obj: Any) -> bool:
    """Check that obj is one of the three outcome variants"""
    return isinstance(obj, (Committed, TransientFailure, FatalFailure))
