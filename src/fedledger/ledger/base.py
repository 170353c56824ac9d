"""Ledger client abstraction consumed by the orchestrator.

Fee estimation, signing and wire encoding live in concrete adapters.
The orchestrator only needs the three-way outcome tag and the round
read-back.
"""

from abc import ABC, abstractmethod
from typing import Any, List, Tuple

from fedledger.clients.identity import ClientIdentity
from fedledger.ledger.outcome import TransactionOutcome


class LedgerClient(ABC):
    """Abstract base class for append-only ledger adapters.

    Adapters are expected to be safe for concurrent use from many asyncio
    tasks. If one is not, set ``ledger_concurrency`` in the orchestrator
    config and the orchestrator will bound access itself.
    """

    @abstractmethod
    async def submit(
        self,
        identity: ClientIdentity,
        value: Any,
        round_num: int
    ) -> TransactionOutcome:
        """Write a client's value for a round.

        Args:
            identity: Client authorizing the write
            value: Value to record
            round_num: Round the value belongs to

        Returns:
            Committed, TransientFailure or FatalFailure
        """
        pass

    @abstractmethod
    async def read_round_state(self, round_num: int) -> List[Tuple[str, Any]]:
        """Read every (address, value) committed for a round.

        Raises:
            Any exception on read failure; the orchestrator records it
            as a degraded round
        """
        pass

    async def has_submitted(self, identity: ClientIdentity, round_num: int) -> bool:
        """Check whether a client already has a value recorded for a round.

        Only used by the ``skip_if_recorded`` pre-check policy.
        """
        raise NotImplementedError(f"{type(self).__name__} does not support pre-checks")

    async def register(self, identity: ClientIdentity) -> TransactionOutcome:
        """Register a client so that it may submit values.

        Returns:
            Committed, TransientFailure or FatalFailure
        """
        raise NotImplementedError(f"{type(self).__name__} does not support registration")

    async def is_registered(self, identity: ClientIdentity) -> bool:
        """Check whether a client is already registered"""
        raise NotImplementedError(f"{type(self).__name__} does not support registration")

    async def registered_clients(self) -> List[str]:
        """Read the addresses of every registered client"""
        raise NotImplementedError(f"{type(self).__name__} does not support registration")
