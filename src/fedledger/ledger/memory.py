"""In-memory ledger for simulation and testing.

Behaves like the weight-submission contract: one value per address per
round, append-only, readable per round. Clients can also be registered,
as with the client-registration contract. Failures, latency and
read-back anomalies can be scripted per address or drawn from a seeded
RNG.
"""

from collections import defaultdict, deque
from decimal import Decimal
from typing import Any, Deque, Dict, Iterable, List, Optional, Set, Tuple
import asyncio
import hashlib
import logging
import time

import numpy as np

from fedledger.clients.identity import ClientIdentity, is_address
from fedledger.ledger.base import LedgerClient
from fedledger.ledger.outcome import (
    Committed,
    FatalFailure,
    TransactionOutcome,
    TransientFailure,
)


GWEI = Decimal('0.000000001')


class InMemoryLedger(LedgerClient):
    """Simulated append-only ledger.

    Safe for concurrent use from asyncio tasks on one event loop.

    Scripted outcomes are consumed one per write (submit or register),
    per address.
    A script item is either an outcome (TransientFailure / FatalFailure
    are returned as-is), ``InMemoryLedger.COMMIT`` to commit normally, or
    an exception instance, which is raised from the write.
    """

    COMMIT = "commit"

    def __init__(
        self,
        gas_price_gwei: Decimal = Decimal('30'),
        base_gas: int = 52_000,
        registration_gas: int = 46_000,
        gas_jitter: int = 4_000,
        latency: Tuple[float, float] = (0.0, 0.0),
        failure_rate: float = 0.0,
        seed: Optional[int] = None,
        logger: Optional[logging.Logger] = None
    ):
        """Initialize simulated ledger.

        Args:
            gas_price_gwei: Effective gas price used for cost estimates
            base_gas: Gas used by one weight submission
            registration_gas: Gas used by one client registration
            gas_jitter: Upper bound of random extra gas per submission
            latency: (min, max) simulated confirmation time in seconds
            failure_rate: Probability that an unscripted write fails transiently
            seed: RNG seed for gas, latency and failures
            logger: Logger instance
        """
        if not 0.0 <= failure_rate <= 1.0:
            raise ValueError(f"failure_rate must be in [0, 1], got {failure_rate}")

        self.gas_price_gwei = Decimal(str(gas_price_gwei))
        self.base_gas = base_gas
        self.registration_gas = registration_gas
        self.gas_jitter = gas_jitter
        self.latency = latency
        self.failure_rate = failure_rate
        self.logger = logger or logging.getLogger("fedledger.ledger.memory")

        self._rng = np.random.default_rng(seed)
        self._lock = asyncio.Lock()

        # round -> address -> recorded value, insertion ordered
        self._rounds: Dict[int, Dict[str, Decimal]] = defaultdict(dict)
        self._scripts: Dict[str, Deque[Any]] = defaultdict(deque)
        self._delays: Dict[str, float] = {}
        self._hidden: Set[Tuple[int, str]] = set()
        self._injected: Dict[int, List[Tuple[str, Decimal]]] = defaultdict(list)
        self._read_failures: Dict[int, Exception] = {}
        self._registered: List[str] = []

        # (round, address, monotonic time) per submit call
        self.calls: List[Tuple[int, str, float]] = []
        self.reads: List[Tuple[int, float]] = []
        # (address, monotonic time) per register call
        self.register_calls: List[Tuple[str, float]] = []

    # ─────────────── scripting ───────────────

    def script(self, address: str, items: Iterable[Any]) -> None:
        """Queue scripted results for an address's next submit calls"""
        self._scripts[address].extend(items)

    def set_delay(self, address: str, seconds: float) -> None:
        """Make every submit for an address take this long"""
        self._delays[address] = seconds

    def hide_from_read(self, round_num: int, address: str) -> None:
        """Drop an address from a round's read-back even if committed"""
        self._hidden.add((round_num, address))

    def inject_row(self, round_num: int, address: str, value: Any) -> None:
        """Add a row to a round's read-back that was never submitted"""
        self._injected[round_num].append((address, Decimal(str(value))))

    def fail_reads(self, round_num: int, error: Optional[Exception] = None) -> None:
        """Make read_round_state fail for a round"""
        self._read_failures[round_num] = error or ConnectionError("RPC read failed")

    def attempts_for(self, address: str, round_num: Optional[int] = None) -> int:
        """Number of submit calls seen for an address"""
        return sum(
            1 for r, a, _ in self.calls
            if a == address and (round_num is None or r == round_num)
        )

    def register_directly(self, address: str) -> None:
        """Register an address without going through register (pre-existing state)"""
        if address not in self._registered:
            self._registered.append(address)

    # ─────────────── LedgerClient ───────────────

    async def submit(
        self,
        identity: ClientIdentity,
        value: Any,
        round_num: int
    ) -> TransactionOutcome:
        started = time.monotonic()
        self.calls.append((round_num, identity.address, started))

        failure = await self._simulate_send(identity)
        if failure is not None:
            return failure

        try:
            recorded = Decimal(str(value))
        except ArithmeticError:
            return FatalFailure(reason=f"malformed value {value!r}")

        async with self._lock:
            if identity.address in self._rounds[round_num]:
                return FatalFailure(
                    reason=f"{identity.address} already submitted for round {round_num}"
                )
            self._rounds[round_num][identity.address] = recorded
            seq = len(self._rounds[round_num])

        return self._receipt(started, self.base_gas, f"{round_num}:{identity.address}:{recorded}:{seq}")

    async def read_round_state(self, round_num: int) -> List[Tuple[str, Any]]:
        self.reads.append((round_num, time.monotonic()))

        if round_num in self._read_failures:
            raise self._read_failures[round_num]

        async with self._lock:
            rows = [
                (address, value)
                for address, value in self._rounds.get(round_num, {}).items()
                if (round_num, address) not in self._hidden
            ]
        return rows + list(self._injected.get(round_num, []))

    async def has_submitted(self, identity: ClientIdentity, round_num: int) -> bool:
        async with self._lock:
            return identity.address in self._rounds.get(round_num, {})

    async def register(self, identity: ClientIdentity) -> TransactionOutcome:
        started = time.monotonic()
        self.register_calls.append((identity.address, started))

        failure = await self._simulate_send(identity)
        if failure is not None:
            return failure

        async with self._lock:
            if identity.address in self._registered:
                return FatalFailure(reason=f"{identity.address} already registered")
            self._registered.append(identity.address)
            seq = len(self._registered)

        return self._receipt(started, self.registration_gas, f"register:{identity.address}:{seq}")

    async def is_registered(self, identity: ClientIdentity) -> bool:
        async with self._lock:
            return identity.address in self._registered

    async def registered_clients(self) -> List[str]:
        async with self._lock:
            return list(self._registered)

    def record_directly(self, round_num: int, address: str, value: Any) -> None:
        """Record a value without going through submit (pre-existing state)"""
        self._rounds[round_num][address] = Decimal(str(value))

    # ─────────────── simulation ───────────────

    async def _simulate_send(self, identity: ClientIdentity) -> Optional[TransactionOutcome]:
        """Latency, scripted results and random failures shared by every write.

        Returns:
            A failure outcome, or None if the write should go through
        """
        if not is_address(identity.address):
            return FatalFailure(reason=f"invalid address {identity.address!r}")

        delay = self._delays.get(identity.address)
        if delay is None and self.latency[1] > 0:
            delay = float(self._rng.uniform(self.latency[0], self.latency[1]))
        if delay:
            await asyncio.sleep(delay)

        script = self._scripts.get(identity.address)
        if script:
            item = script.popleft()
            if isinstance(item, BaseException):
                raise item
            if isinstance(item, (TransientFailure, FatalFailure)):
                return item
        elif self.failure_rate and self._rng.random() < self.failure_rate:
            return TransientFailure(reason="simulated RPC failure")
        return None

    def _receipt(self, started: float, gas_base: int, key: str) -> Committed:
        gas_used = gas_base + int(self._rng.integers(0, self.gas_jitter + 1))
        receipt = hashlib.sha256(key.encode()).hexdigest()
        return Committed(
            gas_used=gas_used,
            cost_estimate=gas_used * self.gas_price_gwei * GWEI,
            latency=time.monotonic() - started,
            receipt_id=f"0x{receipt}"
        )
