"""Tests for the simulated in-memory ledger."""

import asyncio
import os
import sys
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src'))

from fedledger.clients import ClientIdentity
from fedledger.ledger import (
    Committed,
    FatalFailure,
    InMemoryLedger,
    OutcomeKind,
    TransientFailure,
    is_outcome,
)
from fedledger.ledger.memory import GWEI


ALICE = ClientIdentity("0x" + "a" * 40, signer="alice-key", index=0)
BOB = ClientIdentity("0x" + "b" * 40, signer="bob-key", index=1)


class TestOutcomes:
    """Tests for the outcome variants."""

    def test_kinds(self):
        committed = Committed(gas_used=1, cost_estimate=Decimal('0.1'), latency=0.2, receipt_id='0x1')
        assert committed.kind == OutcomeKind.COMMITTED
        assert TransientFailure("x").kind == OutcomeKind.TRANSIENT_FAILURE
        assert FatalFailure("x").kind == OutcomeKind.FATAL_FAILURE

    def test_is_outcome(self):
        assert is_outcome(TransientFailure("x"))
        assert not is_outcome("committed")
        assert not is_outcome(None)

    def test_to_dict(self):
        committed = Committed(gas_used=5, cost_estimate=Decimal('0.25'), latency=1.0, receipt_id='0xabc')
        assert committed.to_dict() == {
            'kind': 'committed',
            'gas_used': 5,
            'cost_estimate': '0.25',
            'latency': 1.0,
            'receipt_id': '0xabc',
        }
        assert FatalFailure("revert").to_dict() == {'kind': 'fatal_failure', 'reason': 'revert'}


class TestInMemoryLedger:
    """Tests for InMemoryLedger."""

    def test_submit_and_read(self):
        """Committed values are readable per round in commit order."""
        ledger = InMemoryLedger(seed=0)

        async def scenario():
            first = await ledger.submit(ALICE, 10, 1)
            second = await ledger.submit(BOB, 20, 1)
            return first, second, await ledger.read_round_state(1), await ledger.read_round_state(2)

        first, second, rows, empty = asyncio.run(scenario())

        assert isinstance(first, Committed)
        assert isinstance(second, Committed)
        assert first.receipt_id != second.receipt_id
        assert first.receipt_id.startswith("0x")
        assert rows == [(ALICE.address, Decimal(10)), (BOB.address, Decimal(20))]
        assert empty == []

    def test_cost_is_gas_times_price(self):
        ledger = InMemoryLedger(gas_price_gwei=Decimal('20'), base_gas=50_000, gas_jitter=0)
        outcome = asyncio.run(ledger.submit(ALICE, 1, 1))

        assert outcome.gas_used == 50_000
        assert outcome.cost_estimate == Decimal(50_000) * Decimal('20') * GWEI

    def test_duplicate_submission_is_fatal(self):
        """One value per address per round."""
        ledger = InMemoryLedger()

        async def scenario():
            await ledger.submit(ALICE, 10, 1)
            return await ledger.submit(ALICE, 11, 1), await ledger.submit(ALICE, 11, 2)

        again, next_round = asyncio.run(scenario())
        assert isinstance(again, FatalFailure)
        assert "already submitted" in again.reason
        assert isinstance(next_round, Committed)

    def test_invalid_address_is_fatal(self):
        outcome = asyncio.run(InMemoryLedger().submit(ClientIdentity("0x12"), 1, 1))
        assert isinstance(outcome, FatalFailure)

    def test_scripted_outcomes(self):
        """Scripted items are consumed in order, then normal commits resume."""
        ledger = InMemoryLedger()
        ledger.script(ALICE.address, [
            TransientFailure("busy"),
            TimeoutError("rpc"),
            InMemoryLedger.COMMIT,
        ])

        async def scenario():
            outcomes = [await ledger.submit(ALICE, 10, 1)]
            with pytest.raises(TimeoutError):
                await ledger.submit(ALICE, 10, 1)
            outcomes.append(await ledger.submit(ALICE, 10, 1))
            outcomes.append(await ledger.submit(ALICE, 10, 2))
            return outcomes

        busy, committed, later = asyncio.run(scenario())
        assert busy == TransientFailure("busy")
        assert isinstance(committed, Committed)
        assert isinstance(later, Committed)
        assert ledger.attempts_for(ALICE.address) == 4
        assert ledger.attempts_for(ALICE.address, round_num=2) == 1

    def test_failure_rate(self):
        """failure_rate=1 fails every unscripted submit transiently."""
        ledger = InMemoryLedger(failure_rate=1.0, seed=1)
        outcome = asyncio.run(ledger.submit(ALICE, 1, 1))
        assert isinstance(outcome, TransientFailure)

    def test_invalid_failure_rate(self):
        with pytest.raises(ValueError):
            InMemoryLedger(failure_rate=1.5)

    def test_seeded_gas_is_reproducible(self):
        def gas(seed):
            ledger = InMemoryLedger(seed=seed)
            return [asyncio.run(ledger.submit(ALICE, 1, r)).gas_used for r in (1, 2, 3)]

        assert gas(5) == gas(5)

    def test_read_anomalies(self):
        """Hidden, injected and failing reads can be staged."""
        ledger = InMemoryLedger()
        ledger.record_directly(1, ALICE.address, 10)
        ledger.record_directly(1, BOB.address, 20)
        ledger.hide_from_read(1, BOB.address)
        ledger.inject_row(1, "0x" + "c" * 40, 5)
        ledger.fail_reads(2)

        rows = asyncio.run(ledger.read_round_state(1))
        assert rows == [(ALICE.address, Decimal(10)), ("0x" + "c" * 40, Decimal(5))]

        with pytest.raises(ConnectionError):
            asyncio.run(ledger.read_round_state(2))

    def test_has_submitted(self):
        ledger = InMemoryLedger()
        ledger.record_directly(3, ALICE.address, 1)

        assert asyncio.run(ledger.has_submitted(ALICE, 3))
        assert not asyncio.run(ledger.has_submitted(BOB, 3))
        assert not asyncio.run(ledger.has_submitted(ALICE, 4))


class TestRegistration:
    """Tests for client registration on the simulated ledger."""

    def test_register(self):
        ledger = InMemoryLedger(seed=4)
        outcome = asyncio.run(ledger.register(ALICE))

        assert isinstance(outcome, Committed)
        assert ledger.registration_gas <= outcome.gas_used <= ledger.registration_gas + ledger.gas_jitter
        assert outcome.receipt_id.startswith("0x")
        assert asyncio.run(ledger.is_registered(ALICE))
        assert not asyncio.run(ledger.is_registered(BOB))
        assert asyncio.run(ledger.registered_clients()) == [ALICE.address]
        assert [address for address, _ in ledger.register_calls] == [ALICE.address]
        assert ledger.calls == []

    def test_registering_twice_is_fatal(self):
        ledger = InMemoryLedger()
        ledger.register_directly(ALICE.address)

        outcome = asyncio.run(ledger.register(ALICE))

        assert isinstance(outcome, FatalFailure)
        assert "already registered" in outcome.reason
        assert asyncio.run(ledger.registered_clients()) == [ALICE.address]

    def test_scripts_apply_to_registration(self):
        ledger = InMemoryLedger()
        ledger.script(BOB.address, [TransientFailure("underpriced"), InMemoryLedger.COMMIT])

        first = asyncio.run(ledger.register(BOB))
        second = asyncio.run(ledger.register(BOB))

        assert first == TransientFailure("underpriced")
        assert isinstance(second, Committed)

    def test_invalid_address_cannot_register(self):
        outcome = asyncio.run(InMemoryLedger().register(ClientIdentity("0x12", index=0)))
        assert isinstance(outcome, FatalFailure)

    def test_registration_is_separate_from_rounds(self):
        ledger = InMemoryLedger()
        asyncio.run(ledger.register(ALICE))
        assert asyncio.run(ledger.read_round_state(0)) == []
