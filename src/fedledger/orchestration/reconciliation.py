"""Pairing of a round's submissions against the ledger read-back."""

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from fedledger.errors import ReconciliationError
from fedledger.records import (
    ReconciliationEntry,
    ReconciliationStatus,
    TaskResult,
    TaskState,
)


def to_decimal(value: Any) -> Optional[Decimal]:
    """Decimal view of a submitted or recorded value, None if not numeric"""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return None if result.is_nan() else result


def _parse_rows(round_num: int, rows: Iterable[Any]) -> List[Tuple[str, Any]]:
    parsed = []
    try:
        for row in rows:
            address, value = row
            parsed.append((str(address), value))
    except (TypeError, ValueError) as e:
        raise ReconciliationError(round_num, f"malformed read-back row: {e}") from e
    return parsed


def reconcile(
    round_num: int,
    submissions: Mapping[str, TaskResult],
    unsubmitted: Mapping[str, Tuple[int, TaskState]],
    rows: Iterable[Any]
) -> Tuple[ReconciliationEntry, ...]:
    """Pair a round's read-back against what was sent.

    Args:
        round_num: Round number
        submissions: Address -> TaskResult for clients sent a submission task
        unsubmitted: Address -> (client_index, state) for clients that were
            skipped or found already recorded
        rows: (address, value) pairs read from the ledger

    Returns:
        One entry per client plus one per read row not matched to a client.
        Every read address appears at least once.

    Raises:
        ReconciliationError: The read-back rows cannot be parsed
    """
    recorded: Dict[str, Any] = {}
    duplicates: List[Tuple[str, Any]] = []
    for address, value in _parse_rows(round_num, rows):
        if address in recorded:
            duplicates.append((address, value))
        else:
            recorded[address] = value

    entries: List[ReconciliationEntry] = []
    known: Set[str] = set()

    for address, result in submissions.items():
        known.add(address)
        present = address in recorded
        if result.state == TaskState.COMMITTED:
            if not present:
                status = ReconciliationStatus.MISSING
            elif to_decimal(result.task.value) == to_decimal(recorded[address]):
                status = ReconciliationStatus.CONFIRMED
            else:
                status = ReconciliationStatus.VALUE_MISMATCH
        elif present:
            status = ReconciliationStatus.RECORDED_DESPITE_FAILURE
        else:
            status = ReconciliationStatus.EXPECTED_ABSENT

        entries.append(ReconciliationEntry(
            address=address,
            status=status,
            client_index=result.task.client_index,
            task_state=result.state,
            submitted_value=result.task.value,
            recorded_value=recorded.get(address)
        ))

    for address, (client_index, state) in unsubmitted.items():
        known.add(address)
        present = address in recorded
        if state == TaskState.ALREADY_RECORDED:
            status = ReconciliationStatus.CONFIRMED if present else ReconciliationStatus.MISSING
        else:
            status = ReconciliationStatus.UNEXPECTED if present else ReconciliationStatus.EXPECTED_ABSENT

        entries.append(ReconciliationEntry(
            address=address,
            status=status,
            client_index=client_index,
            task_state=state,
            recorded_value=recorded.get(address)
        ))

    for address, value in recorded.items():
        if address not in known:
            entries.append(ReconciliationEntry(
                address=address,
                status=ReconciliationStatus.UNEXPECTED,
                recorded_value=value
            ))

    client_indexes = {a: r.task.client_index for a, r in submissions.items()}
    client_indexes.update({a: idx for a, (idx, _) in unsubmitted.items()})
    for address, value in duplicates:
        entries.append(ReconciliationEntry(
            address=address,
            status=ReconciliationStatus.DUPLICATE,
            client_index=client_indexes.get(address),
            recorded_value=value
        ))

    return tuple(entries)
