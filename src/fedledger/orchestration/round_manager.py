"""Round lifecycle tracking for submission runs.

Provides:
- Round number sequencing (strictly increasing, one active round)
- Phase tracking with per-phase durations
- Per-client terminal state bookkeeping
- History of completed rounds
"""

import time
from typing import Dict, List, Optional
from dataclasses import dataclass, field
from enum import Enum
import logging

from fedledger.records import TaskState


class RoundPhase(Enum):
    """Phases within a single submission round"""
    INITIALIZATION = "initialization"
    RESOLUTION = "resolution"  # Resolve values, build submission tasks
    PRECHECK = "precheck"  # Optional already-recorded checks
    SUBMISSION = "submission"  # Fan-out until the barrier
    RECONCILIATION = "reconciliation"  # Read back committed state
    EMISSION = "emission"  # Report records to the metrics sink
    COMPLETE = "complete"


@dataclass
class RoundContext:
    """Context for a submission round"""
    round_num: int
    start_time: float = 0.0
    wall_start: float = 0.0
    current_phase: RoundPhase = RoundPhase.INITIALIZATION
    phase_started: float = 0.0
    phase_durations: Dict[str, float] = field(default_factory=dict)

    # Client tracking, keyed by address in client order
    expected_clients: List[str] = field(default_factory=list)
    task_states: Dict[str, Optional[TaskState]] = field(default_factory=dict)

    @property
    def resolved(self) -> bool:
        """True once every client has a terminal state"""
        return all(state is not None for state in self.task_states.values())

    @property
    def duration(self) -> float:
        """Get round duration so far"""
        return time.monotonic() - self.start_time


class RoundManager:
    """Tracks the lifecycle of submission rounds.

    Each round moves through:
    1. Resolution - Resolve client values, skip clients without one
    2. Precheck - Optionally skip clients already recorded on the ledger
    3. Submission - Concurrent submission tasks, ended by the barrier
    4. Reconciliation - One read of the round's committed state
    5. Emission - Records handed to the metrics sink
    """

    def __init__(self, logger: Optional[logging.Logger] = None, first_round: int = 1):
        """Initialize round manager.

        Args:
            logger: Logger instance
            first_round: Lowest round number accepted (0 for the
                registration pass)
        """
        self.logger = logger or logging.getLogger("fedledger.round_manager")

        self.first_round = first_round
        self.last_round = first_round - 1
        self.round_context: Optional[RoundContext] = None
        self.round_history: List[RoundContext] = []

    def start_round(self, round_num: int, expected_clients: List[str]) -> RoundContext:
        """Start a new round.

        Args:
            round_num: Round number, greater than any previous round
            expected_clients: Addresses of every client in the run

        Returns:
            New RoundContext
        """
        if self.round_context is not None:
            raise RuntimeError(
                f"Round {self.round_context.round_num} is still active"
            )
        if round_num < self.first_round or round_num <= self.last_round:
            raise ValueError(
                f"Round {round_num} does not follow round {self.last_round}"
            )

        now = time.monotonic()
        self.last_round = round_num
        self.round_context = RoundContext(
            round_num=round_num,
            start_time=now,
            wall_start=time.time(),
            phase_started=now,
            expected_clients=list(expected_clients),
            task_states={address: None for address in expected_clients}
        )

        self.logger.info(
            f"Starting round {round_num} with {len(expected_clients)} clients",
            extra={'round': round_num}
        )
        return self.round_context

    def advance_phase(self, next_phase: RoundPhase) -> float:
        """Advance to the next phase of the round.

        Args:
            next_phase: Phase to advance to

        Returns:
            Duration of the phase that just ended
        """
        ctx = self._require_active()
        now = time.monotonic()
        prev_phase = ctx.current_phase
        duration = now - ctx.phase_started

        ctx.phase_durations[prev_phase.value] = duration
        ctx.current_phase = next_phase
        ctx.phase_started = now

        self.logger.debug(
            f"Phase {prev_phase.value} -> {next_phase.value} "
            f"(duration: {duration:.2f}s)",
            extra={'round': ctx.round_num}
        )
        return duration

    def record_state(self, address: str, state: TaskState) -> None:
        """Record a client's terminal state for the current round.

        Raises:
            KeyError: Unknown client
            RuntimeError: The client already has a terminal state
        """
        ctx = self._require_active()
        if address not in ctx.task_states:
            raise KeyError(f"Unexpected client {address}")
        if ctx.task_states[address] is not None:
            raise RuntimeError(
                f"Client {address} already terminal ({ctx.task_states[address].value}) "
                f"in round {ctx.round_num}"
            )
        ctx.task_states[address] = state

    def end_round(self) -> RoundContext:
        """End the current round and archive it.

        Returns:
            Completed RoundContext
        """
        ctx = self._require_active()
        if not ctx.resolved:
            pending = [a for a, s in ctx.task_states.items() if s is None]
            raise RuntimeError(
                f"Round {ctx.round_num} has {len(pending)} unresolved clients"
            )

        self.advance_phase(RoundPhase.COMPLETE)
        self.round_history.append(ctx)
        self.round_context = None

        self.logger.info(
            f"Round {ctx.round_num} complete. Duration: {ctx.duration:.2f}s",
            extra={'round': ctx.round_num}
        )
        return ctx

    def abort_round(self) -> Optional[RoundContext]:
        """Drop the active round without archiving it.

        The round number stays consumed, so it cannot be started again.

        Returns:
            The abandoned RoundContext, or None if no round was active
        """
        ctx = self.round_context
        if ctx is None:
            return None

        self.round_context = None
        self.logger.warning(
            f"Round {ctx.round_num} aborted in phase {ctx.current_phase.value}",
            extra={'round': ctx.round_num}
        )
        return ctx

    def get_history_metrics(self) -> List[Dict]:
        """Get phase durations of all completed rounds.

        Returns:
            List of metric dictionaries per round
        """
        return [
            {
                'round': r.round_num,
                **{f"{phase}_sec": d for phase, d in r.phase_durations.items()}
            }
            for r in self.round_history
        ]

    def _require_active(self) -> RoundContext:
        if self.round_context is None:
            raise RuntimeError("No active round")
        return self.round_context
