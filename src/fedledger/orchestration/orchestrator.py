"""Round submission orchestrator.

Drives a run of rounds against a ledger:

1. Resolve each client's value for the round (clients without one are
   skipped)
2. Fan out one submission task per client; each task retries transient
   failures under the RetryPolicy
3. Barrier: wait until every task is terminal
4. Read the round back from the ledger and reconcile
5. Emit attempt records and the RoundResult to the metrics sink
6. Pace, then move to the next round

A registration pass runs the same machinery once, as round 0, with
``register`` as the write and ``is_registered`` as the pre-check.

Rounds never overlap. Per-client failures and read failures are recorded,
never raised; only ConfigurationError aborts a run.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union
from decimal import Decimal
import asyncio
import logging
import time

from fedledger.clients.identity import ClientIdentity, IdentityProvider
from fedledger.clients.values import ValueSource, coerce_value
from fedledger.config.settings import OrchestratorConfig, PrecheckPolicy
from fedledger.errors import CancellationRequested, ConfigurationError, ReconciliationError
from fedledger.ledger.base import LedgerClient
from fedledger.ledger.outcome import (
    Committed,
    FatalFailure,
    TransactionOutcome,
    TransientFailure,
    is_outcome,
)
from fedledger.metrics.sink import MetricsSink
from fedledger.orchestration.fanout import (
    cancellable_sleep,
    gather_all,
    ledger_gate,
    wait_or_cancel,
)
from fedledger.orchestration.reconciliation import reconcile
from fedledger.orchestration.retry import RetryPolicy
from fedledger.orchestration.round_manager import RoundContext, RoundManager, RoundPhase
from fedledger.records import (
    REGISTRATION_ROUND,
    AttemptRecord,
    RoundResult,
    SubmissionTask,
    TaskResult,
    TaskState,
)


Clients = Union[Sequence[ClientIdentity], IdentityProvider]
Resolved = Tuple[List[SubmissionTask], Dict[str, Tuple[int, TaskState]]]


@dataclass(frozen=True)
class LedgerOperation:
    """The ledger calls one kind of round is made of.

    Attributes:
        name: Label used in logs
        send: Performs one write for a task
        check: Whether a task's write is already on the ledger
        read: Reads back (address, value) rows for a round, given the
            round number and the addresses taking part
    """
    name: str
    send: Callable[[SubmissionTask], Awaitable[TransactionOutcome]]
    check: Callable[[SubmissionTask], Awaitable[bool]]
    read: Callable[[int, List[str]], Awaitable[List[Tuple[str, Any]]]]

    @classmethod
    def submission(cls, ledger: LedgerClient) -> 'LedgerOperation':
        async def read(round_num, addresses):
            return await ledger.read_round_state(round_num)

        return cls(
            name="submission",
            send=lambda task: ledger.submit(task.identity, task.value, task.round_num),
            check=lambda task: ledger.has_submitted(task.identity, task.round_num),
            read=read
        )

    @classmethod
    def registration(cls, ledger: LedgerClient) -> 'LedgerOperation':
        # The registry is ledger-wide; only this run's clients are paired
        async def read(round_num, addresses):
            wanted = set(addresses)
            return [
                (address, None) for address in await ledger.registered_clients()
                if address in wanted
            ]

        return cls(
            name="registration",
            send=lambda task: ledger.register(task.identity),
            check=lambda task: ledger.is_registered(task.identity),
            read=read
        )


class SubmissionOrchestrator:
    """Submits every client's value, round after round, with bounded retries.

    The orchestrator owns no I/O: identities, values, the ledger and the
    metrics sink are all injected.
    """

    def __init__(
        self,
        config: Optional[OrchestratorConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
        logger: Optional[logging.Logger] = None
    ):
        """Initialize orchestrator.

        Args:
            config: Run configuration (defaults if None)
            retry_policy: Backoff policy (built from config if None)
            logger: Logger instance
        """
        self.config = config or OrchestratorConfig()
        self.retry_policy = retry_policy or RetryPolicy.from_config(self.config)
        self.logger = logger or logging.getLogger("fedledger.orchestrator")
        self.round_manager = RoundManager(logger=self.logger.getChild("rounds"))

        self._cancel_event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._gate: Any = None
        self._stop_requested = False
        self._was_cancelled = False

    # ─────────────── control ───────────────

    def request_stop(self) -> None:
        """Stop after the in-progress round is reconciled.

        Safe to call from another thread. A stop requested while no run
        is active applies to the next run.
        """
        self._stop_requested = True
        loop, event = self._loop, self._cancel_event
        if loop is None or event is None:
            return
        try:
            loop.call_soon_threadsafe(event.set)
        except RuntimeError:
            # Loop already closed; the run it belonged to is over
            self.logger.debug("Stop requested after the run's event loop closed")

    @property
    def cancelled(self) -> bool:
        if self._cancel_event is not None:
            return self._cancel_event.is_set()
        return self._stop_requested or self._was_cancelled

    def run(
        self,
        start_round: int,
        end_round: int,
        *args,
        raise_on_cancel: bool = False,
        **kwargs
    ) -> List[RoundResult]:
        """Synchronous wrapper around run_rounds.

        Args:
            raise_on_cancel: Raise CancellationRequested if the run stopped
                before its last round
        """
        results = asyncio.run(self.run_rounds(start_round, end_round, *args, **kwargs))
        if raise_on_cancel and self.cancelled and (not results or results[-1].round_num != end_round):
            last = results[-1].round_num if results else 0
            raise CancellationRequested(last, results)
        return results

    def register(self, *args, **kwargs) -> RoundResult:
        """Synchronous wrapper around register_clients"""
        return asyncio.run(self.register_clients(*args, **kwargs))

    @contextmanager
    def _session(self, cancel_event: Optional[asyncio.Event]) -> Iterator[asyncio.Event]:
        """Bind cancellation and the ledger gate to the running loop"""
        if self._loop is not None:
            raise RuntimeError("A run is already in progress on this orchestrator")

        self._was_cancelled = False
        self._loop = asyncio.get_running_loop()
        self._cancel_event = cancel_event or asyncio.Event()
        if self._stop_requested:
            self._cancel_event.set()
        self._gate = ledger_gate(self.config.ledger_concurrency)
        try:
            yield self._cancel_event
        finally:
            self._was_cancelled = self._cancel_event.is_set()
            self._stop_requested = False
            self._cancel_event = None
            self._loop = None
            self._gate = None

    # ─────────────── run ───────────────

    async def run_rounds(
        self,
        start_round: int,
        end_round: int,
        clients: Clients,
        value_source: ValueSource,
        ledger: LedgerClient,
        metrics_sink: MetricsSink,
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[RoundResult]:
        """Run rounds start_round..end_round inclusive.

        Args:
            start_round: First round number (>= 1)
            end_round: Last round number (>= start_round)
            clients: Identities, or a provider to load them from
            value_source: Per-round client values
            ledger: Ledger adapter shared by all tasks
            metrics_sink: Receives every AttemptRecord and RoundResult
            cancel_event: Optional signal; when set, in-flight attempts are
                interrupted and the run stops after the current round

        Returns:
            RoundResults in round order

        Raises:
            ConfigurationError: Invalid round range or client list
        """
        identities = self._resolve_clients(clients)
        self._validate_range(start_round, end_round)
        operation = LedgerOperation.submission(ledger)
        precheck = self.config.precheck == PrecheckPolicy.SKIP_IF_RECORDED

        results: List[RoundResult] = []
        with self._session(cancel_event) as cancel:
            self.logger.info(
                f"Running rounds {start_round}..{end_round} for {len(identities)} clients "
                f"(max_retries={self.config.max_retries}, timeout={self.config.per_attempt_timeout}s)"
            )

            for round_num in range(start_round, end_round + 1):
                if cancel.is_set():
                    self.logger.warning(f"Cancellation requested, not starting round {round_num}")
                    break

                result = await self._run_round(
                    self.round_manager,
                    round_num,
                    identities,
                    lambda r: self._build_tasks(r, identities, value_source),
                    operation,
                    metrics_sink,
                    precheck
                )
                results.append(result)

                if round_num < end_round:
                    await cancellable_sleep(self.config.inter_round_delay, cancel)

        self.logger.info(f"Run finished after {len(results)} round(s)")
        return results

    async def register_clients(
        self,
        clients: Clients,
        ledger: LedgerClient,
        metrics_sink: MetricsSink,
        cancel_event: Optional[asyncio.Event] = None
    ) -> RoundResult:
        """Register every client with the ledger as round 0.

        Clients the ledger already knows are not registered again. The
        pre-check always runs here, whatever the configured policy; if it
        fails for a client, registration is attempted anyway.

        Returns:
            RoundResult of the registration pass

        Raises:
            ConfigurationError: Invalid client list
        """
        identities = self._resolve_clients(clients)
        manager = RoundManager(
            logger=self.logger.getChild("registration"),
            first_round=REGISTRATION_ROUND
        )

        with self._session(cancel_event):
            self.logger.info(f"Registering {len(identities)} clients")
            return await self._run_round(
                manager,
                REGISTRATION_ROUND,
                identities,
                lambda r: ([SubmissionTask(r, i.index, i, None) for i in identities], {}),
                LedgerOperation.registration(ledger),
                metrics_sink,
                precheck=True
            )

    def _resolve_clients(self, clients: Clients) -> List[ClientIdentity]:
        if isinstance(clients, IdentityProvider):
            clients = clients.load()
        identities = list(clients or [])
        if not identities:
            raise ConfigurationError("No client identities to submit for")

        resolved = []
        addresses = set()
        indexes = set()
        for position, identity in enumerate(identities):
            if not isinstance(identity, ClientIdentity):
                raise ConfigurationError(f"Not a ClientIdentity: {identity!r}")
            if identity.index is None:
                identity = identity.with_index(position)
            if identity.address in addresses:
                raise ConfigurationError(f"Duplicate client address {identity.address}")
            if identity.index in indexes:
                raise ConfigurationError(
                    f"Duplicate client index {identity.index} ({identity.address})"
                )
            addresses.add(identity.address)
            indexes.add(identity.index)
            resolved.append(identity)
        return resolved

    def _validate_range(self, start_round: int, end_round: int) -> None:
        for name, value in (('start_round', start_round), ('end_round', end_round)):
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigurationError(f"{name} must be an integer, got {value!r}")
        if start_round < 1:
            raise ConfigurationError(f"start_round must be >= 1, got {start_round}")
        if end_round < start_round:
            raise ConfigurationError(f"end_round {end_round} is before start_round {start_round}")
        if start_round <= self.round_manager.last_round:
            raise ConfigurationError(
                f"start_round {start_round} does not follow round {self.round_manager.last_round}"
            )

    # ─────────────── round ───────────────

    async def _run_round(
        self,
        manager: RoundManager,
        round_num: int,
        identities: List[ClientIdentity],
        resolve: Callable[[int], Resolved],
        operation: LedgerOperation,
        metrics_sink: MetricsSink,
        precheck: bool
    ) -> RoundResult:
        ctx = manager.start_round(round_num, [i.address for i in identities])
        try:
            result = await self._round_body(
                manager, ctx, resolve, operation, metrics_sink, precheck
            )
        except BaseException:
            manager.abort_round()
            raise

        self._log_round(result)
        return result

    async def _round_body(
        self,
        manager: RoundManager,
        ctx: RoundContext,
        resolve: Callable[[int], Resolved],
        operation: LedgerOperation,
        metrics_sink: MetricsSink,
        precheck: bool
    ) -> RoundResult:
        round_num = ctx.round_num
        extra = {'round': round_num}

        manager.advance_phase(RoundPhase.RESOLUTION)
        tasks, unsubmitted = resolve(round_num)

        if precheck and tasks:
            manager.advance_phase(RoundPhase.PRECHECK)
            tasks = await self._precheck(tasks, operation, unsubmitted)

        for address, (_, state) in unsubmitted.items():
            manager.record_state(address, state)

        manager.advance_phase(RoundPhase.SUBMISSION)
        task_results = await gather_all([self._run_task(t, operation) for t in tasks])
        for result in task_results:
            manager.record_state(result.task.identity.address, result.state)

        manager.advance_phase(RoundPhase.RECONCILIATION)
        rows, read_error, read_latency = await self._read_round(
            round_num, operation, ctx.expected_clients
        )
        submissions = {r.task.identity.address: r for r in task_results}
        entries: Tuple = ()
        if read_error is None:
            try:
                entries = reconcile(round_num, submissions, unsubmitted, rows)
            except ReconciliationError as e:
                read_error = str(e)
                self.logger.error(read_error, extra=extra)

        manager.advance_phase(RoundPhase.EMISSION)
        committed = [r.committed for r in task_results if r.committed is not None]
        result = RoundResult(
            round_num=round_num,
            task_states=dict(ctx.task_states),
            reconciliation=entries,
            read_error=read_error,
            read_latency=read_latency,
            total_gas_used=sum(c.gas_used for c in committed),
            total_cost=sum((c.cost_estimate for c in committed), Decimal(0)),
            phase_durations=dict(ctx.phase_durations),
            cancelled=self.cancelled,
            started_at=ctx.wall_start,
            finished_at=time.time()
        )

        for task_result in task_results:
            for attempt in task_result.attempts:
                metrics_sink.record(attempt)
        metrics_sink.record(result)
        manager.end_round()
        return result

    def _build_tasks(
        self,
        round_num: int,
        identities: List[ClientIdentity],
        value_source: ValueSource
    ) -> Resolved:
        tasks = []
        unsubmitted: Dict[str, Tuple[int, TaskState]] = {}
        for identity in identities:
            try:
                value = coerce_value(value_source.value_for(round_num, identity.index))
            except Exception as e:
                self.logger.warning(
                    f"Value lookup failed for client {identity.index} ({identity.address}): {e}",
                    extra={'round': round_num}
                )
                value = None

            if value is None:
                self.logger.info(
                    f"No valid value for client {identity.index} ({identity.address}), skipping",
                    extra={'round': round_num}
                )
                unsubmitted[identity.address] = (identity.index, TaskState.SKIPPED)
                continue

            tasks.append(SubmissionTask(round_num, identity.index, identity, value))
        return tasks, unsubmitted

    async def _precheck(
        self,
        tasks: List[SubmissionTask],
        operation: LedgerOperation,
        unsubmitted: Dict[str, Tuple[int, TaskState]]
    ) -> List[SubmissionTask]:
        recorded = await gather_all([self._is_recorded(t, operation) for t in tasks])
        remaining = []
        for task, already in zip(tasks, recorded):
            if already:
                self.logger.info(
                    f"Client {task.identity.address} already recorded, no {operation.name} sent",
                    extra={'round': task.round_num}
                )
                unsubmitted[task.identity.address] = (task.client_index, TaskState.ALREADY_RECORDED)
            else:
                remaining.append(task)
        return remaining

    async def _is_recorded(self, task: SubmissionTask, operation: LedgerOperation) -> bool:
        try:
            async with self._gate:
                return bool(await asyncio.wait_for(
                    operation.check(task),
                    timeout=self.config.per_attempt_timeout
                ))
        except Exception as e:
            self.logger.warning(
                f"Pre-check failed for {task.identity.address}, sending anyway: {e!r}",
                extra={'round': task.round_num}
            )
            return False

    # ─────────────── task ───────────────

    async def _run_task(self, task: SubmissionTask, operation: LedgerOperation) -> TaskResult:
        """Attempt one client's write until it reaches a terminal state"""
        attempts: List[Tuple[int, float, float, float, TransactionOutcome, bool]] = []
        max_retries = self.config.max_retries
        attempt_number = 0
        backoff = 0.0
        extra = {'round': task.round_num}

        while True:
            attempt_number += 1
            started_at = time.time()
            completed, outcome, sent = await self._attempt(task, operation)
            finished_at = time.time()

            if not completed:
                reason = "cancelled while in flight" if sent else "cancelled before send"
                outcome = TransientFailure(reason=reason)
                attempts.append((attempt_number, started_at, finished_at, backoff, outcome, sent))
                state = TaskState.CANCELLED
                break

            attempts.append((attempt_number, started_at, finished_at, backoff, outcome, sent))

            if isinstance(outcome, Committed):
                state = TaskState.COMMITTED
                break
            if isinstance(outcome, FatalFailure):
                self.logger.error(
                    f"Fatal failure for {task.identity.address}: {outcome.reason}",
                    extra=extra
                )
                state = TaskState.FATAL_FAILURE
                break
            if not self.retry_policy.should_retry(outcome, attempt_number, max_retries):
                self.logger.error(
                    f"Retries exhausted for {task.identity.address} after "
                    f"{attempt_number} attempts: {outcome.reason}",
                    extra=extra
                )
                state = TaskState.RETRIES_EXHAUSTED
                break

            backoff = self.retry_policy.next_delay(attempt_number)
            self.logger.warning(
                f"Attempt {attempt_number}/{max_retries} for {task.identity.address} failed "
                f"({outcome.reason}), retrying in {backoff:.2f}s",
                extra=extra
            )
            if not await cancellable_sleep(backoff, self._cancel_event):
                state = TaskState.CANCELLED
                break

        last = len(attempts)
        return TaskResult(
            task=task,
            state=state,
            attempts=[
                AttemptRecord(
                    round_num=task.round_num,
                    client_index=task.client_index,
                    address=task.identity.address,
                    value=task.value,
                    attempt_number=number,
                    started_at=started,
                    finished_at=finished,
                    backoff_before=waited,
                    outcome=outcome,
                    terminal=number == last,
                    task_state=state if number == last else None,
                    sent=was_sent
                )
                for number, started, finished, waited, outcome, was_sent in attempts
            ]
        )

    async def _attempt(
        self,
        task: SubmissionTask,
        operation: LedgerOperation
    ) -> Tuple[bool, Optional[TransactionOutcome], bool]:
        """Run one attempt.

        Returns:
            (completed, outcome, sent). completed is False and outcome None
            if cancellation interrupted the attempt; sent tells whether the
            write reached the ledger adapter before that. Timeouts and
            adapter exceptions are transient.
        """
        timeout = self.config.per_attempt_timeout
        sent = asyncio.Event()
        try:
            completed, outcome = await wait_or_cancel(
                self._send_once(task, operation, sent), self._cancel_event
            )
        except asyncio.TimeoutError:
            return True, TransientFailure(reason=f"attempt timed out after {timeout}s"), True
        except Exception as e:
            self.logger.warning(
                f"Ledger adapter raised for {task.identity.address}: {e!r}",
                extra={'round': task.round_num}
            )
            return True, TransientFailure(reason=f"{type(e).__name__}: {e}"), True

        if completed and not is_outcome(outcome):
            return True, FatalFailure(
                reason=f"ledger adapter returned {type(outcome).__name__}, not a transaction outcome"
            ), True
        return completed, outcome, sent.is_set()

    async def _send_once(
        self,
        task: SubmissionTask,
        operation: LedgerOperation,
        sent: asyncio.Event
    ) -> TransactionOutcome:
        async with self._gate:
            async with asyncio.timeout(self.config.per_attempt_timeout):
                sent.set()
                return await operation.send(task)

    # ─────────────── reconciliation read ───────────────

    async def _read_round(
        self,
        round_num: int,
        operation: LedgerOperation,
        addresses: List[str]
    ) -> Tuple[Optional[list], Optional[str], Optional[float]]:
        """Read the round back. Not interrupted by cancellation."""
        timeout = self.config.effective_read_timeout
        started = time.monotonic()
        try:
            rows = await asyncio.wait_for(operation.read(round_num, addresses), timeout=timeout)
        except asyncio.TimeoutError:
            error = ReconciliationError(round_num, f"read timed out after {timeout}s")
        except Exception as e:
            error = ReconciliationError(round_num, f"{type(e).__name__}: {e}")
        else:
            return list(rows), None, time.monotonic() - started

        self.logger.error(str(error), extra={'round': round_num})
        return None, str(error), time.monotonic() - started

    def _log_round(self, result: RoundResult) -> None:
        extra = {'round': result.round_num}
        label = "Registration" if result.round_num == REGISTRATION_ROUND else f"Round {result.round_num}"
        self.logger.info(
            f"{label}: {result.committed} committed, "
            f"{result.already_recorded} already recorded, "
            f"{result.failed} failed, {result.skipped} skipped, "
            f"gas {result.total_gas_used}",
            extra=extra
        )
        if result.degraded:
            self.logger.warning(f"{label} degraded: {result.read_error}", extra=extra)
        for entry in result.inconsistencies:
            self.logger.warning(
                f"Reconciliation {entry.status.value} for {entry.address} "
                f"(submitted={entry.submitted_value}, recorded={entry.recorded_value})",
                extra=extra
            )


async def run_rounds(
    start_round: int,
    end_round: int,
    clients: Clients,
    value_source: ValueSource,
    ledger: LedgerClient,
    metrics_sink: MetricsSink,
    config: Optional[OrchestratorConfig] = None,
    cancel_event: Optional[asyncio.Event] = None
) -> List[RoundResult]:
    """Run a range of rounds with a fresh orchestrator"""
    orchestrator = SubmissionOrchestrator(config=config)
    return await orchestrator.run_rounds(
        start_round, end_round, clients, value_source, ledger, metrics_sink,
        cancel_event=cancel_event
    )


async def register_clients(
    clients: Clients,
    ledger: LedgerClient,
    metrics_sink: MetricsSink,
    config: Optional[OrchestratorConfig] = None,
    cancel_event: Optional[asyncio.Event] = None
) -> RoundResult:
    """Register clients with a fresh orchestrator"""
    orchestrator = SubmissionOrchestrator(config=config)
    return await orchestrator.register_clients(
        clients, ledger, metrics_sink, cancel_event=cancel_event
    )
