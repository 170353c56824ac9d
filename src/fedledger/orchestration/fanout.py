"""Fan-out, barrier and cancellation plumbing for submission rounds."""

from contextlib import nullcontext
from typing import Any, Awaitable, List, Optional, Sequence, Tuple, TypeVar
import asyncio


T = TypeVar('T')


async def gather_all(coros: Sequence[Awaitable[T]]) -> List[T]:
    """Run coroutines concurrently and wait for every one of them.

    A structured join: results come back in input order once all tasks
    have finished. The coroutines are expected to contain their own
    errors; if one raises anyway, the TaskGroup cancels its siblings and
    the error propagates.
    """
    if not coros:
        return []
    async with asyncio.TaskGroup() as tg:
        tasks = [tg.create_task(c) for c in coros]
    return [t.result() for t in tasks]


async def wait_or_cancel(
    aw: Awaitable[T],
    cancel_event: Optional[asyncio.Event]
) -> Tuple[bool, Optional[T]]:
    """Await ``aw`` unless ``cancel_event`` fires first.

    Returns:
        (True, result) if the awaitable finished, (False, None) if it was
        interrupted by cancellation. Exceptions raised by the awaitable
        propagate.
    """
    if cancel_event is None:
        return True, await aw

    work = asyncio.ensure_future(aw)
    if cancel_event.is_set():
        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
        return False, None

    stopper = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait({work, stopper}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stopper.cancel()
        if not work.done():
            work.cancel()
            await asyncio.gather(work, return_exceptions=True)

    if work.cancelled():
        return False, None
    return True, work.result()


async def cancellable_sleep(delay: float, cancel_event: Optional[asyncio.Event]) -> bool:
    """Sleep for ``delay`` seconds.

    Returns:
        True if the full delay elapsed, False if cancellation cut it short
    """
    if cancel_event is None:
        await asyncio.sleep(delay)
        return True
    if cancel_event.is_set():
        return False
    if delay <= 0:
        return True

    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return True
    return False


def ledger_gate(limit: Optional[int]) -> Any:
    """Async context manager bounding concurrent ledger calls.

    Must be created inside the running event loop.
    """
    if limit is None:
        return nullcontext()
    return asyncio.Semaphore(limit)
