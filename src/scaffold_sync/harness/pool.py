"""Async utilities for running blocking update work in a bounded pool."""

import asyncio
import logging
from typing import Any, Callable, Coroutine, Sequence, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

#: Seconds a timed-out worker gets to stop before a warning is logged.
DEFAULT_GRACE = 30.0


class WorkerPool:
    """Run synchronous callables in threads, at most *max_parallel* at a time.

    A thread cannot be killed, so a timed-out call keeps its slot until its
    thread has returned.  Each pool owns its semaphore; create it inside the
    running event loop.
    """

    def __init__(self, max_parallel: int = 4, grace: float = DEFAULT_GRACE) -> None:
        if max_parallel < 1:
            raise ValueError(f"max_parallel must be at least 1, got {max_parallel}")
        self.max_parallel = max_parallel
        self.grace = grace
        self._semaphore = asyncio.Semaphore(max_parallel)
        logger.debug("Worker pool initialized: max_parallel=%d", max_parallel)

    async def run(
        self,
        func: Callable[..., T],
        *args: Any,
        timeout: float | None = None,
        on_timeout: Callable[[], None] | None = None,
    ) -> T:
        """Run ``func(*args)`` in a thread once a slot is free.

        The timeout starts when the slot is acquired, so queueing time is
        never charged to the unit of work.  On timeout *on_timeout* is called
        (it should tell *func* to stop), then the slot stays held until the
        thread returns.

        Raises:
            asyncio.TimeoutError: *func* did not finish within *timeout*.
        """
        async with self._semaphore:
            worker = asyncio.ensure_future(asyncio.to_thread(func, *args))
            try:
                return await asyncio.wait_for(asyncio.shield(worker), timeout)
            except asyncio.TimeoutError:
                if on_timeout is not None:
                    on_timeout()
                await self._drain(worker)
                raise

    async def _drain(self, worker: "asyncio.Future[Any]") -> None:
        done, _ = await asyncio.wait({worker}, timeout=self.grace)
        if not done:
            logger.warning(
                "Timed-out worker still running after %gs; its slot stays held",
                self.grace,
            )
            await asyncio.wait({worker})
        exc = worker.exception()
        if exc is not None:
            logger.debug("Timed-out worker ended with %r", exc)


async def gather_ordered(
    coros: Sequence[Coroutine[Any, Any, T]],
) -> list[T]:
    """Run coroutines concurrently and return results in input order.

    Exceptions propagate from the first failure.
    """
    return list(await asyncio.gather(*coros))
