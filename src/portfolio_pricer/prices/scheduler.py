"""Bounded request scheduler — one instance per upstream provider.

Runs queued async producers with at most ``limit`` in flight, an optional
fixed delay between dispatches, and id-based de-duplication. Results are
delivered in completion order. A failing producer is logged and recorded,
never raised, so one bad symbol cannot halt a batch.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

ResultCallback = Callable[[Any], Any]

_DONE = object()


class BoundedRequestScheduler(Generic[T]):
    """Concurrency-limited work queue with per-id de-duplication.

    Parameters
    ----------
    name : str
        Used in log messages (usually the provider name).
    limit : int
        Maximum producers in flight at once.
    delay : float
        Seconds to wait between consecutive dispatches.
    """

    def __init__(self, name: str, limit: int = 1, delay: float = 0.0) -> None:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self.name = name
        self._limit = limit
        self._delay = delay
        self._queue: deque[tuple[str, Callable[[], Awaitable[T | None]]]] = deque()
        self._queued_ids: set[str] = set()
        self._in_flight: set[str] = set()
        self._runner: asyncio.Task[None] | None = None
        self.failures: dict[str, BaseException] = {}

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def idle(self) -> bool:
        return not self._queue and not self._in_flight

    def add(self, job_id: str, producer: Callable[[], Awaitable[T | None]]) -> bool:
        """Queue `producer` under `job_id`.

        Returns False (and does nothing) if the id is already queued or in
        flight.
        """
        if job_id in self._queued_ids or job_id in self._in_flight:
            logger.debug("%s: %s already scheduled, skipping", self.name, job_id)
            return False
        self._queue.append((job_id, producer))
        self._queued_ids.add(job_id)
        return True

    def clear(self) -> None:
        """Drop queued producers. In-flight producers run to completion."""
        self._queue.clear()
        self._queued_ids.clear()

    async def start(self, on_result: ResultCallback | None = None) -> None:
        """Run until the queue is empty and nothing is in flight.

        `on_result` is called with each non-None result as it completes and
        may be a coroutine function. If a drain is already running, this
        waits for it instead of starting a second one; the new callback is
        not attached to it.
        """
        if self._runner is not None and not self._runner.done():
            await asyncio.shield(self._runner)
            return
        if self.idle:
            return
        self._runner = asyncio.ensure_future(self._drain(on_result))
        await asyncio.shield(self._runner)

    async def stream(self) -> AsyncIterator[T]:
        """Run the queue and yield results in completion order."""
        results: asyncio.Queue[Any] = asyncio.Queue()
        runner = asyncio.ensure_future(self.start(results.put_nowait))
        runner.add_done_callback(lambda _: results.put_nowait(_DONE))
        while True:
            item = await results.get()
            if item is _DONE:
                break
            yield item
        await runner

    async def _drain(self, on_result: ResultCallback | None) -> None:
        tasks: set[asyncio.Task[None]] = set()
        dispatched = 0
        while self._queue or tasks:
            while self._queue and len(self._in_flight) < self._limit:
                if dispatched and self._delay:
                    await asyncio.sleep(self._delay)
                    if not self._queue:
                        break
                job_id, producer = self._queue.popleft()
                self._queued_ids.discard(job_id)
                self._in_flight.add(job_id)
                tasks.add(asyncio.ensure_future(self._run(job_id, producer, on_result)))
                dispatched += 1
            if tasks:
                _, tasks = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)

        if dispatched:
            logger.debug(
                "%s: drained %d task(s), %d failed", self.name, dispatched, len(self.failures)
            )

    async def _run(
        self,
        job_id: str,
        producer: Callable[[], Awaitable[T | None]],
        on_result: ResultCallback | None,
    ) -> None:
        try:
            result = await producer()
            if result is not None and on_result is not None:
                outcome = on_result(result)
                if inspect.isawaitable(outcome):
                    await outcome
        except Exception as e:
            logger.warning("%s: task %s failed: %s", self.name, job_id, e, exc_info=True)
            self.failures[job_id] = e
        finally:
            self._in_flight.discard(job_id)
