from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from ..core import metrics
from ..core.logging import get_logger

logger = get_logger(name=__name__)

SaveJob = Callable[[], Awaitable[None]]
Sleeper = Callable[[float], Awaitable[None]]


class CoalescingSaveQueue:
    """Persistence queue keeping at most one pending write per target.

    Enqueuing a job for a target that already has one pending replaces it, so
    a burst of updates collapses into a single write of the latest state.
    One worker drains the queue, which keeps writes to a target strictly
    sequential, and waits ``min_interval`` seconds after every write.
    """

    def __init__(self, *, min_interval: float = 0.05, sleep: Sleeper | None = None) -> None:
        self._min_interval = max(0.0, min_interval)
        self._sleep: Sleeper = sleep or asyncio.sleep
        self._pending: dict[str, SaveJob] = {}
        self._worker: asyncio.Task[None] | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def pending_targets(self) -> list[str]:
        return list(self._pending)

    def enqueue(self, target: str, job: SaveJob) -> None:
        coalesced = target in self._pending
        # Re-insert so the most recently requested target is written last.
        self._pending.pop(target, None)
        self._pending[target] = job
        self._idle.clear()
        if coalesced:
            logger.debug("save_request_coalesced", target=target)
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        while self._pending:
            target = next(iter(self._pending))
            job = self._pending.pop(target)
            try:
                await job()
            except Exception as exc:
                metrics.record_persist(target=target, success=False)
                logger.error("save_job_failed", target=target, error=str(exc))
            else:
                metrics.record_persist(target=target, success=True)
            if self._min_interval:
                await self._sleep(self._min_interval)
        self._idle.set()

    async def flush(self) -> None:
        """Wait until every pending write, including ones queued meanwhile, has run."""

        while not self._idle.is_set():
            if self._worker is None or self._worker.done():
                if not self._pending:
                    self._idle.set()
                    break
                self._worker = asyncio.get_running_loop().create_task(self._drain())
            await self._idle.wait()

    async def stop(self) -> None:
        await self.flush()
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
        self._worker = None

    @asynccontextmanager
    async def lifecycle(self) -> AsyncIterator["CoalescingSaveQueue"]:
        try:
            yield self
        finally:
            await self.stop()


__all__ = ["CoalescingSaveQueue", "SaveJob"]
