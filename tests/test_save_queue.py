from __future__ import annotations

import asyncio

import pytest

from switchboard.state.save_queue import CoalescingSaveQueue


@pytest.mark.asyncio
async def test_repeated_requests_collapse_to_latest_job() -> None:
    queue = CoalescingSaveQueue(min_interval=0)
    gate = asyncio.Event()
    written: list[str] = []

    async def blocking_first() -> None:
        await gate.wait()
        written.append("first")

    def make_job(label: str):
        async def job() -> None:
            written.append(label)

        return job

    queue.enqueue("status", blocking_first)
    await asyncio.sleep(0)
    # The first write is in flight; the next three requests coalesce into one.
    queue.enqueue("status", make_job("second"))
    queue.enqueue("status", make_job("third"))
    queue.enqueue("status", make_job("fourth"))
    assert queue.pending_targets == ["status"]

    gate.set()
    await queue.flush()

    assert written == ["first", "fourth"]


@pytest.mark.asyncio
async def test_failed_write_does_not_stop_queue() -> None:
    queue = CoalescingSaveQueue(min_interval=0)
    written: list[str] = []

    async def failing() -> None:
        raise OSError("disk full")

    async def tools_job() -> None:
        written.append("tools")

    queue.enqueue("status", failing)
    queue.enqueue("tools", tools_job)
    await queue.flush()

    assert written == ["tools"]
    assert queue.pending_targets == []


@pytest.mark.asyncio
async def test_writes_are_sequential_and_spaced() -> None:
    sleeps: list[float] = []
    active = 0
    max_active = 0

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    queue = CoalescingSaveQueue(min_interval=0.05, sleep=fake_sleep)

    def make_job():
        async def job() -> None:
            nonlocal active, max_active
            active += 1
            max_active = max(max_active, active)
            await asyncio.sleep(0)
            active -= 1

        return job

    queue.enqueue("status", make_job())
    queue.enqueue("tools", make_job())
    await queue.flush()

    assert max_active == 1
    assert sleeps == [0.05, 0.05]


@pytest.mark.asyncio
async def test_flush_includes_jobs_enqueued_during_drain() -> None:
    queue = CoalescingSaveQueue(min_interval=0)
    written: list[str] = []

    async def late() -> None:
        written.append("late")

    async def first() -> None:
        written.append("first")
        queue.enqueue("tools", late)

    queue.enqueue("status", first)
    await queue.flush()

    assert written == ["first", "late"]


@pytest.mark.asyncio
async def test_lifecycle_drains_on_exit() -> None:
    written: list[str] = []

    async def job() -> None:
        written.append("status")

    async with CoalescingSaveQueue(min_interval=0).lifecycle() as queue:
        queue.enqueue("status", job)

    assert written == ["status"]
