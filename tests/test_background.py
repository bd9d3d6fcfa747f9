"""Background task runner tests."""

import asyncio

import pytest

from shortlinks.background import BackgroundTaskRunner


@pytest.mark.asyncio
async def test_schedule_runs_without_awaiting() -> None:
    runner = BackgroundTaskRunner()
    started = asyncio.Event()
    release = asyncio.Event()

    async def work() -> None:
        started.set()
        await release.wait()

    assert runner.schedule(work) is True
    await asyncio.wait_for(started.wait(), timeout=1.0)
    assert runner.pending == 1

    release.set()
    await runner.drain(timeout=1.0)
    assert runner.pending == 0


@pytest.mark.asyncio
async def test_failures_are_contained() -> None:
    runner = BackgroundTaskRunner()

    async def boom() -> None:
        raise RuntimeError("database on fire")

    runner.schedule(boom)
    await runner.drain(timeout=1.0)

    assert runner.pending == 0


@pytest.mark.asyncio
async def test_drops_work_when_full() -> None:
    runner = BackgroundTaskRunner(max_pending=2)
    release = asyncio.Event()

    async def wait() -> None:
        await release.wait()

    assert runner.schedule(wait) is True
    assert runner.schedule(wait) is True
    assert runner.schedule(wait) is False
    assert runner.pending == 2

    release.set()
    await runner.drain(timeout=1.0)


@pytest.mark.asyncio
async def test_drain_cancels_stragglers() -> None:
    runner = BackgroundTaskRunner()
    cancelled = asyncio.Event()

    async def forever() -> None:
        try:
            await asyncio.sleep(60)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    runner.schedule(forever)
    await asyncio.sleep(0)
    await runner.drain(timeout=0.05)

    assert cancelled.is_set()
    assert runner.pending == 0
