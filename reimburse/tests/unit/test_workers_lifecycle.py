from __future__ import annotations

import asyncio

import pytest

from reimburse.core.errors import WorkerAlreadyRunningError
from reimburse.workers.base import PollingWorker
from reimburse.workers.manager import WorkerManager


class _CountingWorker(PollingWorker[int]):
    name = "counting"

    def __init__(self, coordinator, items=None, *, name: str | None = None, **kwargs) -> None:
        super().__init__(
            coordinator,
            poll_interval_s=kwargs.get("poll_interval_s", 0.01),
            batch_size=10,
            item_timeout_s=kwargs.get("item_timeout_s", 1.0),
        )
        if name:
            self.name = name
        self.items = list(items or [])
        self.seen: list[int] = []
        self.ticks = 0

    async def fetch_pending(self, session, limit):
        self.ticks += 1
        batch, self.items = self.items[:limit], self.items[limit:]
        return batch

    async def process(self, item: int) -> None:
        if item < 0:
            raise ValueError(f"bad item {item}")
        if item == 0:
            await asyncio.sleep(5)
        self.seen.append(item)


class _BrokenStartWorker(_CountingWorker):
    async def start(self) -> None:
        raise RuntimeError("cannot start")


async def _wait_for_ticks(worker: _CountingWorker, ticks: int) -> None:
    for _ in range(200):
        if worker.ticks >= ticks:
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"worker did not reach {ticks} ticks")


@pytest.mark.asyncio
async def test_run_once_counts_failures_without_raising(coordinator) -> None:
    worker = _CountingWorker(coordinator, [1, -1, 2], item_timeout_s=0.05)

    assert await worker.run_once() == 3

    stats = worker.stats()
    assert worker.seen == [1, 2]
    assert stats.processed_count == 2
    assert stats.failed_count == 1
    assert "bad item -1" in stats.last_error
    assert stats.last_tick_at is not None


@pytest.mark.asyncio
async def test_item_timeout_calls_handler(coordinator) -> None:
    timed_out: list[int] = []

    class _Worker(_CountingWorker):
        async def on_timeout(self, item: int) -> None:
            timed_out.append(item)

    worker = _Worker(coordinator, [0, 3], item_timeout_s=0.05)
    await worker.run_once()

    assert timed_out == [0]
    assert worker.seen == [3]
    assert worker.stats().failed_count == 1


@pytest.mark.asyncio
async def test_start_twice_raises_and_keeps_loop(coordinator) -> None:
    worker = _CountingWorker(coordinator)
    await worker.start()
    try:
        with pytest.raises(WorkerAlreadyRunningError):
            await worker.start()
        assert worker.is_running
        await _wait_for_ticks(worker, 2)
    finally:
        await worker.stop()
    assert not worker.is_running
    # A second stop is a no-op.
    await worker.stop()


@pytest.mark.asyncio
async def test_worker_can_restart_after_stop(coordinator) -> None:
    worker = _CountingWorker(coordinator)
    await worker.start()
    await worker.stop()
    await worker.start()
    assert worker.is_running
    await worker.stop()


@pytest.mark.asyncio
async def test_manager_skips_workers_that_fail_to_start(coordinator) -> None:
    manager = WorkerManager()
    good = _CountingWorker(coordinator, name="good")
    manager.register(good)
    manager.register(_BrokenStartWorker(coordinator, name="broken"))

    started = await manager.start_all()
    try:
        assert started == ["good"]
        assert manager.is_running("good")
        assert not manager.is_running("broken")
        assert not manager.is_running("unknown")
    finally:
        await manager.stop_all()
    assert not manager.is_running("good")
    assert [stats.name for stats in manager.stats()] == ["good", "broken"]


def test_manager_rejects_duplicate_names(coordinator) -> None:
    manager = WorkerManager()
    manager.register(_CountingWorker(coordinator, name="same"))
    with pytest.raises(ValueError):
        manager.register(_CountingWorker(coordinator, name="same"))
