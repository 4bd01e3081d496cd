from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime
from threading import Lock
from typing import Any, Generic, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from reimburse.core.errors import WorkerAlreadyRunningError
from reimburse.domain.models import utc_now
from reimburse.persistence.transaction import TransactionCoordinator
from reimburse.services.telemetry import increment_counter, set_gauge


logger = logging.getLogger(__name__)

ItemT = TypeVar("ItemT")


@dataclass(frozen=True)
class WorkerStats:
    name: str
    running: bool
    processed_count: int
    failed_count: int
    last_error: str | None
    last_tick_at: datetime | None
    started_at: datetime | None


class PollingWorker(Generic[ItemT]):
    """Single cancellable poll loop over a batch of pending items.

    Subclasses supply ``fetch_pending`` and ``process``; a per-item timeout
    that fires calls ``on_timeout`` so the item gets a durable failure status.
    Per-item failures only move counters; they never escape ``run_once``.
    """

    name = "worker"

    def __init__(
        self,
        coordinator: TransactionCoordinator,
        *,
        poll_interval_s: float,
        batch_size: int,
        item_timeout_s: float,
    ) -> None:
        self._tx = coordinator
        self.poll_interval_s = max(0.01, float(poll_interval_s))
        self.batch_size = max(1, int(batch_size))
        self.item_timeout_s = max(0.01, float(item_timeout_s))
        self._task: asyncio.Task[None] | None = None
        self._lock = Lock()
        self._processed = 0
        self._failed = 0
        self._last_error: str | None = None
        self._last_tick_at: datetime | None = None
        self._started_at: datetime | None = None

    async def fetch_pending(self, session: AsyncSession, limit: int) -> list[ItemT]:
        raise NotImplementedError

    async def process(self, item: ItemT) -> None:
        raise NotImplementedError

    async def on_timeout(self, item: ItemT) -> None:
        return None

    def describe(self, item: ItemT) -> Any:
        return getattr(item, "id", item)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            raise WorkerAlreadyRunningError(f"{self.name} is already running")
        with self._lock:
            self._started_at = utc_now()
        self._task = asyncio.create_task(self._loop(), name=f"{self.name}-loop")
        logger.info(
            "worker_started name=%s interval_s=%s batch_size=%s", self.name, self.poll_interval_s, self.batch_size
        )

    async def stop(self) -> None:
        task = self._task
        if task is None:
            return
        self._task = None
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("worker_stopped name=%s", self.name)

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception:  # noqa: BLE001 - keep loop alive while surfacing errors in logs.
                logger.exception("worker_cycle_failed name=%s", self.name)
                self._record_failure("cycle failed")
            await asyncio.sleep(self.poll_interval_s)

    async def run_once(self) -> int:
        """Process one batch; returns how many items were attempted."""
        async with self._tx.transaction() as session:
            items = await self.fetch_pending(session, self.batch_size)
        with self._lock:
            self._last_tick_at = utc_now()
        set_gauge(f"worker.{self.name}.last_batch_size", len(items))
        for item in items:
            await self._process_one(item)
        return len(items)

    async def _process_one(self, item: ItemT) -> None:
        key = self.describe(item)
        try:
            await asyncio.wait_for(self.process(item), timeout=self.item_timeout_s)
        except asyncio.TimeoutError:
            logger.warning("worker_item_timeout name=%s item=%s timeout_s=%s", self.name, key, self.item_timeout_s)
            try:
                await self.on_timeout(item)
            except Exception:  # noqa: BLE001 - the timeout is already counted as the failure.
                logger.exception("worker_timeout_handler_failed name=%s item=%s", self.name, key)
            self._record_failure(f"item {key}: timed out after {self.item_timeout_s}s")
        except Exception as exc:  # noqa: BLE001 - per-item failures are recorded, not propagated.
            logger.warning("worker_item_failed name=%s item=%s error=%s", self.name, key, exc)
            self._record_failure(f"item {key}: {exc}")
        else:
            with self._lock:
                self._processed += 1
            increment_counter(f"worker.{self.name}.processed")

    def _record_failure(self, message: str) -> None:
        with self._lock:
            self._failed += 1
            self._last_error = message
        increment_counter(f"worker.{self.name}.failed")

    def stats(self) -> WorkerStats:
        with self._lock:
            return WorkerStats(
                name=self.name,
                running=self.is_running,
                processed_count=self._processed,
                failed_count=self._failed,
                last_error=self._last_error,
                last_tick_at=self._last_tick_at,
                started_at=self._started_at,
            )
