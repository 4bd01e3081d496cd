from __future__ import annotations

import logging

from reimburse.workers.base import PollingWorker, WorkerStats


logger = logging.getLogger(__name__)


class WorkerManager:
    def __init__(self) -> None:
        self._workers: dict[str, PollingWorker] = {}

    def register(self, worker: PollingWorker) -> None:
        if worker.name in self._workers:
            raise ValueError(f"worker already registered: {worker.name}")
        self._workers[worker.name] = worker

    @property
    def workers(self) -> list[PollingWorker]:
        return list(self._workers.values())

    async def start_all(self) -> list[str]:
        started: list[str] = []
        for name, worker in self._workers.items():
            try:
                await worker.start()
            except Exception:  # noqa: BLE001 - one worker failing to start must not block the rest.
                logger.exception("worker_start_failed name=%s", name)
                continue
            started.append(name)
        logger.info("workers_started count=%s names=%s", len(started), ",".join(started))
        return started

    async def stop_all(self) -> None:
        for worker in self._workers.values():
            await worker.stop()
        logger.info("workers_stopped count=%s", len(self._workers))

    def is_running(self, name: str) -> bool:
        worker = self._workers.get(name)
        return worker is not None and worker.is_running

    def stats(self) -> list[WorkerStats]:
        return [worker.stats() for worker in self._workers.values()]
