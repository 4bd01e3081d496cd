from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from reimburse.core.errors import InvariantViolationError, NotFoundError
from reimburse.domain.constants import TaskStatus, TaskType
from reimburse.domain.models import ApprovalTask, utc_now
from reimburse.persistence.repos import tasks as tasks_repo
from reimburse.persistence.transaction import TransactionCoordinator


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemoteTask:
    # A review task as reported by the approval platform's task list.
    external_task_id: str
    status: str
    user_id: str | None = None
    open_id: str | None = None
    node_id: str | None = None
    node_name: str | None = None
    start_time: datetime | None = None


class TaskService:
    def __init__(self, coordinator: TransactionCoordinator) -> None:
        self._tx = coordinator

    async def create_ai_review_task(
        self,
        instance_id: int,
        assignee_user_id: str,
        *,
        session: AsyncSession | None = None,
    ) -> ApprovalTask:
        async with self._tx.transaction(session) as active:
            existing = await tasks_repo.get_ai_review_task(active, instance_id)
            if existing is not None:
                logger.info("ai_review_task_exists instance_id=%s task_id=%s", instance_id, existing.id)
                return existing
            # The AI review task starts as the instance's only current task.
            await tasks_repo.clear_current(active, instance_id)
            task = await tasks_repo.create_task(
                active,
                instance_id=instance_id,
                task_type=TaskType.AI_REVIEW,
                sequence_number=0,
                status=TaskStatus.PENDING,
                assignee_user_id=assignee_user_id,
                start_time=utc_now(),
                is_current=True,
                is_ai_decision=True,
            )
        logger.info("ai_review_task_created instance_id=%s task_id=%s", instance_id, task.id)
        return task

    async def create_human_review_task(
        self,
        instance_id: int,
        external_task_id: str,
        *,
        node_id: str | None = None,
        node_name: str | None = None,
        assignee_user_id: str | None = None,
        assignee_open_id: str | None = None,
        status: str = TaskStatus.PENDING,
        start_time: datetime | None = None,
        session: AsyncSession | None = None,
    ) -> ApprovalTask:
        if not external_task_id:
            raise InvariantViolationError("human review tasks require an external task id")
        async with self._tx.transaction(session) as active:
            existing = await tasks_repo.get_by_external_id(active, external_task_id)
            if existing is not None:
                if existing.instance_id != instance_id:
                    raise InvariantViolationError(
                        f"external task {external_task_id} belongs to instance {existing.instance_id}"
                    )
                return existing
            existing_tasks = await tasks_repo.list_tasks(active, instance_id)
            # Sequence 0 stays reserved for the AI review even before it exists.
            sequence = max((task.sequence_number for task in existing_tasks), default=0) + 1
            task = await tasks_repo.create_task(
                active,
                instance_id=instance_id,
                task_type=TaskType.HUMAN_REVIEW,
                sequence_number=sequence,
                status=status,
                external_task_id=external_task_id,
                node_id=node_id,
                node_name=node_name,
                assignee_user_id=assignee_user_id,
                assignee_open_id=assignee_open_id,
                start_time=start_time or utc_now(),
            )
        logger.info(
            "human_review_task_created instance_id=%s task_id=%s external_task_id=%s sequence=%s",
            instance_id,
            task.id,
            external_task_id,
            sequence,
        )
        return task

    async def set_current_task(
        self,
        instance_id: int,
        task_id: int,
        *,
        session: AsyncSession | None = None,
    ) -> None:
        async with self._tx.transaction(session) as active:
            task = await tasks_repo.get_task(active, task_id)
            if task is None:
                raise NotFoundError("task", task_id)
            if task.instance_id != instance_id:
                raise InvariantViolationError(f"task {task_id} does not belong to instance {instance_id}")
            # Clear and set in one transaction so readers never see zero or two current tasks.
            await tasks_repo.clear_current(active, instance_id)
            await tasks_repo.set_current(active, task_id)
        logger.info("current_task_set instance_id=%s task_id=%s", instance_id, task_id)

    async def complete_task(
        self,
        task_id: int,
        *,
        decision: str,
        confidence: float | None = None,
        result_data: dict[str, Any] | None = None,
        violations: list[str] | None = None,
        completed_by: str,
        session: AsyncSession | None = None,
    ) -> ApprovalTask:
        async with self._tx.transaction(session) as active:
            task = await tasks_repo.get_task(active, task_id)
            if task is None:
                raise NotFoundError("task", task_id)
            await tasks_repo.complete_task(
                active,
                task_id,
                decision=decision,
                confidence=confidence,
                result_data=result_data,
                violations=list(violations) if violations is not None else None,
                completed_by=completed_by,
            )
        logger.info("task_completed task_id=%s decision=%s", task_id, decision)
        return task

    async def update_task_status(
        self, task_id: int, status: str, *, session: AsyncSession | None = None
    ) -> None:
        async with self._tx.transaction(session) as active:
            if await tasks_repo.get_task(active, task_id) is None:
                raise NotFoundError("task", task_id)
            await tasks_repo.update_status(active, task_id, status=status)
        logger.info("task_status_updated task_id=%s status=%s", task_id, status)

    async def get_tasks_for_instance(self, instance_id: int) -> list[ApprovalTask]:
        async with self._tx.transaction() as active:
            return await tasks_repo.list_tasks(active, instance_id)

    async def get_current_task(self, instance_id: int) -> ApprovalTask | None:
        async with self._tx.transaction() as active:
            return await tasks_repo.get_current_task(active, instance_id)

    async def get_ai_review_task(
        self, instance_id: int, *, session: AsyncSession | None = None
    ) -> ApprovalTask | None:
        async with self._tx.transaction(session) as active:
            return await tasks_repo.get_ai_review_task(active, instance_id)

    async def get_by_id(self, task_id: int, *, session: AsyncSession | None = None) -> ApprovalTask:
        async with self._tx.transaction(session) as active:
            task = await tasks_repo.get_task(active, task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        return task

    async def sync_remote_tasks(
        self,
        instance_id: int,
        remote_tasks: Iterable[RemoteTask],
        *,
        session: AsyncSession | None = None,
    ) -> int:
        """Reconcile the platform's task list with local tasks.

        Runs as one unit: any failure rolls back every change from the batch.
        Returns the number of tasks created or updated.
        """
        remote_tasks = list(remote_tasks)
        changed = 0
        async with self._tx.transaction(session) as active:
            for remote in remote_tasks:
                existing = await tasks_repo.get_by_external_id(active, remote.external_task_id)
                if existing is not None:
                    if existing.instance_id != instance_id:
                        raise InvariantViolationError(
                            f"external task {remote.external_task_id} belongs to instance {existing.instance_id}"
                        )
                    if existing.status != remote.status:
                        await tasks_repo.update_status(active, existing.id, status=remote.status)
                        changed += 1
                    continue
                await self.create_human_review_task(
                    instance_id,
                    remote.external_task_id,
                    node_id=remote.node_id,
                    node_name=remote.node_name,
                    assignee_user_id=remote.user_id,
                    assignee_open_id=remote.open_id,
                    status=remote.status,
                    start_time=remote.start_time,
                    session=active,
                )
                changed += 1
        logger.info(
            "remote_tasks_synced instance_id=%s task_count=%s changed=%s", instance_id, len(remote_tasks), changed
        )
        return changed
