from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from reimburse.domain.constants import TaskStatus, TaskType
from reimburse.domain.models import ApprovalTask, utc_now


async def create_task(
    session: AsyncSession,
    *,
    instance_id: int,
    task_type: str,
    sequence_number: int,
    status: str,
    external_task_id: str | None = None,
    node_id: str | None = None,
    node_name: str | None = None,
    assignee_user_id: str | None = None,
    assignee_open_id: str | None = None,
    start_time: datetime | None = None,
    is_current: bool = False,
    is_ai_decision: bool = False,
) -> ApprovalTask:
    task = ApprovalTask(
        instance_id=instance_id,
        task_type=task_type,
        sequence_number=sequence_number,
        status=status,
        external_task_id=external_task_id,
        node_id=node_id,
        node_name=node_name,
        assignee_user_id=assignee_user_id,
        assignee_open_id=assignee_open_id,
        start_time=start_time,
        is_current=is_current,
        is_ai_decision=is_ai_decision,
    )
    session.add(task)
    await session.flush()
    return task


async def get_task(session: AsyncSession, task_id: int) -> ApprovalTask | None:
    return await session.get(ApprovalTask, task_id)


async def get_by_external_id(session: AsyncSession, external_task_id: str) -> ApprovalTask | None:
    result = await session.execute(
        select(ApprovalTask).where(ApprovalTask.external_task_id == external_task_id)
    )
    return result.scalar_one_or_none()


async def get_ai_review_task(session: AsyncSession, instance_id: int) -> ApprovalTask | None:
    # The AI review always occupies sequence 0 for its instance.
    result = await session.execute(
        select(ApprovalTask).where(
            ApprovalTask.instance_id == instance_id,
            ApprovalTask.task_type == TaskType.AI_REVIEW,
            ApprovalTask.sequence_number == 0,
        )
    )
    return result.scalar_one_or_none()


async def list_tasks(session: AsyncSession, instance_id: int) -> list[ApprovalTask]:
    result = await session.execute(
        select(ApprovalTask)
        .where(ApprovalTask.instance_id == instance_id)
        .order_by(ApprovalTask.sequence_number, ApprovalTask.id)
    )
    return list(result.scalars().all())


async def get_current_task(session: AsyncSession, instance_id: int) -> ApprovalTask | None:
    result = await session.execute(
        select(ApprovalTask).where(
            ApprovalTask.instance_id == instance_id,
            ApprovalTask.is_current.is_(True),
        )
    )
    return result.scalars().first()


async def clear_current(session: AsyncSession, instance_id: int) -> None:
    await session.execute(
        update(ApprovalTask)
        .where(ApprovalTask.instance_id == instance_id, ApprovalTask.is_current.is_(True))
        .values(is_current=False, updated_at=utc_now())
        .execution_options(synchronize_session="fetch")
    )


async def set_current(session: AsyncSession, task_id: int) -> None:
    await session.execute(
        update(ApprovalTask)
        .where(ApprovalTask.id == task_id)
        .values(is_current=True, updated_at=utc_now())
        .execution_options(synchronize_session="fetch")
    )


async def update_status(session: AsyncSession, task_id: int, *, status: str) -> None:
    await session.execute(
        update(ApprovalTask)
        .where(ApprovalTask.id == task_id)
        .values(status=status, updated_at=utc_now())
        .execution_options(synchronize_session="fetch")
    )


async def complete_task(
    session: AsyncSession,
    task_id: int,
    *,
    decision: str,
    confidence: float | None,
    result_data: dict[str, Any] | None,
    violations: list[str] | None,
    completed_by: str,
) -> None:
    # The only writer of decision fields.
    now = utc_now()
    await session.execute(
        update(ApprovalTask)
        .where(ApprovalTask.id == task_id)
        .values(
            status=TaskStatus.COMPLETED,
            decision=decision,
            confidence=confidence,
            result_data=result_data,
            violations=violations,
            completed_by=completed_by,
            end_time=now,
            updated_at=now,
        )
        .execution_options(synchronize_session="fetch")
    )


async def mark_notification_sent(session: AsyncSession, task_id: int) -> bool:
    # Conditional write so two racing senders stamp the task at most once.
    result = await session.execute(
        update(ApprovalTask)
        .where(ApprovalTask.id == task_id, ApprovalTask.notification_sent_at.is_(None))
        .values(notification_sent_at=utc_now())
        .execution_options(synchronize_session="fetch")
    )
    return bool(result.rowcount)
