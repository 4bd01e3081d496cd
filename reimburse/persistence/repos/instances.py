from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from reimburse.domain.models import ApprovalInstance, utc_now


async def create_instance(
    session: AsyncSession,
    *,
    external_instance_id: str,
    status: str,
    form_data: dict[str, Any],
    applicant_user_id: str | None = None,
    department: str | None = None,
    submission_time: datetime | None = None,
) -> ApprovalInstance:
    instance = ApprovalInstance(
        external_instance_id=external_instance_id,
        status=status,
        form_data=form_data,
        applicant_user_id=applicant_user_id,
        department=department,
        submission_time=submission_time or utc_now(),
    )
    session.add(instance)
    # Flush so the generated id is available to history rows in the same transaction.
    await session.flush()
    return instance


async def get_instance(session: AsyncSession, instance_id: int) -> ApprovalInstance | None:
    return await session.get(ApprovalInstance, instance_id)


async def get_by_external_id(session: AsyncSession, external_instance_id: str) -> ApprovalInstance | None:
    result = await session.execute(
        select(ApprovalInstance).where(ApprovalInstance.external_instance_id == external_instance_id)
    )
    return result.scalar_one_or_none()


async def list_instances(session: AsyncSession, *, limit: int = 50, offset: int = 0) -> list[ApprovalInstance]:
    # Newest first with id as a stable tie-breaker for pagination.
    result = await session.execute(
        select(ApprovalInstance)
        .order_by(ApprovalInstance.created_at.desc(), ApprovalInstance.id.desc())
        .limit(max(1, limit))
        .offset(max(0, offset))
    )
    return list(result.scalars().all())


async def update_status(session: AsyncSession, instance_id: int, *, status: str) -> None:
    await session.execute(
        update(ApprovalInstance)
        .where(ApprovalInstance.id == instance_id)
        .values(status=status, updated_at=utc_now())
        .execution_options(synchronize_session="fetch")
    )


async def set_approval_time(session: AsyncSession, instance_id: int, approval_time: datetime) -> None:
    await session.execute(
        update(ApprovalInstance)
        .where(ApprovalInstance.id == instance_id)
        .values(approval_time=approval_time, updated_at=utc_now())
        .execution_options(synchronize_session="fetch")
    )


async def list_by_statuses(
    session: AsyncSession, statuses: list[str] | frozenset[str], *, limit: int
) -> list[ApprovalInstance]:
    # Least recently touched first so every instance gets polled in turn.
    result = await session.execute(
        select(ApprovalInstance)
        .where(ApprovalInstance.status.in_(list(statuses)))
        .order_by(ApprovalInstance.updated_at, ApprovalInstance.id)
        .limit(max(1, limit))
    )
    return list(result.scalars().all())


async def touch(session: AsyncSession, instance_id: int) -> None:
    await session.execute(
        update(ApprovalInstance)
        .where(ApprovalInstance.id == instance_id)
        .values(updated_at=utc_now())
        .execution_options(synchronize_session="fetch")
    )
