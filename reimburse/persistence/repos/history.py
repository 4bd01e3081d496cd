from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reimburse.domain.models import ApprovalHistory


async def add_history(
    session: AsyncSession,
    *,
    instance_id: int,
    previous_status: str | None,
    new_status: str,
    action_type: str,
    actor_user_id: str | None = None,
    action_data: dict[str, Any] | None = None,
) -> ApprovalHistory:
    # History rows are append-only; nothing updates or deletes them.
    entry = ApprovalHistory(
        instance_id=instance_id,
        previous_status=previous_status,
        new_status=new_status,
        action_type=action_type,
        actor_user_id=actor_user_id,
        action_data=action_data,
    )
    session.add(entry)
    return entry


async def list_history(session: AsyncSession, instance_id: int) -> list[ApprovalHistory]:
    result = await session.execute(
        select(ApprovalHistory)
        .where(ApprovalHistory.instance_id == instance_id)
        .order_by(ApprovalHistory.occurred_at, ApprovalHistory.id)
    )
    return list(result.scalars().all())
