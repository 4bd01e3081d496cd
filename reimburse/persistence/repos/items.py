from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reimburse.domain.models import ReimbursementItem


async def create_item(
    session: AsyncSession,
    *,
    instance_id: int,
    item_type: str,
    amount: float,
    currency: str = "CNY",
    description: str | None = None,
    expense_date: datetime | None = None,
    vendor: str | None = None,
    business_purpose: str | None = None,
) -> ReimbursementItem:
    item = ReimbursementItem(
        instance_id=instance_id,
        item_type=item_type,
        amount=amount,
        currency=currency,
        description=description,
        expense_date=expense_date,
        vendor=vendor,
        business_purpose=business_purpose,
    )
    session.add(item)
    await session.flush()
    return item


async def get_item(session: AsyncSession, item_id: int) -> ReimbursementItem | None:
    return await session.get(ReimbursementItem, item_id)


async def list_items(session: AsyncSession, instance_id: int) -> list[ReimbursementItem]:
    result = await session.execute(
        select(ReimbursementItem)
        .where(ReimbursementItem.instance_id == instance_id)
        .order_by(ReimbursementItem.id)
    )
    return list(result.scalars().all())
