from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reimburse.domain.models import Invoice


async def create_invoice(
    session: AsyncSession,
    *,
    instance_id: int,
    attachment_id: int,
    invoice_code: str,
    invoice_number: str,
    unique_id: str,
    invoice_amount_cents: int,
    item_id: int | None = None,
    invoice_date: str | None = None,
    seller_name: str | None = None,
    seller_tax_id: str | None = None,
    buyer_name: str | None = None,
    buyer_tax_id: str | None = None,
    extracted_data: dict[str, Any] | None = None,
) -> Invoice:
    invoice = Invoice(
        instance_id=instance_id,
        attachment_id=attachment_id,
        item_id=item_id,
        invoice_code=invoice_code,
        invoice_number=invoice_number,
        unique_id=unique_id,
        invoice_amount_cents=invoice_amount_cents,
        invoice_date=invoice_date,
        seller_name=seller_name,
        seller_tax_id=seller_tax_id,
        buyer_name=buyer_name,
        buyer_tax_id=buyer_tax_id,
        extracted_data=extracted_data,
    )
    session.add(invoice)
    await session.flush()
    return invoice


async def get_by_unique_id(session: AsyncSession, unique_id: str) -> Invoice | None:
    # Lookup spans every instance so duplicates are caught corpus-wide.
    result = await session.execute(select(Invoice).where(Invoice.unique_id == unique_id))
    return result.scalar_one_or_none()


async def get_by_attachment(session: AsyncSession, attachment_id: int) -> Invoice | None:
    result = await session.execute(select(Invoice).where(Invoice.attachment_id == attachment_id))
    return result.scalar_one_or_none()


async def first_invoice(session: AsyncSession, instance_id: int) -> Invoice | None:
    result = await session.execute(
        select(Invoice).where(Invoice.instance_id == instance_id).order_by(Invoice.id).limit(1)
    )
    return result.scalars().first()
