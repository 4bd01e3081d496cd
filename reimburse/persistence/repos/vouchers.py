from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from reimburse.domain.models import GeneratedVoucher, utc_now


async def create_voucher(
    session: AsyncSession,
    *,
    instance_id: int,
    voucher_number: str,
    file_path: str,
    attachment_paths: list[str] | None = None,
    accountant_email: str | None = None,
) -> GeneratedVoucher:
    voucher = GeneratedVoucher(
        instance_id=instance_id,
        voucher_number=voucher_number,
        file_path=file_path,
        attachment_paths=attachment_paths,
        accountant_email=accountant_email,
    )
    session.add(voucher)
    await session.flush()
    return voucher


async def get_by_instance(session: AsyncSession, instance_id: int) -> GeneratedVoucher | None:
    result = await session.execute(
        select(GeneratedVoucher).where(GeneratedVoucher.instance_id == instance_id)
    )
    return result.scalar_one_or_none()


async def mark_sent(
    session: AsyncSession,
    voucher_id: int,
    *,
    accountant_email: str,
    email_message_id: str,
) -> bool:
    # Conditional on sent_at so a voucher is only ever stamped once.
    result = await session.execute(
        update(GeneratedVoucher)
        .where(GeneratedVoucher.id == voucher_id, GeneratedVoucher.sent_at.is_(None))
        .values(accountant_email=accountant_email, email_message_id=email_message_id, sent_at=utc_now())
        .execution_options(synchronize_session="fetch")
    )
    return bool(result.rowcount)
