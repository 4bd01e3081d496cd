from __future__ import annotations

from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from reimburse.domain.constants import AttachmentStatus
from reimburse.domain.models import Attachment, utc_now


async def create_attachment(
    session: AsyncSession,
    *,
    instance_id: int,
    external_instance_id: str,
    file_name: str,
    url: str | None,
    file_type: str,
    item_id: int | None = None,
) -> Attachment:
    attachment = Attachment(
        instance_id=instance_id,
        external_instance_id=external_instance_id,
        item_id=item_id,
        file_name=file_name,
        url=url,
        file_type=file_type,
        download_status=AttachmentStatus.PENDING,
        file_size=0,
    )
    session.add(attachment)
    await session.flush()
    return attachment


async def get_attachment(session: AsyncSession, attachment_id: int) -> Attachment | None:
    return await session.get(Attachment, attachment_id)


async def get_by_instance_url(session: AsyncSession, instance_id: int, url: str) -> Attachment | None:
    result = await session.execute(
        select(Attachment).where(Attachment.instance_id == instance_id, Attachment.url == url)
    )
    return result.scalars().first()


async def list_attachments(session: AsyncSession, instance_id: int) -> list[Attachment]:
    result = await session.execute(
        select(Attachment).where(Attachment.instance_id == instance_id).order_by(Attachment.id)
    )
    return list(result.scalars().all())


async def list_by_status(session: AsyncSession, status: str, *, limit: int) -> list[Attachment]:
    # Oldest first so a steady backlog drains in arrival order.
    result = await session.execute(
        select(Attachment)
        .where(Attachment.download_status == status)
        .order_by(Attachment.id)
        .limit(max(1, limit))
    )
    return list(result.scalars().all())


async def list_pending_downloads(session: AsyncSession, *, limit: int) -> list[Attachment]:
    return await list_by_status(session, AttachmentStatus.PENDING, limit=limit)


async def list_pending_invoices(session: AsyncSession, *, limit: int) -> list[Attachment]:
    return await list_by_status(session, AttachmentStatus.COMPLETED, limit=limit)


async def mark_downloaded(
    session: AsyncSession,
    attachment_id: int,
    *,
    file_path: str,
    file_size: int,
    mime_type: str | None,
) -> None:
    # file_path is only ever written together with the COMPLETED status.
    now = utc_now()
    await session.execute(
        update(Attachment)
        .where(Attachment.id == attachment_id)
        .values(
            download_status=AttachmentStatus.COMPLETED,
            file_path=file_path,
            file_size=file_size,
            mime_type=mime_type,
            error_message=None,
            downloaded_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session="fetch")
    )


async def update_status(
    session: AsyncSession,
    attachment_id: int,
    *,
    status: str,
    error_message: str | None = None,
) -> None:
    await session.execute(
        update(Attachment)
        .where(Attachment.id == attachment_id)
        .values(download_status=status, error_message=error_message, updated_at=utc_now())
        .execution_options(synchronize_session="fetch")
    )


async def mark_processed(
    session: AsyncSession,
    attachment_id: int,
    *,
    audit_result: dict[str, Any] | None,
    note: str | None = None,
) -> None:
    now = utc_now()
    await session.execute(
        update(Attachment)
        .where(Attachment.id == attachment_id)
        .values(
            download_status=AttachmentStatus.PROCESSED,
            audit_result=audit_result,
            error_message=note,
            processed_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session="fetch")
    )
