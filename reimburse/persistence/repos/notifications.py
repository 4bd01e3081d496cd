from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from reimburse.domain.constants import NotificationStatus
from reimburse.domain.models import AuditNotification, utc_now


async def create_notification(
    session: AsyncSession,
    *,
    instance_id: int,
    external_instance_id: str,
    kind: str,
    decision: str | None = None,
    recipient_open_id: str | None = None,
) -> AuditNotification:
    notification = AuditNotification(
        instance_id=instance_id,
        external_instance_id=external_instance_id,
        kind=kind,
        status=NotificationStatus.PENDING,
        decision=decision,
        recipient_open_id=recipient_open_id,
    )
    session.add(notification)
    await session.flush()
    return notification


async def get_notification(session: AsyncSession, notification_id: int) -> AuditNotification | None:
    return await session.get(AuditNotification, notification_id)


async def get_sent(session: AsyncSession, instance_id: int, kind: str) -> AuditNotification | None:
    result = await session.execute(
        select(AuditNotification).where(
            AuditNotification.instance_id == instance_id,
            AuditNotification.kind == kind,
            AuditNotification.status == NotificationStatus.SENT,
        )
    )
    return result.scalars().first()


async def list_notifications(session: AsyncSession, instance_id: int) -> list[AuditNotification]:
    result = await session.execute(
        select(AuditNotification)
        .where(AuditNotification.instance_id == instance_id)
        .order_by(AuditNotification.id)
    )
    return list(result.scalars().all())


async def mark_sent(session: AsyncSession, notification_id: int) -> None:
    now = utc_now()
    await session.execute(
        update(AuditNotification)
        .where(AuditNotification.id == notification_id)
        .values(status=NotificationStatus.SENT, sent_at=now, error_message=None, updated_at=now)
        .execution_options(synchronize_session="fetch")
    )


async def mark_failed(session: AsyncSession, notification_id: int, *, error_message: str) -> None:
    await session.execute(
        update(AuditNotification)
        .where(AuditNotification.id == notification_id)
        .values(status=NotificationStatus.FAILED, error_message=error_message, updated_at=utc_now())
        .execution_options(synchronize_session="fetch")
    )
