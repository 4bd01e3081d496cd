from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from reimburse.core.config import get_settings
from reimburse.core.errors import ReimburseError
from reimburse.domain.constants import InstanceStatus
from reimburse.domain.models import ApprovalInstance
from reimburse.persistence.repos import instances as instances_repo
from reimburse.persistence.transaction import TransactionCoordinator
from reimburse.services.notifications import NotificationService
from reimburse.services.vouchers import VoucherService
from reimburse.workers.base import PollingWorker


logger = logging.getLogger(__name__)


class VoucherWorker(PollingWorker[ApprovalInstance]):
    """Generates vouchers for approved instances once their files are in storage."""

    name = "voucher"

    def __init__(
        self,
        coordinator: TransactionCoordinator,
        vouchers: VoucherService,
        notifications: NotificationService,
        *,
        poll_interval_s: float | None = None,
        batch_size: int | None = None,
        item_timeout_s: float | None = None,
    ) -> None:
        settings = get_settings()
        super().__init__(
            coordinator,
            poll_interval_s=poll_interval_s or settings.voucher_poll_interval_s,
            batch_size=batch_size or settings.voucher_batch_size,
            item_timeout_s=item_timeout_s or settings.voucher_timeout_s,
        )
        self._vouchers = vouchers
        self._notifications = notifications

    async def fetch_pending(self, session: AsyncSession, limit: int) -> list[ApprovalInstance]:
        return await instances_repo.list_by_statuses(session, [InstanceStatus.APPROVED], limit=limit)

    async def on_timeout(self, instance: ApprovalInstance) -> None:
        await self._vouchers.release_stalled(instance.id)

    async def process(self, instance: ApprovalInstance) -> None:
        if not await self._vouchers.is_instance_ready(instance.id):
            # Downloads still outstanding; look again on a later tick.
            async with self._tx.transaction() as session:
                await instances_repo.touch(session, instance.id)
            return
        result = await self._vouchers.generate_voucher(instance.id)
        try:
            await self._notifications.notify_voucher_ready(instance.id, result.file_path)
        except ReimburseError as exc:
            # The voucher exists; the notification record keeps the failure for follow-up.
            logger.warning("voucher_notification_deferred instance_id=%s error=%s", instance.id, exc)
        try:
            await self._vouchers.deliver_voucher(instance.id)
        except ReimburseError as exc:
            # sent_at stays empty so the undelivered voucher is visible for a resend.
            logger.warning("voucher_delivery_failed instance_id=%s error=%s", instance.id, exc)
