from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from reimburse.core.config import get_settings
from reimburse.core.errors import MessagingError, ReimburseError
from reimburse.domain.constants import InstanceStatus
from reimburse.domain.models import ApprovalInstance
from reimburse.domain.workflow import Trigger, can_fire
from reimburse.persistence.repos import instances as instances_repo
from reimburse.persistence.transaction import TransactionCoordinator
from reimburse.providers.messaging.base import MessagingClient
from reimburse.services.approval import ApprovalService
from reimburse.workers.base import PollingWorker


logger = logging.getLogger(__name__)

# Remote approval outcomes that move a local instance; anything else means still pending.
REMOTE_STATUS_TRIGGERS = {
    "APPROVED": Trigger.APPROVE,
    "REJECTED": Trigger.REJECT,
    "CANCELED": Trigger.REJECT,
    "DELETED": Trigger.REJECT,
}

AWAITING_REMOTE = frozenset({InstanceStatus.IN_REVIEW, InstanceStatus.AUTO_APPROVED})


class StatusPollWorker(PollingWorker[ApprovalInstance]):
    """Mirrors the approval platform's final verdict onto instances awaiting it."""

    name = "status"

    def __init__(
        self,
        coordinator: TransactionCoordinator,
        messaging: MessagingClient,
        approvals: ApprovalService,
        *,
        poll_interval_s: float | None = None,
        batch_size: int | None = None,
        item_timeout_s: float | None = None,
    ) -> None:
        settings = get_settings()
        super().__init__(
            coordinator,
            poll_interval_s=poll_interval_s or settings.status_poll_interval_s,
            batch_size=batch_size or settings.status_batch_size,
            item_timeout_s=item_timeout_s or settings.ext_call_timeout_ms / 1000.0,
        )
        self._messaging = messaging
        self._approvals = approvals

    async def fetch_pending(self, session: AsyncSession, limit: int) -> list[ApprovalInstance]:
        return await instances_repo.list_by_statuses(session, AWAITING_REMOTE, limit=limit)

    async def process(self, instance: ApprovalInstance) -> None:
        try:
            detail = await self._messaging.get_instance_detail(instance.external_instance_id)
        except ReimburseError:
            raise
        except Exception as exc:
            raise MessagingError(f"status lookup failed for {instance.external_instance_id}") from exc

        remote_status = (detail.status or "").upper()
        trigger = REMOTE_STATUS_TRIGGERS.get(remote_status)
        if trigger is None or not can_fire(instance.status, trigger):
            # Rotate to the back of the queue until the platform decides.
            async with self._tx.transaction() as session:
                await instances_repo.touch(session, instance.id)
            return

        async def _apply(session: AsyncSession) -> str:
            status = await self._approvals.transition(
                instance.id,
                trigger,
                actor=detail.user_id or None,
                comment=f"remote status {remote_status}",
                session=session,
            )
            if trigger == Trigger.APPROVE:
                await self._approvals.set_approval_time(instance.id, session=session)
            return status

        status = await self._tx.run(_apply)
        logger.info(
            "instance_status_synced instance_id=%s remote_status=%s status=%s",
            instance.id,
            remote_status,
            status,
        )
