from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reimburse.core.errors import InvariantViolationError, NotFoundError
from reimburse.domain.constants import FileType, HistoryAction, InstanceStatus
from reimburse.domain.models import (
    ApprovalHistory,
    ApprovalInstance,
    Attachment,
    ReimbursementItem,
    utc_now,
)
from reimburse.domain.workflow import next_status
from reimburse.persistence.repos import attachments as attachments_repo
from reimburse.persistence.repos import history as history_repo
from reimburse.persistence.repos import instances as instances_repo
from reimburse.persistence.repos import items as items_repo
from reimburse.persistence.transaction import TransactionCoordinator


logger = logging.getLogger(__name__)


class ApprovalService:
    """Instance lifecycle: creation, status transitions and the audit trail."""

    def __init__(self, coordinator: TransactionCoordinator) -> None:
        self._tx = coordinator

    async def create_instance(
        self,
        external_instance_id: str,
        form_data: dict[str, Any] | None = None,
        *,
        session: AsyncSession | None = None,
    ) -> ApprovalInstance:
        form_data = dict(form_data or {})
        async with self._tx.transaction(session) as active:
            existing = await instances_repo.get_by_external_id(active, external_instance_id)
            if existing is not None:
                logger.info(
                    "instance_exists external_instance_id=%s id=%s", external_instance_id, existing.id
                )
                return existing

        applicant = form_data.get("applicant_user_id")
        department = form_data.get("department")

        async def _create(tx_session: AsyncSession) -> ApprovalInstance:
            instance = await instances_repo.create_instance(
                tx_session,
                external_instance_id=external_instance_id,
                status=InstanceStatus.CREATED,
                form_data=form_data,
                applicant_user_id=applicant if isinstance(applicant, str) else None,
                department=department if isinstance(department, str) else None,
            )
            await history_repo.add_history(
                tx_session,
                instance_id=instance.id,
                previous_status=None,
                new_status=InstanceStatus.CREATED,
                action_type=HistoryAction.CREATE,
                actor_user_id=instance.applicant_user_id,
                action_data={"comment": "Instance created"},
            )
            return instance

        try:
            instance = await self._tx.run(_create, session)
        except IntegrityError:
            # A concurrent caller created the same external instance first.
            if session is not None and session.in_transaction():
                raise
            async with self._tx.transaction() as active:
                existing = await instances_repo.get_by_external_id(active, external_instance_id)
            if existing is None:
                raise
            return existing
        logger.info("instance_created id=%s external_instance_id=%s", instance.id, external_instance_id)
        return instance

    async def get_instance(self, instance_id: int, *, session: AsyncSession | None = None) -> ApprovalInstance:
        async with self._tx.transaction(session) as active:
            instance = await instances_repo.get_instance(active, instance_id)
        if instance is None:
            raise NotFoundError("instance", instance_id)
        return instance

    async def get_instance_by_external_id(
        self, external_instance_id: str, *, session: AsyncSession | None = None
    ) -> ApprovalInstance | None:
        async with self._tx.transaction(session) as active:
            return await instances_repo.get_by_external_id(active, external_instance_id)

    async def update_status(
        self,
        instance_id: int,
        status: str,
        action_data: dict[str, Any] | None = None,
        *,
        session: AsyncSession | None = None,
    ) -> ApprovalHistory:
        if status not in InstanceStatus.ALL:
            raise InvariantViolationError(f"unknown instance status: {status}")
        data = dict(action_data or {})
        actor = data.get("action_by")

        async def _update(tx_session: AsyncSession) -> ApprovalHistory:
            instance = await instances_repo.get_instance(tx_session, instance_id)
            if instance is None:
                raise NotFoundError("instance", instance_id)
            # Capture the previous status before the write so the trail is accurate.
            previous = instance.status
            await instances_repo.update_status(tx_session, instance_id, status=status)
            return await history_repo.add_history(
                tx_session,
                instance_id=instance_id,
                previous_status=previous,
                new_status=status,
                action_type=HistoryAction.UPDATE_STATUS,
                actor_user_id=actor if isinstance(actor, str) else None,
                action_data=data or None,
            )

        entry = await self._tx.run(_update, session)
        logger.info(
            "instance_status_updated id=%s from=%s to=%s", instance_id, entry.previous_status, status
        )
        return entry

    async def transition(
        self,
        instance_id: int,
        trigger: str,
        *,
        actor: str | None = None,
        comment: str | None = None,
        session: AsyncSession | None = None,
    ) -> str:
        """Fire a workflow trigger; rejected triggers leave the instance untouched."""

        async def _fire(tx_session: AsyncSession) -> str:
            instance = await instances_repo.get_instance(tx_session, instance_id)
            if instance is None:
                raise NotFoundError("instance", instance_id)
            target = next_status(instance.status, trigger)
            action_data: dict[str, Any] = {"trigger": trigger}
            if actor:
                action_data["action_by"] = actor
            if comment:
                action_data["comment"] = comment
            await self.update_status(instance_id, target, action_data, session=tx_session)
            return target

        return await self._tx.run(_fire, session)

    async def set_approval_time(
        self,
        instance_id: int,
        approval_time: datetime | None = None,
        *,
        session: AsyncSession | None = None,
    ) -> None:
        async with self._tx.transaction(session) as active:
            if await instances_repo.get_instance(active, instance_id) is None:
                raise NotFoundError("instance", instance_id)
            await instances_repo.set_approval_time(active, instance_id, approval_time or utc_now())
        logger.info("approval_time_set id=%s", instance_id)

    async def list_instances(self, limit: int = 50, offset: int = 0) -> list[ApprovalInstance]:
        async with self._tx.transaction() as active:
            return await instances_repo.list_instances(active, limit=limit, offset=offset)

    async def get_history(self, instance_id: int) -> list[ApprovalHistory]:
        async with self._tx.transaction() as active:
            return await history_repo.list_history(active, instance_id)

    async def add_item(
        self,
        instance_id: int,
        *,
        item_type: str,
        amount: float,
        currency: str = "CNY",
        description: str | None = None,
        expense_date: datetime | None = None,
        vendor: str | None = None,
        business_purpose: str | None = None,
        session: AsyncSession | None = None,
    ) -> ReimbursementItem:
        if amount < 0:
            raise InvariantViolationError("item amount must not be negative")
        async with self._tx.transaction(session) as active:
            if await instances_repo.get_instance(active, instance_id) is None:
                raise NotFoundError("instance", instance_id)
            return await items_repo.create_item(
                active,
                instance_id=instance_id,
                item_type=item_type,
                amount=amount,
                currency=currency,
                description=description,
                expense_date=expense_date,
                vendor=vendor,
                business_purpose=business_purpose,
            )

    async def register_attachment(
        self,
        instance_id: int,
        *,
        file_name: str,
        url: str | None,
        file_type: str = FileType.INVOICE,
        item_id: int | None = None,
        session: AsyncSession | None = None,
    ) -> Attachment:
        """Record a form-referenced file for the download worker to fetch.

        Registration is idempotent on (instance, url) so replayed form events do
        not enqueue the same download twice.
        """
        async with self._tx.transaction(session) as active:
            instance = await instances_repo.get_instance(active, instance_id)
            if instance is None:
                raise NotFoundError("instance", instance_id)
            if url:
                existing = await attachments_repo.get_by_instance_url(active, instance_id, url)
                if existing is not None:
                    return existing
            attachment = await attachments_repo.create_attachment(
                active,
                instance_id=instance_id,
                external_instance_id=instance.external_instance_id,
                file_name=file_name,
                url=url,
                file_type=file_type,
                item_id=item_id,
            )
        logger.info("attachment_registered id=%s instance_id=%s", attachment.id, instance_id)
        return attachment
