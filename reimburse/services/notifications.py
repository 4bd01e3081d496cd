from __future__ import annotations

import logging

from reimburse.core.errors import (
    InvariantViolationError,
    MessagingError,
    NotFoundError,
    ReimburseError,
)
from reimburse.domain.constants import Decision, NotificationKind, TaskStatus, TaskType
from reimburse.domain.models import ApprovalInstance, ApprovalTask, AuditNotification
from reimburse.persistence.repos import instances as instances_repo
from reimburse.persistence.repos import notifications as notifications_repo
from reimburse.persistence.repos import tasks as tasks_repo
from reimburse.persistence.transaction import TransactionCoordinator
from reimburse.providers.messaging.base import MessagingClient


logger = logging.getLogger(__name__)


def render_task_message(task: ApprovalTask) -> str:
    confidence = f"{(task.confidence or 0.0) * 100:.2f}%"
    violations = task.violations or []
    if task.decision == Decision.PASS:
        return (
            "Your reimbursement request passed the AI review.\n\n"
            f"Confidence: {confidence}\n\n"
            "It will continue through the approval process."
        )
    if task.decision == Decision.FAIL:
        lines = [
            "Your reimbursement request did not pass the AI review.",
            "",
            f"Confidence: {confidence}",
        ]
        if violations:
            lines.append("")
            lines.append("Policy issues:")
            lines.extend(f"  {index}. {violation}" for index, violation in enumerate(violations, start=1))
        lines.append("")
        lines.append("Please correct the request and submit it again.")
        return "\n".join(lines)
    return (
        "Your reimbursement request has been reviewed by AI and needs a manual check.\n\n"
        f"Confidence: {confidence}\n\n"
        "An approver will review it shortly; no action is needed from you."
    )


def render_voucher_message(instance: ApprovalInstance, voucher_path: str) -> str:
    return (
        "Your reimbursement voucher has been generated.\n\n"
        f"Request: {instance.external_instance_id}\n"
        f"Voucher: {voucher_path}\n\n"
        "Please contact the finance team to collect the voucher file."
    )


class NotificationService:
    def __init__(self, coordinator: TransactionCoordinator, messaging: MessagingClient) -> None:
        self._tx = coordinator
        self._messaging = messaging

    async def _resolve_open_id(self, instance: ApprovalInstance) -> str:
        try:
            detail = await self._messaging.get_instance_detail(instance.external_instance_id)
        except ReimburseError:
            raise
        except Exception as exc:
            raise MessagingError(f"instance detail lookup failed for {instance.external_instance_id}") from exc
        if not detail.open_id:
            raise MessagingError(f"no applicant address for instance {instance.external_instance_id}")
        return detail.open_id

    async def _send(self, open_id: str, content: str) -> None:
        try:
            await self._messaging.send_message(open_id, content)
        except ReimburseError:
            raise
        except Exception as exc:
            raise MessagingError(f"send to {open_id} failed") from exc

    async def notify_task_result(self, task_id: int) -> bool:
        """Send a completed AI review's decision to the applicant once.

        Returns True when a message went out and False when the task had
        already been notified. A send failure leaves the task unstamped so a
        later call resends.
        """
        async with self._tx.transaction() as session:
            task = await tasks_repo.get_task(session, task_id)
            if task is None:
                raise NotFoundError("task", task_id)
            if task.notification_sent_at is not None:
                logger.info("task_notification_already_sent task_id=%s", task_id)
                return False
            if task.task_type != TaskType.AI_REVIEW:
                raise InvariantViolationError(f"task {task_id} is not an AI review task")
            if task.status != TaskStatus.COMPLETED:
                raise InvariantViolationError(f"task {task_id} is not completed")
            instance = await instances_repo.get_instance(session, task.instance_id)
            if instance is None:
                raise NotFoundError("instance", task.instance_id)

        # Remote calls run outside any transaction.
        open_id = await self._resolve_open_id(instance)
        await self._send(open_id, render_task_message(task))

        async with self._tx.transaction() as session:
            stamped = await tasks_repo.mark_notification_sent(session, task_id)
        if not stamped:
            logger.warning("task_notification_raced task_id=%s", task_id)
        logger.info("task_notification_sent task_id=%s decision=%s open_id=%s", task_id, task.decision, open_id)
        return True

    async def notify_applicant(self, instance_id: int, message: str) -> None:
        async with self._tx.transaction() as session:
            instance = await instances_repo.get_instance(session, instance_id)
        if instance is None:
            raise NotFoundError("instance", instance_id)
        open_id = await self._resolve_open_id(instance)
        await self._send(open_id, message)
        logger.info("applicant_notified instance_id=%s open_id=%s", instance_id, open_id)

    async def notify_voucher_ready(self, instance_id: int, voucher_path: str) -> AuditNotification:
        async with self._tx.transaction() as session:
            instance = await instances_repo.get_instance(session, instance_id)
            if instance is None:
                raise NotFoundError("instance", instance_id)
            sent = await notifications_repo.get_sent(session, instance_id, NotificationKind.VOUCHER_READY)
            if sent is not None:
                logger.info("voucher_notification_already_sent instance_id=%s", instance_id)
                return sent
            notification = await notifications_repo.create_notification(
                session,
                instance_id=instance_id,
                external_instance_id=instance.external_instance_id,
                kind=NotificationKind.VOUCHER_READY,
                decision=NotificationKind.VOUCHER_READY,
            )

        try:
            open_id = await self._resolve_open_id(instance)
            await self._send(open_id, render_voucher_message(instance, voucher_path))
        except MessagingError as exc:
            # Record the failure durably before surfacing it.
            async with self._tx.transaction() as session:
                await notifications_repo.mark_failed(session, notification.id, error_message=str(exc))
            logger.warning("voucher_notification_failed instance_id=%s error=%s", instance_id, exc)
            raise

        async with self._tx.transaction() as session:
            await notifications_repo.mark_sent(session, notification.id)
            notification = await notifications_repo.get_notification(session, notification.id)
        logger.info("voucher_notification_sent instance_id=%s notification_id=%s", instance_id, notification.id)
        return notification
