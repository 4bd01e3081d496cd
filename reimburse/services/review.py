from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from reimburse.core.config import get_settings
from reimburse.core.errors import ReimburseError
from reimburse.domain.constants import Decision, InstanceStatus, TaskStatus
from reimburse.domain.workflow import Trigger
from reimburse.persistence.transaction import TransactionCoordinator
from reimburse.services.approval import ApprovalService
from reimburse.services.audit import AuditService, route_decision
from reimburse.services.notifications import NotificationService
from reimburse.services.tasks import TaskService


logger = logging.getLogger(__name__)

_DECISION_TRIGGERS = {
    Decision.PASS: Trigger.AUTO_APPROVE,
    Decision.NEEDS_REVIEW: Trigger.REQUEST_REVIEW,
    Decision.FAIL: Trigger.REJECT,
}


@dataclass
class ReviewOutcome:
    instance_id: int
    task_id: int
    decision: str
    confidence: float | None
    instance_status: str
    notified: bool
    notification_error: str | None = None


class ReviewService:
    """Drives one instance through the AI review step end to end."""

    def __init__(
        self,
        coordinator: TransactionCoordinator,
        approvals: ApprovalService,
        tasks: TaskService,
        audits: AuditService,
        notifications: NotificationService,
    ) -> None:
        self._tx = coordinator
        self._approvals = approvals
        self._tasks = tasks
        self._audits = audits
        self._notifications = notifications

    async def _notify(self, task_id: int) -> tuple[bool, str | None]:
        try:
            await self._notifications.notify_task_result(task_id)
        except ReimburseError as exc:
            # The task stays unstamped; the next run retries the message.
            logger.warning("ai_review_notification_failed task_id=%s error=%s", task_id, exc)
            return False, str(exc)
        return True, None

    async def run_ai_review(self, instance_id: int) -> ReviewOutcome:
        settings = get_settings()
        instance = await self._approvals.get_instance(instance_id)
        task = await self._tasks.create_ai_review_task(instance_id, settings.ai_approver_user_id)

        if task.status == TaskStatus.COMPLETED:
            notified = task.notification_sent_at is not None
            error = None
            if not notified:
                notified, error = await self._notify(task.id)
            return ReviewOutcome(
                instance_id=instance_id,
                task_id=task.id,
                decision=task.decision or "",
                confidence=task.confidence,
                instance_status=instance.status,
                notified=notified,
                notification_error=error,
            )

        # An interrupted run leaves the instance in AI_AUDITING; resume from there.
        if instance.status != InstanceStatus.AI_AUDITING:
            await self._approvals.transition(instance_id, Trigger.START_AUDIT, actor=settings.ai_approver_user_id)
        await self._tasks.update_task_status(task.id, TaskStatus.IN_PROGRESS)

        result = await self._audits.audit_instance(instance_id)
        decision = route_decision(result.overall_pass, result.confidence)

        async def _record(session: AsyncSession) -> str:
            await self._tasks.complete_task(
                task.id,
                decision=decision,
                confidence=result.confidence,
                result_data=result.to_payload(),
                violations=result.violations,
                completed_by=settings.ai_completed_by,
                session=session,
            )
            await self._approvals.transition(
                instance_id,
                Trigger.COMPLETE_AUDIT,
                actor=settings.ai_approver_user_id,
                comment=result.reasoning,
                session=session,
            )
            return await self._approvals.transition(
                instance_id,
                _DECISION_TRIGGERS[decision],
                actor=settings.ai_approver_user_id,
                comment=f"AI decision {decision}",
                session=session,
            )

        # Task completion and both transitions commit together.
        status = await self._tx.run(_record)
        logger.info(
            "ai_review_completed instance_id=%s task_id=%s decision=%s confidence=%.3f status=%s",
            instance_id,
            task.id,
            decision,
            result.confidence,
            status,
        )

        notified, error = await self._notify(task.id)
        return ReviewOutcome(
            instance_id=instance_id,
            task_id=task.id,
            decision=decision,
            confidence=result.confidence,
            instance_status=status,
            notified=notified,
            notification_error=error,
        )
