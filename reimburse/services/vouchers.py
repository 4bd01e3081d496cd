from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import PurePosixPath

from openpyxl import Workbook
from openpyxl.styles import Font
from sqlalchemy.ext.asyncio import AsyncSession

from reimburse.core.config import get_settings
from reimburse.core.errors import InstanceNotReadyError, NotFoundError
from reimburse.domain.constants import AttachmentStatus, InstanceStatus, ItemType
from reimburse.domain.models import (
    ApprovalInstance,
    Attachment,
    GeneratedVoucher,
    ReimbursementItem,
)
from reimburse.domain.workflow import Trigger
from reimburse.persistence.repos import attachments as attachments_repo
from reimburse.persistence.repos import instances as instances_repo
from reimburse.persistence.repos import items as items_repo
from reimburse.persistence.repos import vouchers as vouchers_repo
from reimburse.persistence.transaction import TransactionCoordinator
from reimburse.providers.messaging.base import MessagingClient
from reimburse.services.approval import ApprovalService
from reimburse.storage.files import LocalFileStorage
from reimburse.storage.folders import LocalFolderManager


logger = logging.getLogger(__name__)

VOUCHER_ACTOR = "voucher-service"

# Ledger account each expense type is booked against.
ACCOUNTING_SUBJECTS = {
    ItemType.TRAVEL: "Travel expenses",
    ItemType.MEAL: "Meal expenses",
    ItemType.ACCOMMODATION: "Accommodation expenses",
    ItemType.EQUIPMENT: "Office expenses",
    ItemType.TRANSPORTATION: "Transportation expenses",
    ItemType.ENTERTAINMENT: "Business entertainment",
    ItemType.TEAM_BUILDING: "Employee welfare",
    ItemType.COMMUNICATION: "Communication expenses",
    ItemType.OTHER: "Other expenses",
}

ITEM_TYPE_LABELS = {
    ItemType.TRAVEL: "Travel",
    ItemType.MEAL: "Meals",
    ItemType.ACCOMMODATION: "Accommodation",
    ItemType.EQUIPMENT: "Office supplies",
    ItemType.TRANSPORTATION: "Transportation",
    ItemType.ENTERTAINMENT: "Entertainment",
    ItemType.TEAM_BUILDING: "Team building",
    ItemType.COMMUNICATION: "Communication",
    ItemType.OTHER: "Other",
}


def accounting_subject(item_type: str) -> str:
    return ACCOUNTING_SUBJECTS.get((item_type or "").upper(), ACCOUNTING_SUBJECTS[ItemType.OTHER])


def item_type_label(item_type: str) -> str:
    return ITEM_TYPE_LABELS.get((item_type or "").upper(), ITEM_TYPE_LABELS[ItemType.OTHER])


@dataclass
class VoucherResult:
    voucher: GeneratedVoucher
    created: bool
    attachment_paths: list[str] = field(default_factory=list)

    @property
    def file_path(self) -> str:
        return self.voucher.file_path


def readiness_problems(
    instance: ApprovalInstance,
    attachments: list[Attachment],
    items: list[ReimbursementItem],
) -> list[str]:
    """List every unmet voucher precondition; empty means ready."""
    problems: list[str] = []
    if instance.status != InstanceStatus.APPROVED:
        problems.append(f"status is {instance.status}")
    if not attachments:
        problems.append("no attachments")
    for attachment in attachments:
        if attachment.download_status not in AttachmentStatus.DOWNLOADED:
            problems.append(f"attachment {attachment.id} is {attachment.download_status}")
    if not items:
        problems.append("no items")
    return problems


def render_voucher(
    instance: ApprovalInstance,
    items: list[ReimbursementItem],
    attachments: list[Attachment],
    voucher_number: str,
) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Voucher"
    ws.append(["Reimbursement Voucher"])
    ws["A1"].font = Font(bold=True, size=14)
    ws.append(["Voucher number", voucher_number])
    ws.append(["Request", instance.external_instance_id])
    ws.append(["Applicant", instance.applicant_user_id or ""])
    ws.append(["Department", instance.department or ""])
    ws.append(["Approved at", instance.approval_time.isoformat() if instance.approval_time else ""])
    ws.append([])
    ws.append(["#", "Type", "Accounting subject", "Description", "Vendor", "Expense date", "Currency", "Amount"])
    for cell in ws[ws.max_row]:
        cell.font = Font(bold=True)
    total = 0.0
    for index, item in enumerate(items, start=1):
        total += item.amount
        ws.append(
            [
                index,
                item_type_label(item.item_type),
                accounting_subject(item.item_type),
                item.description or "",
                item.vendor or "",
                item.expense_date.date().isoformat() if item.expense_date else "",
                item.currency,
                round(item.amount, 2),
            ]
        )
    ws.append(["", "", "", "", "", "", "Total", round(total, 2)])
    ws[f"G{ws.max_row}"].font = Font(bold=True)

    ws_attachments = wb.create_sheet("Attachments")
    ws_attachments.append(["attachment_id", "file_name", "file_path", "status"])
    for attachment in attachments:
        ws_attachments.append(
            [attachment.id, attachment.file_name, attachment.file_path or "", attachment.download_status]
        )

    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def build_voucher_email(
    voucher: GeneratedVoucher, instance: ApprovalInstance, supporting_paths: list[str]
) -> str:
    lines = [
        "Hello,",
        "",
        "Please find the reimbursement voucher and its supporting documents attached.",
        "",
        f"Voucher number: {voucher.voucher_number}",
        f"Applicant: {instance.applicant_user_id or ''}",
        f"Department: {instance.department or ''}",
        f"Submitted: {instance.submission_time.date().isoformat() if instance.submission_time else 'N/A'}",
        f"Approved: {instance.approval_time.date().isoformat() if instance.approval_time else 'N/A'}",
        "",
        "Attachments:",
        f"1. {PurePosixPath(voucher.file_path).name}",
    ]
    lines.extend(f"{index}. {PurePosixPath(path).name}" for index, path in enumerate(supporting_paths, start=2))
    lines.extend(["", "This message was sent automatically by the reimbursement workflow."])
    return "\n".join(lines)


class VoucherService:
    def __init__(
        self,
        coordinator: TransactionCoordinator,
        approvals: ApprovalService,
        storage: LocalFileStorage,
        *,
        voucher_folder: str | None = None,
        messaging: MessagingClient | None = None,
        accountant_email: str | None = None,
    ) -> None:
        settings = get_settings()
        self._tx = coordinator
        self._approvals = approvals
        self._storage = storage
        self._voucher_folder = voucher_folder or settings.voucher_folder
        self._messaging = messaging
        self._accountant_email = accountant_email or settings.accountant_email

    async def _load(
        self, session: AsyncSession, instance_id: int
    ) -> tuple[ApprovalInstance, list[Attachment], list[ReimbursementItem]]:
        instance = await instances_repo.get_instance(session, instance_id)
        if instance is None:
            raise NotFoundError("instance", instance_id)
        attachments = await attachments_repo.list_attachments(session, instance_id)
        items = await items_repo.list_items(session, instance_id)
        return instance, attachments, items

    async def is_instance_ready(self, instance_id: int) -> bool:
        async with self._tx.transaction() as session:
            instance, attachments, items = await self._load(session, instance_id)
        problems = readiness_problems(instance, attachments, items)
        if problems:
            logger.info("instance_not_ready instance_id=%s reasons=%s", instance_id, "; ".join(problems))
            return False
        return True

    def voucher_path(self, instance: ApprovalInstance) -> str:
        folder = LocalFolderManager.sanitize_name(instance.external_instance_id) or f"instance_{instance.id}"
        return f"{self._voucher_folder}/{folder}/reimbursement_voucher_{instance.id}.xlsx"

    async def generate_voucher(self, instance_id: int) -> VoucherResult:
        async with self._tx.transaction() as session:
            existing = await vouchers_repo.get_by_instance(session, instance_id)
            instance, attachments, items = await self._load(session, instance_id)
        attachment_paths = [a.file_path for a in attachments if a.file_path]
        if existing is not None:
            logger.info("voucher_exists instance_id=%s voucher_id=%s", instance_id, existing.id)
            return VoucherResult(voucher=existing, created=False, attachment_paths=attachment_paths)

        problems = readiness_problems(instance, attachments, items)
        if problems:
            raise InstanceNotReadyError(f"instance {instance_id} not ready: {'; '.join(problems)}")

        await self._approvals.transition(instance_id, Trigger.START_VOUCHER, actor=VOUCHER_ACTOR)
        voucher_number = f"VOUCHER-{instance_id}-{int(time.time())}"
        file_path = self.voucher_path(instance)
        try:
            content = await asyncio.to_thread(render_voucher, instance, items, attachments, voucher_number)
            await self._storage.save(file_path, content)

            async def _persist(session: AsyncSession) -> GeneratedVoucher:
                voucher = await vouchers_repo.create_voucher(
                    session,
                    instance_id=instance_id,
                    voucher_number=voucher_number,
                    file_path=file_path,
                    attachment_paths=attachment_paths,
                    accountant_email=self._accountant_email,
                )
                await self._approvals.transition(
                    instance_id, Trigger.COMPLETE_VOUCHER, actor=VOUCHER_ACTOR, session=session
                )
                return voucher

            voucher = await self._tx.run(_persist)
        except Exception:
            logger.exception("voucher_generation_failed instance_id=%s", instance_id)
            await self._approvals.transition(
                instance_id, Trigger.RETRY, actor=VOUCHER_ACTOR, comment="voucher generation failed"
            )
            raise

        logger.info(
            "voucher_generated instance_id=%s voucher_number=%s path=%s attachments=%s items=%s",
            instance_id,
            voucher_number,
            file_path,
            len(attachment_paths),
            len(items),
        )
        return VoucherResult(voucher=voucher, created=True, attachment_paths=attachment_paths)

    async def release_stalled(self, instance_id: int) -> bool:
        """Return an instance left in VOUCHER_GENERATING to APPROVED so it is picked up again."""

        async def _release(session: AsyncSession) -> bool:
            instance = await instances_repo.get_instance(session, instance_id)
            if instance is None:
                raise NotFoundError("instance", instance_id)
            if instance.status != InstanceStatus.VOUCHER_GENERATING:
                return False
            await self._approvals.transition(
                instance_id,
                Trigger.RETRY,
                actor=VOUCHER_ACTOR,
                comment="voucher generation interrupted",
                session=session,
            )
            return True

        released = await self._tx.run(_release)
        if released:
            logger.warning("voucher_generation_released instance_id=%s", instance_id)
        return released

    async def deliver_voucher(self, instance_id: int) -> GeneratedVoucher | None:
        """Mail the voucher and its supporting files to the accountant.

        Returns None when delivery is not configured. A voucher that was already
        sent is returned unchanged, so repeated calls never mail twice.
        """
        async with self._tx.transaction() as session:
            voucher = await vouchers_repo.get_by_instance(session, instance_id)
            if voucher is None:
                raise NotFoundError("voucher", instance_id)
            instance, attachments, _ = await self._load(session, instance_id)
        if voucher.sent_at is not None:
            return voucher
        recipient = voucher.accountant_email or self._accountant_email
        if self._messaging is None or not recipient:
            logger.info("voucher_delivery_skipped instance_id=%s reason=not_configured", instance_id)
            return None

        supporting = list(voucher.attachment_paths or [a.file_path for a in attachments if a.file_path])
        files = [str(self._storage.resolve(path)) for path in [voucher.file_path, *supporting]]
        applicant = instance.applicant_user_id or instance.external_instance_id
        subject = f"Reimbursement voucher {voucher.voucher_number} - {applicant}"
        message_id = await self._messaging.send_email(
            recipient, subject, build_voucher_email(voucher, instance, supporting), files
        )

        async with self._tx.transaction() as session:
            stamped = await vouchers_repo.mark_sent(
                session, voucher.id, accountant_email=recipient, email_message_id=message_id
            )
            voucher = await vouchers_repo.get_by_instance(session, instance_id)
        if not stamped:
            logger.warning("voucher_already_stamped instance_id=%s voucher_id=%s", instance_id, voucher.id)
        logger.info(
            "voucher_delivered instance_id=%s voucher_number=%s message_id=%s",
            instance_id,
            voucher.voucher_number,
            message_id,
        )
        return voucher
