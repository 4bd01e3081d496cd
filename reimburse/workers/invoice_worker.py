from __future__ import annotations

import logging
from pathlib import PurePath
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reimburse.core.config import get_settings
from reimburse.core.errors import AIAuditError, ReimburseError
from reimburse.domain.constants import AttachmentStatus, ItemType
from reimburse.domain.models import Attachment, Invoice
from reimburse.persistence.repos import attachments as attachments_repo
from reimburse.persistence.repos import invoices as invoices_repo
from reimburse.persistence.repos import items as items_repo
from reimburse.persistence.transaction import TransactionCoordinator
from reimburse.providers.ai.base import AIAuditor, InvoiceExtraction, ItemContext
from reimburse.services.audit import AuditService, item_context
from reimburse.storage.files import LocalFileStorage
from reimburse.workers.base import PollingWorker


logger = logging.getLogger(__name__)

MIME_TYPES = {
    ".pdf": "application/pdf",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
}


def invoice_unique_id(extraction: InvoiceExtraction) -> str:
    return f"{extraction.invoice_code}-{extraction.invoice_number}"


def duplicate_violation(invoice_id: int) -> str:
    return f"DUPLICATE: Invoice was previously submitted (ID: {invoice_id})"


class InvoiceWorker(PollingWorker[Attachment]):
    """Extracts and audits invoices from downloaded attachments."""

    name = "invoice"

    def __init__(
        self,
        coordinator: TransactionCoordinator,
        auditor: AIAuditor,
        audits: AuditService,
        storage: LocalFileStorage,
        *,
        poll_interval_s: float | None = None,
        batch_size: int | None = None,
        item_timeout_s: float | None = None,
        dedup_min_confidence: float | None = None,
    ) -> None:
        settings = get_settings()
        super().__init__(
            coordinator,
            poll_interval_s=poll_interval_s or settings.invoice_poll_interval_s,
            batch_size=batch_size or settings.invoice_batch_size,
            item_timeout_s=item_timeout_s or settings.invoice_process_timeout_s,
        )
        self._auditor = auditor
        self._audits = audits
        self._storage = storage
        self.dedup_min_confidence = (
            settings.invoice_dedup_min_confidence if dedup_min_confidence is None else dedup_min_confidence
        )

    async def fetch_pending(self, session: AsyncSession, limit: int) -> list[Attachment]:
        return await attachments_repo.list_pending_invoices(session, limit=limit)

    async def _set_status(self, attachment: Attachment, status: str, message: str | None = None) -> None:
        async with self._tx.transaction() as session:
            await attachments_repo.update_status(session, attachment.id, status=status, error_message=message)

    async def _fail(self, attachment: Attachment, reason: str) -> None:
        await self._set_status(attachment, AttachmentStatus.AUDIT_FAILED, reason)
        logger.warning("invoice_processing_failed attachment_id=%s reason=%s", attachment.id, reason)

    async def on_timeout(self, attachment: Attachment) -> None:
        await self._fail(attachment, f"processing timed out after {self.item_timeout_s}s")

    async def _item_context(self, attachment: Attachment, extraction: InvoiceExtraction) -> ItemContext:
        # Best effort: an unknown item still gets audited against the invoice total.
        if attachment.item_id is not None:
            try:
                async with self._tx.transaction() as session:
                    item = await items_repo.get_item(session, attachment.item_id)
                if item is not None:
                    return item_context(item)
            except Exception as exc:  # noqa: BLE001 - fall back to invoice-derived context.
                logger.warning("invoice_item_lookup_failed attachment_id=%s error=%s", attachment.id, exc)
        return ItemContext(item_id=attachment.item_id, item_type=ItemType.OTHER, amount=extraction.total_amount)

    async def _store_invoice(
        self, attachment: Attachment, extraction: InvoiceExtraction, unique_id: str
    ) -> tuple[Invoice | None, Invoice | None]:
        """Persist the invoice or find the prior one; returns (created, duplicate_of)."""
        async with self._tx.transaction() as session:
            existing = await invoices_repo.get_by_unique_id(session, unique_id)
        if existing is not None:
            if existing.attachment_id == attachment.id:
                # Reprocessing after a reset sees its own invoice.
                return existing, None
            return None, existing

        async def _create(session: AsyncSession) -> Invoice:
            return await invoices_repo.create_invoice(
                session,
                instance_id=attachment.instance_id,
                attachment_id=attachment.id,
                item_id=attachment.item_id,
                invoice_code=extraction.invoice_code,
                invoice_number=extraction.invoice_number,
                unique_id=unique_id,
                invoice_amount_cents=int(round(extraction.total_amount * 100)),
                invoice_date=extraction.invoice_date or None,
                seller_name=extraction.seller_name or None,
                seller_tax_id=extraction.seller_tax_id or None,
                buyer_name=extraction.buyer_name or None,
                buyer_tax_id=extraction.buyer_tax_id or None,
                extracted_data=extraction.model_dump(),
            )

        try:
            return await self._tx.run(_create), None
        except IntegrityError:
            # Another worker stored the same code+number between lookup and insert.
            async with self._tx.transaction() as session:
                existing = await invoices_repo.get_by_unique_id(session, unique_id)
            if existing is None:
                raise
            return None, existing

    async def process(self, attachment: Attachment) -> None:
        await self._set_status(attachment, AttachmentStatus.PROCESSING)
        try:
            await self._audit_attachment(attachment)
        except ReimburseError:
            # Domain failures record their own reason before raising.
            raise
        except Exception as exc:
            await self._fail(attachment, f"{type(exc).__name__}: {exc}")
            raise

    async def _audit_attachment(self, attachment: Attachment) -> None:
        ext = PurePath(attachment.file_name or attachment.file_path or "").suffix.lower()
        mime_type = MIME_TYPES.get(ext)
        if mime_type is None:
            async with self._tx.transaction() as session:
                await attachments_repo.mark_processed(
                    session, attachment.id, audit_result=None, note=f"skipped unsupported file type: {ext or 'none'}"
                )
            logger.info("invoice_skipped_unsupported attachment_id=%s ext=%s", attachment.id, ext)
            return

        try:
            data = await self._storage.read(attachment.file_path or "")
        except ReimburseError as exc:
            await self._fail(attachment, f"read file: {exc}")
            raise

        try:
            extraction = await self._auditor.extract_invoice(data, mime_type)
        except Exception as exc:
            await self._fail(attachment, f"extract invoice: {exc}")
            raise AIAuditError(f"invoice extraction failed for attachment {attachment.id}") from exc
        if not extraction.success:
            reason = extraction.error or "extraction unsuccessful"
            await self._fail(attachment, f"extract invoice: {reason}")
            raise AIAuditError(f"invoice extraction failed for attachment {attachment.id}: {reason}")

        context = await self._item_context(attachment, extraction)
        try:
            checks = await self._audits.run_checks(context, extraction)
        except ReimburseError as exc:
            await self._fail(attachment, f"audit: {exc}")
            raise

        policy = checks.policy
        invoice_info: dict[str, Any] = {"duplicate": False}
        if (
            extraction.invoice_code
            and extraction.invoice_number
            and extraction.confidence >= self.dedup_min_confidence
        ):
            unique_id = invoice_unique_id(extraction)
            created, duplicate_of = await self._store_invoice(attachment, extraction, unique_id)
            invoice_info["unique_id"] = unique_id
            if duplicate_of is not None:
                # A duplicate marks the attachment non-compliant; the step itself succeeds.
                policy = policy.model_copy(
                    update={
                        "compliant": False,
                        "violations": [*policy.violations, duplicate_violation(duplicate_of.id)],
                    }
                )
                invoice_info["duplicate"] = True
                invoice_info["duplicate_of"] = duplicate_of.id
                logger.warning(
                    "invoice_duplicate attachment_id=%s unique_id=%s prior_invoice_id=%s",
                    attachment.id,
                    unique_id,
                    duplicate_of.id,
                )
            elif created is not None:
                invoice_info["invoice_id"] = created.id

        audit_result = {
            "policy": policy.model_dump(),
            "price": checks.price.model_dump(),
            "invoice": invoice_info,
        }
        async with self._tx.transaction() as session:
            await attachments_repo.mark_processed(session, attachment.id, audit_result=audit_result)
        logger.info(
            "invoice_processed attachment_id=%s compliant=%s reasonable=%s",
            attachment.id,
            policy.compliant,
            checks.price.reasonable,
        )
