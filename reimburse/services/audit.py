from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from reimburse.core.config import get_settings
from reimburse.core.errors import AIAuditError, NotFoundError, ReimburseError
from reimburse.domain.constants import Decision
from reimburse.domain.models import Invoice, ReimbursementItem
from reimburse.persistence.repos import instances as instances_repo
from reimburse.persistence.repos import invoices as invoices_repo
from reimburse.persistence.repos import items as items_repo
from reimburse.persistence.transaction import TransactionCoordinator
from reimburse.providers.ai.base import (
    AIAuditor,
    InvoiceExtraction,
    ItemContext,
    PolicyAuditResult,
    PriceAuditResult,
)


logger = logging.getLogger(__name__)

# Stored invoices were accepted by a prior extraction; report them with a fixed confidence.
STORED_INVOICE_CONFIDENCE = 0.9


@dataclass
class ItemAuditResult:
    item_id: int | None
    policy: PolicyAuditResult
    price: PriceAuditResult
    overall_pass: bool
    confidence: float
    reasoning: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "overall_pass": self.overall_pass,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "policy": self.policy.model_dump(),
            "price": self.price.model_dump(),
        }


@dataclass
class InstanceAuditResult:
    instance_id: int
    overall_pass: bool
    confidence: float
    reasoning: str
    items: list[ItemAuditResult] = field(default_factory=list)
    failed_item_ids: list[int] = field(default_factory=list)

    @property
    def violations(self) -> list[str]:
        collected: list[str] = []
        for item in self.items:
            collected.extend(item.policy.violations)
            if not item.price.reasonable:
                collected.append(
                    f"Item {item.item_id}: price deviates {item.price.deviation_percentage:.1f}% from market range"
                )
        return collected

    def to_payload(self) -> dict[str, Any]:
        return {
            "instance_id": self.instance_id,
            "overall_pass": self.overall_pass,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "items": [item.to_payload() for item in self.items],
            "failed_item_ids": list(self.failed_item_ids),
            "violations": self.violations,
        }


def route_decision(
    overall_pass: bool,
    confidence: float,
    *,
    high_threshold: float | None = None,
    low_threshold: float | None = None,
) -> str:
    """Map an audit verdict to PASS, NEEDS_REVIEW or FAIL.

    Low confidence always goes to a human, even for a failing verdict; only a
    passing verdict at or above the high threshold is auto-approved.
    """
    settings = get_settings()
    high = settings.audit_high_confidence if high_threshold is None else high_threshold
    low = settings.audit_low_confidence if low_threshold is None else low_threshold
    if confidence < low:
        return Decision.NEEDS_REVIEW
    if not overall_pass:
        return Decision.FAIL
    if confidence >= high:
        return Decision.PASS
    return Decision.NEEDS_REVIEW


def item_context(item: ReimbursementItem) -> ItemContext:
    return ItemContext(
        item_id=item.id,
        item_type=item.item_type,
        description=item.description,
        amount=item.amount,
        currency=item.currency,
        vendor=item.vendor,
        business_purpose=item.business_purpose,
    )


def extraction_from_invoice(invoice: Invoice) -> InvoiceExtraction:
    return InvoiceExtraction(
        success=True,
        invoice_code=invoice.invoice_code,
        invoice_number=invoice.invoice_number,
        total_amount=invoice.amount,
        invoice_date=invoice.invoice_date or "",
        seller_name=invoice.seller_name or "",
        seller_tax_id=invoice.seller_tax_id or "",
        buyer_name=invoice.buyer_name or "",
        buyer_tax_id=invoice.buyer_tax_id or "",
        confidence=STORED_INVOICE_CONFIDENCE,
    )


class AuditService:
    def __init__(self, coordinator: TransactionCoordinator, auditor: AIAuditor) -> None:
        self._tx = coordinator
        self._auditor = auditor

    async def run_checks(
        self, context: ItemContext, invoice: InvoiceExtraction | None
    ) -> ItemAuditResult:
        # Both checks must succeed; either failure fails the item.
        try:
            policy = await self._auditor.audit_policy(context, invoice)
        except ReimburseError:
            raise
        except Exception as exc:
            raise AIAuditError(f"policy audit failed for item {context.item_id}") from exc
        try:
            price = await self._auditor.audit_price(context, invoice)
        except ReimburseError:
            raise
        except Exception as exc:
            raise AIAuditError(f"price audit failed for item {context.item_id}") from exc
        return ItemAuditResult(
            item_id=context.item_id,
            policy=policy,
            price=price,
            overall_pass=policy.compliant and price.reasonable,
            confidence=(policy.confidence + price.confidence) / 2.0,
            reasoning=f"Policy: {policy.reasoning}, Price: {price.reasoning}",
        )

    async def audit_item(self, item: ReimbursementItem) -> ItemAuditResult:
        async with self._tx.transaction() as session:
            # First invoice of the instance stands in for the item's invoice.
            invoice = await invoices_repo.first_invoice(session, item.instance_id)
        extraction = extraction_from_invoice(invoice) if invoice is not None else None
        result = await self.run_checks(item_context(item), extraction)
        logger.info(
            "item_audit_completed item_id=%s overall_pass=%s confidence=%.3f",
            item.id,
            result.overall_pass,
            result.confidence,
        )
        return result

    async def audit_instance(self, instance_id: int) -> InstanceAuditResult:
        async with self._tx.transaction() as session:
            if await instances_repo.get_instance(session, instance_id) is None:
                raise NotFoundError("instance", instance_id)
            items = await items_repo.list_items(session, instance_id)

        if not items:
            logger.info("instance_audit_no_items instance_id=%s", instance_id)
            return InstanceAuditResult(
                instance_id=instance_id,
                overall_pass=True,
                confidence=1.0,
                reasoning="No items to audit",
            )

        results: list[ItemAuditResult] = []
        failed: list[int] = []
        for item in items:
            try:
                results.append(await self.audit_item(item))
            except ReimburseError as exc:
                # One failing item must not abort the rest of the audit.
                logger.warning("item_audit_failed item_id=%s error=%s", item.id, exc)
                failed.append(item.id)

        if results:
            confidence = sum(result.confidence for result in results) / len(results)
            overall_pass = all(result.overall_pass for result in results)
        else:
            confidence = 0.0
            overall_pass = False
        reasoning = f"Audited {len(results)} of {len(items)} items for instance {instance_id}"
        if failed:
            reasoning += f"; {len(failed)} item(s) could not be audited"

        logger.info(
            "instance_audit_completed instance_id=%s overall_pass=%s confidence=%.3f audited=%s failed=%s",
            instance_id,
            overall_pass,
            confidence,
            len(results),
            len(failed),
        )
        return InstanceAuditResult(
            instance_id=instance_id,
            overall_pass=overall_pass,
            confidence=confidence,
            reasoning=reasoning,
            items=results,
            failed_item_ids=failed,
        )
