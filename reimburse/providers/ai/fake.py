from __future__ import annotations

import hashlib

from reimburse.providers.ai.base import (
    InvoiceExtraction,
    ItemContext,
    PolicyAuditResult,
    PriceAuditResult,
)


class FakeAIAuditor:
    """Deterministic auditor for local runs and tests.

    Items above ``price_ceiling`` are flagged as unreasonable; everything else
    passes both checks. Extraction derives a stable invoice number from the
    file bytes so identical uploads look like duplicates.
    """

    def __init__(
        self,
        *,
        policy_confidence: float = 0.97,
        price_confidence: float = 0.96,
        extraction_confidence: float = 0.95,
        price_ceiling: float = 10000.0,
    ) -> None:
        self._policy_confidence = policy_confidence
        self._price_confidence = price_confidence
        self._extraction_confidence = extraction_confidence
        self._price_ceiling = price_ceiling

    async def audit_policy(
        self, item: ItemContext, invoice: InvoiceExtraction | None
    ) -> PolicyAuditResult:
        violations: list[str] = []
        if invoice is not None and invoice.success and invoice.total_amount + 0.01 < item.amount:
            violations.append("Claimed amount exceeds invoice total")
        return PolicyAuditResult(
            compliant=not violations,
            violations=violations,
            confidence=self._policy_confidence,
            reasoning="policy checks passed" if not violations else "policy violations found",
        )

    async def audit_price(
        self, item: ItemContext, invoice: InvoiceExtraction | None
    ) -> PriceAuditResult:
        _ = invoice
        reasonable = item.amount <= self._price_ceiling
        deviation = 0.0 if reasonable else (item.amount - self._price_ceiling) / self._price_ceiling * 100.0
        return PriceAuditResult(
            reasonable=reasonable,
            deviation_percentage=deviation,
            market_price_min=0.0,
            market_price_max=self._price_ceiling,
            confidence=self._price_confidence,
            reasoning="within market range" if reasonable else "above market range",
        )

    async def extract_invoice(self, data: bytes, mime_type: str) -> InvoiceExtraction:
        if not data:
            return InvoiceExtraction(success=False, error="empty file")
        digest = hashlib.sha256(data).hexdigest()
        return InvoiceExtraction(
            success=True,
            invoice_code="FAKE",
            invoice_number=digest[:12],
            total_amount=float(len(data)),
            invoice_date="2026-01-01",
            seller_name="Fake Seller",
            buyer_name="Fake Buyer",
            extracted_data={"mime_type": mime_type, "size": len(data)},
            confidence=self._extraction_confidence,
        )
