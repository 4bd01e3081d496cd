from __future__ import annotations

import asyncio

from reimburse.core.errors import AIAuditError, DownloadError
from reimburse.providers.ai.base import (
    InvoiceExtraction,
    ItemContext,
    PolicyAuditResult,
    PriceAuditResult,
)


class ScriptedAuditor:
    """Auditor whose per-item verdicts and extractions are set by the test."""

    def __init__(self) -> None:
        self.policy: dict[int | None, PolicyAuditResult] = {}
        self.price: dict[int | None, PriceAuditResult] = {}
        self.failing_items: set[int | None] = set()
        self.extractions: dict[bytes, InvoiceExtraction] = {}
        self.extract_error: Exception | None = None
        self.extract_delay_s = 0.0
        self.policy_calls: list[ItemContext] = []
        self.seen_invoices: list[InvoiceExtraction | None] = []

    def set_item(self, item_id: int | None, *, passing: bool, confidence: float) -> None:
        self.policy[item_id] = PolicyAuditResult(
            compliant=passing,
            violations=[] if passing else [f"item {item_id} breaks policy"],
            confidence=confidence,
            reasoning="ok" if passing else "violation",
        )
        self.price[item_id] = PriceAuditResult(reasonable=True, confidence=confidence, reasoning="fair")

    async def audit_policy(self, item: ItemContext, invoice: InvoiceExtraction | None) -> PolicyAuditResult:
        self.policy_calls.append(item)
        self.seen_invoices.append(invoice)
        if item.item_id in self.failing_items:
            raise AIAuditError(f"policy model unavailable for item {item.item_id}")
        return self.policy.get(
            item.item_id, PolicyAuditResult(compliant=True, confidence=1.0, reasoning="ok")
        )

    async def audit_price(self, item: ItemContext, invoice: InvoiceExtraction | None) -> PriceAuditResult:
        return self.price.get(
            item.item_id, PriceAuditResult(reasonable=True, confidence=1.0, reasoning="fair")
        )

    async def extract_invoice(self, data: bytes, mime_type: str) -> InvoiceExtraction:
        if self.extract_delay_s:
            await asyncio.sleep(self.extract_delay_s)
        if self.extract_error is not None:
            raise self.extract_error
        return self.extractions.get(
            data,
            InvoiceExtraction(
                success=True,
                invoice_code="C1",
                invoice_number=data.decode("utf-8", "ignore")[:16] or "N1",
                total_amount=100.0,
                confidence=0.99,
            ),
        )


class FakeDownloader:
    def __init__(self, payloads: dict[str, bytes] | None = None) -> None:
        self.payloads = dict(payloads or {})
        self.delay_s = 0.0
        self.calls: list[tuple[str, int]] = []

    async def download(self, url: str) -> bytes:
        return await self.download_with_retry(url, 1)

    async def download_with_retry(self, url: str, max_attempts: int) -> bytes:
        self.calls.append((url, max_attempts))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if url not in self.payloads:
            raise DownloadError(f"404 for {url}")
        return self.payloads[url]
