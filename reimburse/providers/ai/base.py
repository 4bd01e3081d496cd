from __future__ import annotations

from typing import Any, Protocol

from pydantic import BaseModel, Field


class ItemContext(BaseModel):
    """Line-item facts handed to the auditor; detached from ORM state."""

    item_id: int | None = None
    item_type: str
    description: str | None = None
    amount: float
    currency: str = "CNY"
    vendor: str | None = None
    business_purpose: str | None = None


class InvoiceExtraction(BaseModel):
    success: bool = False
    invoice_code: str = ""
    invoice_number: str = ""
    total_amount: float = 0.0
    tax_amount: float = 0.0
    invoice_date: str = ""
    seller_name: str = ""
    seller_tax_id: str = ""
    buyer_name: str = ""
    buyer_tax_id: str = ""
    extracted_data: dict[str, Any] = Field(default_factory=dict)
    confidence: float = 0.0
    error: str = ""


class PolicyAuditResult(BaseModel):
    compliant: bool
    violations: list[str] = Field(default_factory=list)
    confidence: float
    reasoning: str = ""


class PriceAuditResult(BaseModel):
    reasonable: bool
    deviation_percentage: float = 0.0
    market_price_min: float = 0.0
    market_price_max: float = 0.0
    confidence: float
    reasoning: str = ""


class AIAuditor(Protocol):
    async def audit_policy(
        self, item: ItemContext, invoice: InvoiceExtraction | None
    ) -> PolicyAuditResult:
        ...

    async def audit_price(
        self, item: ItemContext, invoice: InvoiceExtraction | None
    ) -> PriceAuditResult:
        ...

    async def extract_invoice(self, data: bytes, mime_type: str) -> InvoiceExtraction:
        ...
