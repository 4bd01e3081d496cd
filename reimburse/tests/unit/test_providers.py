from __future__ import annotations

import pytest

from reimburse.core.config import get_settings
from reimburse.core.errors import ProviderConfigError
from reimburse.providers.ai.base import ItemContext
from reimburse.providers.ai.fake import FakeAIAuditor
from reimburse.providers.factory import get_ai_auditor, get_messaging_client
from reimburse.providers.messaging.fake import FakeMessagingClient


def test_factory_returns_fakes_by_default() -> None:
    assert isinstance(get_ai_auditor(), FakeAIAuditor)
    assert isinstance(get_messaging_client(), FakeMessagingClient)


def test_factory_rejects_unknown_providers(monkeypatch) -> None:
    monkeypatch.setenv("AI_PROVIDER", "mystery")
    monkeypatch.setenv("MESSAGING_PROVIDER", "carrier-pigeon")
    get_settings.cache_clear()
    with pytest.raises(ProviderConfigError):
        get_ai_auditor()
    with pytest.raises(ProviderConfigError):
        get_messaging_client()


@pytest.mark.asyncio
async def test_fake_auditor_flags_claims_above_invoice_total() -> None:
    auditor = FakeAIAuditor()
    extraction = await auditor.extract_invoice(b"x" * 50, "application/pdf")
    assert extraction.success
    assert extraction.total_amount == 50.0

    within = await auditor.audit_policy(ItemContext(item_id=1, item_type="MEAL", amount=50.0), extraction)
    above = await auditor.audit_policy(ItemContext(item_id=1, item_type="MEAL", amount=80.0), extraction)
    assert within.compliant
    assert not above.compliant
    assert above.violations == ["Claimed amount exceeds invoice total"]


@pytest.mark.asyncio
async def test_fake_auditor_identical_bytes_extract_identically() -> None:
    auditor = FakeAIAuditor()
    first = await auditor.extract_invoice(b"same", "image/png")
    second = await auditor.extract_invoice(b"same", "image/png")
    empty = await auditor.extract_invoice(b"", "image/png")
    assert (first.invoice_code, first.invoice_number) == (second.invoice_code, second.invoice_number)
    assert not empty.success


@pytest.mark.asyncio
async def test_fake_auditor_price_ceiling() -> None:
    auditor = FakeAIAuditor(price_ceiling=100.0)
    result = await auditor.audit_price(ItemContext(item_id=1, item_type="EQUIPMENT", amount=150.0), None)
    assert not result.reasonable
    assert result.deviation_percentage == pytest.approx(50.0)
