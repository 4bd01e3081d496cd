from __future__ import annotations

from reimburse.core.config import get_settings
from reimburse.core.errors import ProviderConfigError
from reimburse.providers.ai.fake import FakeAIAuditor
from reimburse.providers.downloader.http import HttpAttachmentDownloader
from reimburse.providers.messaging.fake import FakeMessagingClient


def get_ai_auditor():
    settings = get_settings()
    provider = (settings.ai_provider or "none").lower()

    if provider == "fake":
        return FakeAIAuditor(
            policy_confidence=settings.audit_high_confidence,
            price_confidence=settings.audit_high_confidence,
        )

    raise ProviderConfigError(f"Unsupported AI provider: {provider}")


def get_messaging_client():
    settings = get_settings()
    provider = (settings.messaging_provider or "none").lower()

    if provider == "fake":
        return FakeMessagingClient()

    raise ProviderConfigError(f"Unsupported messaging provider: {provider}")


def get_attachment_downloader() -> HttpAttachmentDownloader:
    return HttpAttachmentDownloader()
