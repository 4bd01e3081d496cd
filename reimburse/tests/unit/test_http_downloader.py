from __future__ import annotations

import httpx
import pytest

from reimburse.core.errors import DownloadError
from reimburse.providers.downloader.http import HttpAttachmentDownloader
from reimburse.services.telemetry import counters_snapshot, external_call_summary


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_download_retries_server_errors() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] == 1:
            return httpx.Response(503)
        return httpx.Response(200, content=b"file-bytes")

    downloader = HttpAttachmentDownloader(_client(handler))
    try:
        data = await downloader.download_with_retry("https://files.test/a.pdf", 3)
    finally:
        await downloader.aclose()

    assert data == b"file-bytes"
    assert calls["count"] == 2
    assert counters_snapshot()["retries.download"] == 1
    assert external_call_summary(60)["download"]["calls"] == 1.0


@pytest.mark.asyncio
async def test_download_does_not_retry_client_errors() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(404)

    downloader = HttpAttachmentDownloader(_client(handler))
    try:
        with pytest.raises(DownloadError) as excinfo:
            await downloader.download_with_retry("https://files.test/missing.pdf", 3)
    finally:
        await downloader.aclose()

    assert calls["count"] == 1
    assert excinfo.value.status_code == 404


@pytest.mark.asyncio
async def test_network_errors_become_download_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    downloader = HttpAttachmentDownloader(_client(handler))
    try:
        with pytest.raises(DownloadError):
            await downloader.download_with_retry("https://files.test/a.pdf", 2)
    finally:
        await downloader.aclose()
    assert counters_snapshot()["retries.download"] == 1


@pytest.mark.asyncio
async def test_auth_token_is_sent() -> None:
    seen: list[str | None] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers.get("Authorization"))
        return httpx.Response(200, content=b"ok")

    downloader = HttpAttachmentDownloader(_client(handler), auth_token="secret")
    try:
        await downloader.download("https://files.test/a.pdf")
    finally:
        await downloader.aclose()
    assert seen == ["Bearer secret"]
