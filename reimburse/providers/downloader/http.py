from __future__ import annotations

import time

import httpx

from reimburse.core.config import get_settings
from reimburse.core.errors import DownloadError
from reimburse.services.resilience import RetryPolicy, retry_async
from reimburse.services.telemetry import record_external_call


def _retryable(exc: Exception) -> bool:
    if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
        return True
    if isinstance(exc, httpx.NetworkError):
        return True
    status = getattr(exc, "status_code", None)
    return isinstance(status, int) and status >= 500


class HttpAttachmentDownloader:
    def __init__(self, client: httpx.AsyncClient | None = None, *, auth_token: str | None = None) -> None:
        self._settings = get_settings()
        self._client = client
        self._auth_token = auth_token if auth_token is not None else self._settings.download_auth_token

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        # Reuse a single client per downloader for connection pooling.
        timeout_s = self._settings.ext_call_timeout_ms / 1000.0
        self._client = httpx.AsyncClient(timeout=timeout_s, follow_redirects=True)
        return self._client

    async def _fetch(self, url: str) -> bytes:
        headers = {"Authorization": f"Bearer {self._auth_token}"} if self._auth_token else {}
        response = await self._get_client().get(url, headers=headers)
        if response.status_code >= 400:
            error = DownloadError(f"download failed with status {response.status_code}")
            setattr(error, "status_code", response.status_code)
            raise error
        return response.content

    async def download(self, url: str) -> bytes:
        return await self.download_with_retry(url, 1)

    async def download_with_retry(self, url: str, max_attempts: int) -> bytes:
        policy = RetryPolicy(
            timeout_ms=self._settings.ext_call_timeout_ms,
            max_attempts=max(1, max_attempts),
            backoff_ms=self._settings.ext_retry_backoff_ms,
        )
        start = time.monotonic()
        try:
            content = await retry_async(lambda: self._fetch(url), policy=policy, retryable=_retryable, name="download")
        except DownloadError:
            record_external_call(
                integration="download", latency_ms=(time.monotonic() - start) * 1000.0, success=False
            )
            raise
        except (httpx.HTTPError, TimeoutError) as exc:
            record_external_call(
                integration="download", latency_ms=(time.monotonic() - start) * 1000.0, success=False
            )
            raise DownloadError(f"download request failed: {type(exc).__name__}") from exc
        record_external_call(
            integration="download", latency_ms=(time.monotonic() - start) * 1000.0, success=True
        )
        return content

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
