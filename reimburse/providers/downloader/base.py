from __future__ import annotations

from typing import Protocol


class AttachmentDownloader(Protocol):
    async def download(self, url: str) -> bytes:
        ...

    async def download_with_retry(self, url: str, max_attempts: int) -> bytes:
        ...
