from __future__ import annotations

import logging
import mimetypes
from pathlib import PurePath

from sqlalchemy.ext.asyncio import AsyncSession

from reimburse.core.config import get_settings
from reimburse.core.errors import DownloadError, ReimburseError, StorageError
from reimburse.domain.constants import AttachmentStatus
from reimburse.domain.models import Attachment
from reimburse.persistence.repos import attachments as attachments_repo
from reimburse.persistence.transaction import TransactionCoordinator
from reimburse.providers.downloader.base import AttachmentDownloader
from reimburse.storage.files import LocalFileStorage
from reimburse.storage.folders import LocalFolderManager
from reimburse.workers.base import PollingWorker


logger = logging.getLogger(__name__)


def storage_file_name(attachment: Attachment) -> str:
    # Prefixing the attachment id keeps names unique within an instance folder.
    original = PurePath(attachment.file_name or "attachment")
    stem = LocalFolderManager.sanitize_name(original.stem) or "attachment"
    suffix = LocalFolderManager.sanitize_name(original.suffix.lstrip(".")).lower()
    return f"{attachment.id}_{stem}.{suffix}" if suffix else f"{attachment.id}_{stem}"


class DownloadWorker(PollingWorker[Attachment]):
    """Fetches PENDING attachment bytes into per-instance storage folders."""

    name = "download"

    def __init__(
        self,
        coordinator: TransactionCoordinator,
        downloader: AttachmentDownloader,
        storage: LocalFileStorage,
        folders: LocalFolderManager,
        *,
        poll_interval_s: float | None = None,
        batch_size: int | None = None,
        item_timeout_s: float | None = None,
        max_attempts: int | None = None,
    ) -> None:
        settings = get_settings()
        super().__init__(
            coordinator,
            poll_interval_s=poll_interval_s or settings.download_poll_interval_s,
            batch_size=batch_size or settings.download_batch_size,
            item_timeout_s=item_timeout_s or settings.download_timeout_s,
        )
        self._downloader = downloader
        self._storage = storage
        self._folders = folders
        self.max_attempts = max(1, max_attempts or settings.download_max_attempts)

    async def fetch_pending(self, session: AsyncSession, limit: int) -> list[Attachment]:
        return await attachments_repo.list_pending_downloads(session, limit=limit)

    async def _fail(self, attachment: Attachment, reason: str) -> None:
        async with self._tx.transaction() as session:
            await attachments_repo.update_status(
                session, attachment.id, status=AttachmentStatus.FAILED, error_message=reason
            )
        logger.warning("attachment_download_failed attachment_id=%s reason=%s", attachment.id, reason)

    async def on_timeout(self, attachment: Attachment) -> None:
        await self._fail(attachment, f"download timed out after {self.item_timeout_s}s")

    async def process(self, attachment: Attachment) -> None:
        try:
            await self._folders.create_folder(attachment.external_instance_id)
        except StorageError as exc:
            await self._fail(attachment, f"create folder: {exc}")
            raise

        if not attachment.url:
            await self._fail(attachment, "missing download url")
            raise DownloadError(f"attachment {attachment.id} has no download url")

        try:
            data = await self._downloader.download_with_retry(attachment.url, self.max_attempts)
        except ReimburseError as exc:
            await self._fail(attachment, f"download: {exc}")
            raise
        except Exception as exc:
            await self._fail(attachment, f"download: {exc}")
            raise DownloadError(f"attachment {attachment.id} download failed") from exc

        folder = LocalFolderManager.sanitize_name(attachment.external_instance_id)
        file_path = f"{folder}/{storage_file_name(attachment)}"
        try:
            await self._storage.save(file_path, data)
        except StorageError as exc:
            await self._fail(attachment, f"save: {exc}")
            raise

        mime_type, _ = mimetypes.guess_type(file_path)
        async with self._tx.transaction() as session:
            await attachments_repo.mark_downloaded(
                session,
                attachment.id,
                file_path=file_path,
                file_size=len(data),
                mime_type=mime_type,
            )
        logger.info(
            "attachment_downloaded attachment_id=%s path=%s size=%s", attachment.id, file_path, len(data)
        )
