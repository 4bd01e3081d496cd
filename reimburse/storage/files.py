from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from reimburse.core.errors import StorageError


logger = logging.getLogger(__name__)


class LocalFileStorage:
    """Byte storage keyed by logical paths relative to a base directory."""

    def __init__(self, base_dir: str | Path) -> None:
        self._base_dir = Path(base_dir).resolve()

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def resolve(self, logical_path: str) -> Path:
        # Reject absolute paths and ".." segments that would leave the base directory.
        if not logical_path:
            raise StorageError("empty storage path")
        candidate = (self._base_dir / logical_path).resolve()
        if candidate != self._base_dir and self._base_dir not in candidate.parents:
            raise StorageError(f"path escapes storage directory: {logical_path}")
        return candidate

    def _write(self, target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    async def save(self, logical_path: str, data: bytes) -> str:
        target = self.resolve(logical_path)
        try:
            await asyncio.to_thread(self._write, target, data)
        except OSError as exc:
            raise StorageError(f"save failed for {logical_path}") from exc
        logger.debug("file_saved path=%s size=%s", logical_path, len(data))
        return logical_path

    async def read(self, logical_path: str) -> bytes:
        target = self.resolve(logical_path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except OSError as exc:
            raise StorageError(f"read failed for {logical_path}") from exc

    async def exists(self, logical_path: str) -> bool:
        target = self.resolve(logical_path)
        return await asyncio.to_thread(target.is_file)

    async def delete(self, logical_path: str) -> None:
        target = self.resolve(logical_path)
        try:
            # Missing files count as deleted.
            await asyncio.to_thread(target.unlink, True)
        except OSError as exc:
            raise StorageError(f"delete failed for {logical_path}") from exc
