from __future__ import annotations

import asyncio
import re
import shutil
from pathlib import Path

from reimburse.core.errors import StorageError


_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9\-_]")


class LocalFolderManager:
    """Per-instance folders under the storage base directory."""

    def __init__(self, base_dir: str | Path) -> None:
        self._base_dir = Path(base_dir).resolve()

    @staticmethod
    def sanitize_name(name: str) -> str:
        cleaned = name.replace("..", "").replace("/", "").replace("\\", "")
        return _UNSAFE_CHARS.sub("", cleaned)

    def get_path(self, name: str) -> Path:
        safe = self.sanitize_name(name)
        if not safe:
            raise StorageError(f"invalid folder name: {name!r}")
        return self._base_dir / safe

    async def create_folder(self, name: str) -> Path:
        path = self.get_path(name)
        try:
            await asyncio.to_thread(path.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"create folder failed for {name}") from exc
        return path

    async def exists(self, name: str) -> bool:
        path = self.get_path(name)
        return await asyncio.to_thread(path.is_dir)

    async def delete(self, name: str) -> None:
        path = self.get_path(name)
        # Deleting a missing folder is a no-op.
        await asyncio.to_thread(shutil.rmtree, path, True)
