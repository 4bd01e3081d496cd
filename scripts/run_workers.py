from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from reimburse.core.config import get_settings
from reimburse.core.logging import configure_logging
from reimburse.persistence.db import create_schema, engine
from reimburse.workers.runtime import build_runtime


logger = logging.getLogger(__name__)


async def _main() -> None:
    # Run every background loop in one process until interrupted.
    configure_logging()
    settings = get_settings()
    Path(settings.storage_dir).mkdir(parents=True, exist_ok=True)
    if settings.database_url.startswith("sqlite"):
        Path("var").mkdir(parents=True, exist_ok=True)
        await create_schema()
    runtime = build_runtime()
    await runtime.manager.start_all()
    try:
        await asyncio.Event().wait()
    finally:
        await runtime.manager.stop_all()
        await engine.dispose()


if __name__ == "__main__":
    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        logger.info("workers_interrupted")
