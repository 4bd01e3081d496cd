from __future__ import annotations

import logging

from reimburse.core.config import get_settings


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    # Install one root handler; repeated calls only adjust the level.
    resolved = (level or get_settings().log_level).upper()
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=resolved, format=LOG_FORMAT)
    root.setLevel(resolved)
