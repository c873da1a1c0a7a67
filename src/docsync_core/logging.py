from __future__ import annotations

import logging
import os


def setup_logging(default_level: str | None = None) -> None:
    level_name = (default_level or os.getenv("SYNC_LOG_LEVEL") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    # pymongo is chatty at DEBUG (command monitoring, SDAM)
    logging.getLogger("pymongo").setLevel(max(level, logging.WARNING))
