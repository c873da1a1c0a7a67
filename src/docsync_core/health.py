from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional

from .metrics import sync_last_flush_timestamp_seconds


class HealthSignal:
    """Liveness marker: millisecond timestamp of the last successful flush.

    When a path is configured the timestamp is also written there so an external
    monitor can poll the file content or mtime for staleness.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path
        self.last_flush_ms: Optional[int] = None
        self._log = logging.getLogger(__name__)

    def touch(self, now_ms: Optional[int] = None) -> None:
        ts = now_ms if now_ms is not None else int(time.time() * 1000)
        self.last_flush_ms = ts
        sync_last_flush_timestamp_seconds.set(ts / 1000.0)
        if self.path is None:
            return
        try:
            self.path.write_text(str(ts), encoding="utf-8")
        except OSError as e:
            self._log.warning("Could not write health file %s: %s", self.path, e)
