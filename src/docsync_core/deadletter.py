from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Iterable, Optional

from bson import json_util
from bson.json_util import CANONICAL_JSON_OPTIONS

from .types import Document


class DeadLetterSink:
    """Append-only JSON-lines record of documents the engine gave up on.

    Each line: ``{"ts": <ms>, "reason": <str>, "document": <extended JSON>}``.
    Without a path the sink only logs.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path
        self.count = 0
        self._log = logging.getLogger(__name__)

    def record(self, documents: Iterable[Document], reason: str) -> int:
        docs = list(documents)
        if not docs:
            return 0
        self.count += len(docs)
        if self.path is None:
            for doc in docs:
                self._log.warning("Unreplicated document _id=%r (%s)", doc.get("_id"), reason)
            return len(docs)
        ts = int(time.time() * 1000)
        lines = [
            json_util.dumps({"ts": ts, "reason": reason, "document": doc}, json_options=CANONICAL_JSON_OPTIONS)
            for doc in docs
        ]
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                for line in lines:
                    f.write(line + "\n")
        except OSError as e:
            self._log.error("Could not append %d documents to dead-letter file %s: %s", len(docs), self.path, e)
        return len(docs)
