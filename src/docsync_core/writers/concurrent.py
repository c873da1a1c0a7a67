from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional

from .base import FailedWrite, WriteReport, WriteStrategy
from ..errors import ConfigError
from ..types import IDENTITY_FIELD, Document


class ConcurrentReplaceWriter(WriteStrategy):
    """One ``replace_one(upsert=True)`` per document, at most ``concurrency`` in flight.

    Failures are per document: they are logged and reported, siblings keep
    going, and ``apply`` returns only once every write has settled.
    """

    name = "concurrent"

    def __init__(self, collection: Any, concurrency: int = 10) -> None:
        if concurrency < 1:
            raise ConfigError("write concurrency must be at least 1")
        self.collection = collection
        self.concurrency = concurrency
        self._log = logging.getLogger(__name__)

    async def _write(self, docs: List[Document], report: WriteReport) -> None:
        sem = asyncio.Semaphore(self.concurrency)

        async def _one(doc: Document) -> Optional[FailedWrite]:
            ident = doc[IDENTITY_FIELD]
            async with sem:
                try:
                    await self.collection.replace_one({IDENTITY_FIELD: ident}, doc, upsert=True)
                except Exception as e:
                    self._log.error("Per-document write failed for _id=%r: %s", ident, e)
                    return FailedWrite(identity=ident, document=doc, error=str(e))
            return None

        results = await asyncio.gather(*(_one(doc) for doc in docs))
        failed = [r for r in results if r is not None]
        report.failed.extend(failed)
        report.written += len(docs) - len(failed)
