from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List, Sequence, Tuple

from ..metrics import sync_documents_failed_total, sync_documents_skipped_total, sync_documents_written_total
from ..types import IDENTITY_FIELD, Document


@dataclass
class FailedWrite:
    identity: Any
    document: Document
    error: str


@dataclass
class WriteReport:
    written: int = 0
    skipped: int = 0
    failed: List[FailedWrite] = field(default_factory=list)


def partition_replicable(batch: Sequence[Document]) -> Tuple[List[Document], int]:
    """Split off documents without an identity; those are dropped, not retried."""
    log = logging.getLogger(__name__)
    keep: List[Document] = []
    skipped = 0
    for doc in batch:
        if IDENTITY_FIELD in doc:
            keep.append(doc)
            continue
        skipped += 1
        log.warning("Dropping document without %s (fields: %s)", IDENTITY_FIELD, ", ".join(sorted(doc)[:10]))
    if skipped:
        sync_documents_skipped_total.labels(reason="missing_id").inc(skipped)
    return keep, skipped


class WriteStrategy(ABC):
    """Upsert-replace a batch into the target, keyed by ``_id``."""

    name: str = "base"

    async def apply(self, batch: Sequence[Document]) -> WriteReport:
        docs, skipped = partition_replicable(batch)
        report = WriteReport(skipped=skipped)
        if not docs:
            return report
        await self._write(docs, report)
        if report.written:
            sync_documents_written_total.labels(strategy=self.name).inc(report.written)
        if report.failed:
            sync_documents_failed_total.labels(strategy=self.name).inc(len(report.failed))
        return report

    @abstractmethod
    async def _write(self, docs: List[Document], report: WriteReport) -> None:  # pragma: no cover
        ...
