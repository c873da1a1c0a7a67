from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, List

from pymongo import ReplaceOne
from pymongo.errors import ClientBulkWriteException, PyMongoError

from .base import WriteReport, WriteStrategy
from ..errors import WriteError
from ..metrics import sync_documents_failed_total
from ..types import IDENTITY_FIELD, Document


def _failed_indexes(exc: ClientBulkWriteException) -> List[int]:
    errors = exc.write_errors or []
    if isinstance(errors, Mapping):
        return [int(i) for i in errors]
    return [int(e["idx"]) for e in errors if isinstance(e, Mapping) and "idx" in e]


class BulkReplaceWriter(WriteStrategy):
    """Whole batch as one client-level ``bulkWrite`` of upserting replaces.

    Requires MongoDB 8.0+. Either the request succeeds or a ``WriteError``
    names the documents the server rejected.
    """

    name = "atomic"

    def __init__(self, client: Any, namespace: str) -> None:
        self.client = client
        self.namespace = namespace
        self._log = logging.getLogger(__name__)

    async def _write(self, docs: List[Document], report: WriteReport) -> None:
        models = [
            ReplaceOne({IDENTITY_FIELD: doc[IDENTITY_FIELD]}, doc, upsert=True, namespace=self.namespace)
            for doc in docs
        ]
        try:
            await self.client.bulk_write(models)
        except ClientBulkWriteException as e:
            idx = [i for i in _failed_indexes(e) if 0 <= i < len(docs)]
            failed_ids = [docs[i][IDENTITY_FIELD] for i in idx] or [d[IDENTITY_FIELD] for d in docs]
            sync_documents_failed_total.labels(strategy=self.name).inc(len(failed_ids))
            raise WriteError(
                f"Bulk replace of {len(docs)} documents into {self.namespace} failed: {e}", failed_ids=failed_ids
            ) from e
        except PyMongoError as e:
            sync_documents_failed_total.labels(strategy=self.name).inc(len(docs))
            raise WriteError(
                f"Bulk replace of {len(docs)} documents into {self.namespace} failed: {e}",
                failed_ids=[d[IDENTITY_FIELD] for d in docs],
            ) from e
        report.written += len(docs)
        self._log.debug("Bulk replaced %d documents into %s", len(docs), self.namespace)
