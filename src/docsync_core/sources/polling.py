from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ASCENDING
from pymongo.errors import PyMongoError

from .base import ChangeSource
from ..errors import ConfigError, TransportError
from ..types import IDENTITY_FIELD, ChangeEvent, Document, FieldPosition, OperationType, Position, lookup


def build_filter(field: str, position: Optional[FieldPosition]) -> Dict[str, Any]:
    """Exclusive lower bound on ``(field, _id)``.

    Documents sharing the boundary value are still picked up through the
    ``_id`` tiebreaker, the boundary document itself is not re-read.
    Documents where ``field`` is missing or null sort before every real value
    and carry no position, so they are never selected.
    """
    if position is None or position.value is None:
        return {} if field == IDENTITY_FIELD else {field: {"$ne": None}}
    if field == IDENTITY_FIELD or position.identity is None:
        return {field: {"$gt": position.value}}
    return {
        "$or": [
            {field: {"$gt": position.value}},
            {"$and": [{field: position.value}, {IDENTITY_FIELD: {"$gt": position.identity}}]},
        ]
    }


def build_sort(field: str) -> List[Tuple[str, int]]:
    if field == IDENTITY_FIELD:
        return [(IDENTITY_FIELD, ASCENDING)]
    return [(field, ASCENDING), (IDENTITY_FIELD, ASCENDING)]


def position_of(doc: Document, field: str) -> Optional[FieldPosition]:
    if IDENTITY_FIELD not in doc:
        return None
    try:
        value = lookup(doc, field)
    except KeyError:
        return None
    if value is None:
        return None
    return FieldPosition(value=value, identity=doc[IDENTITY_FIELD])


class FieldPollingSource(ChangeSource):
    """Incremental catch-up over a sortable field.

    Each ``pull`` runs one sorted, bounded ``find``. The lower bound only moves
    when the engine reports a page as applied via ``advance``.
    """

    live = False

    def __init__(self, collection: Any, field: str, page_size: int = 100) -> None:
        if page_size < 1:
            raise ConfigError("page size must be at least 1")
        self.collection = collection
        self.field = field
        self.page_size = page_size
        self._position: Optional[FieldPosition] = None
        self._log = logging.getLogger(__name__)

    @property
    def position(self) -> Optional[FieldPosition]:
        return self._position

    async def open(self, position: Optional[Position]) -> None:
        if position is not None and not isinstance(position, FieldPosition):
            raise ConfigError(f"Field polling on '{self.field}' cannot resume from a change stream token")
        self._position = position
        if position is None:
            self._log.info("Polling '%s' from the beginning", self.field)
        else:
            self._log.info("Polling '%s' after value=%r _id=%r", self.field, position.value, position.identity)
        if self.field != IDENTITY_FIELD:
            self._log.info("Documents with a missing or null '%s' are not picked up by polling", self.field)

    async def pull(self) -> List[ChangeEvent]:
        flt = build_filter(self.field, self._position)
        try:
            cursor = self.collection.find(flt).sort(build_sort(self.field)).limit(self.page_size)
            docs = await cursor.to_list(None)
        except PyMongoError as e:
            raise TransportError(f"Polling query on '{self.field}' failed: {e}") from e
        return [
            ChangeEvent(
                operation=OperationType.REPLACE,
                position=position_of(doc, self.field),
                document=doc,
                document_key=doc.get(IDENTITY_FIELD),
            )
            for doc in docs
        ]

    def advance(self, position: Position) -> None:
        if isinstance(position, FieldPosition):
            self._position = position
