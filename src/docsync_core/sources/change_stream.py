from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from pymongo.errors import PyMongoError

from .base import ChangeSource
from ..errors import ConfigError, TransportError
from ..types import ChangeEvent, FeedPosition, OperationType, Position


def to_change_event(change: Mapping[str, Any]) -> ChangeEvent:
    key = change.get("documentKey") or {}
    return ChangeEvent(
        operation=OperationType.parse(change.get("operationType")),
        position=FeedPosition(token=change.get("_id")),
        document=change.get("fullDocument"),
        document_key=key.get("_id") if isinstance(key, Mapping) else None,
    )


class ChangeStreamSource(ChangeSource):
    """Live feed backed by a MongoDB change stream on one collection.

    Updates are looked up in full (``updateLookup``) so every propagated event
    carries the complete after-image. There is no reconnect: once the stream
    errors or closes, the source is done.
    """

    live = True

    def __init__(self, collection: Any, *, full_document: str = "updateLookup", max_await_ms: Optional[int] = None) -> None:
        self.collection = collection
        self.full_document = full_document
        self.max_await_ms = max_await_ms
        self._stream: Any = None
        self._log = logging.getLogger(__name__)

    async def open(self, position: Optional[Position]) -> None:
        kwargs: Dict[str, Any] = {"full_document": self.full_document}
        if self.max_await_ms:
            kwargs["max_await_time_ms"] = self.max_await_ms
        if position is not None:
            if not isinstance(position, FeedPosition):
                raise ConfigError("A change stream can only resume from a resume token")
            kwargs["resume_after"] = position.token
            self._log.info("Resuming change stream after token %s", position.token)
        else:
            self._log.info("Starting new change stream")
        try:
            self._stream = await self.collection.watch(**kwargs)
        except PyMongoError as e:
            raise TransportError(f"Could not open change stream: {e}") from e

    async def pull(self) -> Optional[List[ChangeEvent]]:
        if self._stream is None:
            raise RuntimeError("ChangeStreamSource.pull() called before open()")
        if not self._stream.alive:
            return None
        try:
            change = await self._stream.try_next()
        except PyMongoError as e:
            raise TransportError(f"Change stream error: {e}") from e
        if change is None:
            return [] if self._stream.alive else None
        return [to_change_event(change)]

    async def close(self) -> None:
        if self._stream is not None:
            stream, self._stream = self._stream, None
            await stream.close()
