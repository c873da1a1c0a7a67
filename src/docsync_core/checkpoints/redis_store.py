from __future__ import annotations

from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from .base import CheckpointStore
from .codec import decode_position, encode_position
from ..errors import CheckpointIoError
from ..types import Position


class RedisCheckpointStore(CheckpointStore):
    """Checkpoint kept under a single Redis key.

    ``SET`` replaces the whole value, so a reader never sees a partial write.
    """

    def __init__(self, url: str, key: str = "docsync:checkpoint") -> None:
        self.url = url
        self.key = key

    def describe(self) -> str:
        return f"redis key {self.key!r}"

    async def _r(self):
        return redis.from_url(self.url, encoding="utf-8", decode_responses=True)

    async def load(self) -> Optional[Position]:
        r = await self._r()
        try:
            raw = await r.get(self.key)
        except RedisError as e:
            raise CheckpointIoError(f"Cannot read checkpoint from {self.describe()}: {e}") from e
        finally:
            await r.aclose()
        if raw is None:
            return None
        return decode_position(raw)

    async def save(self, position: Position) -> None:
        data = encode_position(position)
        r = await self._r()
        try:
            await r.set(self.key, data)
        except RedisError as e:
            raise CheckpointIoError(f"Cannot write checkpoint to {self.describe()}: {e}") from e
        finally:
            await r.aclose()
