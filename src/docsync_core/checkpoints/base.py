from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

from ..errors import CorruptCheckpointError
from ..types import Position


class CheckpointStore(ABC):
    @abstractmethod
    async def load(self) -> Optional[Position]:  # pragma: no cover
        """Return the stored position, or None on a cold start."""
        ...

    @abstractmethod
    async def save(self, position: Position) -> None:  # pragma: no cover
        """Overwrite the stored position in full."""
        ...

    def describe(self) -> str:
        return type(self).__name__


async def load_checkpoint(store: CheckpointStore, *, ignore_corrupt: bool = False) -> Optional[Position]:
    """Load a checkpoint; an undecodable one is fatal unless ``ignore_corrupt``."""
    log = logging.getLogger(__name__)
    try:
        position = await store.load()
    except CorruptCheckpointError as e:
        if not ignore_corrupt:
            raise
        log.warning("Ignoring corrupt checkpoint in %s, starting from scratch: %s", store.describe(), e)
        return None
    if position is None:
        log.info("No checkpoint found in %s", store.describe())
    else:
        log.info("Loaded checkpoint from %s: %r", store.describe(), position)
    return position
