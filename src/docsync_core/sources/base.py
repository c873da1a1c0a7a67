from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from ..types import ChangeEvent, Position


class ChangeSource(ABC):
    """Where changed or new documents come from.

    ``pull`` is the only suspending call the engine makes against a source:
    - non-empty list: data to replicate
    - empty list: nothing available right now (polling is caught up, or the
      feed had no event within the server's await window)
    - None: the feed has ended; no further data will arrive
    Read failures raise ``TransportError``.
    """

    live: bool = False

    @abstractmethod
    async def open(self, position: Optional[Position]) -> None:  # pragma: no cover
        ...

    @abstractmethod
    async def pull(self) -> Optional[List[ChangeEvent]]:  # pragma: no cover
        ...

    def advance(self, position: Position) -> None:
        """Called after ``position`` has been applied to the target."""
        return None

    async def close(self) -> None:
        return None
