from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .base import CheckpointStore
from .codec import decode_position, encode_position
from ..errors import CheckpointIoError, CorruptCheckpointError
from ..types import Position


@dataclass
class FileCheckpointStore(CheckpointStore):
    path: Path

    def describe(self) -> str:
        return str(self.path)

    async def load(self) -> Optional[Position]:
        if not self.path.exists():
            return None
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise CheckpointIoError(f"Cannot read checkpoint {self.path}: {e}") from e
        if not raw.strip():
            raise CorruptCheckpointError(f"Checkpoint file {self.path} is empty")
        return decode_position(raw)

    async def save(self, position: Position) -> None:
        data = encode_position(position)
        # Write next to the target so os.replace stays on one filesystem
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(data, encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as e:
            raise CheckpointIoError(f"Cannot write checkpoint {self.path}: {e}") from e
