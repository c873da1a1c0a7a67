from __future__ import annotations

from typing import Any, Iterable, Optional


class SyncError(Exception):
    """Base class for all docsync errors."""


class ConfigError(SyncError):
    """Invalid or contradictory settings. Raised before any I/O."""


class ConnectError(SyncError):
    """Source or target could not be reached at bootstrap."""


class TransportError(SyncError):
    """A read from the change stream or polling query failed mid-run."""


class WriteError(SyncError):
    def __init__(self, message: str, failed_ids: Optional[Iterable[Any]] = None) -> None:
        super().__init__(message)
        self.failed_ids = list(failed_ids or [])


class CheckpointIoError(SyncError):
    """Checkpoint could not be read or written."""


class CorruptCheckpointError(CheckpointIoError):
    """Checkpoint exists but cannot be decoded."""


class SkipError(SyncError):
    """A single unit of work is not replicable and gets dropped."""

    def __init__(self, reason: str, identity: Any = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.identity = identity
