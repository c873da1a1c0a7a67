from .engine import SyncEngine, SyncState, SyncStats, EngineConfig
from .types import ChangeEvent, Document, FeedPosition, FieldPosition, OperationType, Position
from .connection import MongoEndpoint
from .checkpoints.base import CheckpointStore
from .checkpoints.file_store import FileCheckpointStore
from .sources.base import ChangeSource
from .sources.change_stream import ChangeStreamSource
from .sources.polling import FieldPollingSource
from .writers.base import WriteStrategy, WriteReport
from .writers.bulk import BulkReplaceWriter
from .writers.concurrent import ConcurrentReplaceWriter

__all__ = [
    "SyncEngine",
    "SyncState",
    "SyncStats",
    "EngineConfig",
    "ChangeEvent",
    "Document",
    "FeedPosition",
    "FieldPosition",
    "OperationType",
    "Position",
    "MongoEndpoint",
    "CheckpointStore",
    "FileCheckpointStore",
    "ChangeSource",
    "ChangeStreamSource",
    "FieldPollingSource",
    "WriteStrategy",
    "WriteReport",
    "BulkReplaceWriter",
    "ConcurrentReplaceWriter",
]
