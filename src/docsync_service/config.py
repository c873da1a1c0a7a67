# src/docsync_service/config.py
from typing import Optional
from pydantic_settings import BaseSettings
from docsync_core import MongoEndpoint
from docsync_core.errors import ConfigError

class Settings(BaseSettings):
    # Source collection
    source_uri: Optional[str] = None
    source_db: Optional[str] = None
    source_collection: Optional[str] = None
    # Target collection
    target_uri: Optional[str] = None
    target_db: Optional[str] = None
    target_collection: Optional[str] = None

    # Mode: exactly one of change stream or sync field
    use_change_stream: bool = False
    sync_field: Optional[str] = None  # e.g. updatedAt, _id
    full_document: str = "updateLookup"
    max_await_ms: Optional[int] = None  # server-side wait per change stream getMore

    # Resume: explicit value wins over the checkpoint
    resume_value: Optional[str] = None
    resume_type: str = "string"  # string|int|long|double|decimal|objectid|date|bool
    resume_id: Optional[str] = None  # tiebreaker for resume_value in field mode
    resume_id_type: str = "objectid"
    resume_file: Optional[str] = None
    store_resume: bool = False
    ignore_corrupt_checkpoint: bool = False
    # Checkpoint backend: file (default, uses resume_file) or redis
    checkpoint_backend: str = "file"
    redis_url: Optional[str] = None  # e.g. redis://localhost:6379/0
    redis_key: str = "docsync:checkpoint"

    # Batching / writes
    limit: int = 100  # documents per batch (and per polling page)
    concurrency: int = 10  # in-flight writes for the per-document strategy
    write_strategy: str = "auto"  # auto|atomic|concurrent
    dead_letter_file: Optional[str] = None

    # Idle backoff for field polling (seconds)
    idle_delay_floor_sec: float = 10.0
    idle_delay_ceiling_sec: float = 60.0
    # Stop once caught up instead of running forever
    once: bool = False

    # Health
    health_file: Optional[str] = None
    health_http_port: Optional[int] = None  # e.g., 8080 to enable /healthz

    @property
    def source(self) -> MongoEndpoint:
        if not all([self.source_uri, self.source_db, self.source_collection]):
            raise ConfigError("Source settings missing: set SYNC_SOURCE_URI, SYNC_SOURCE_DB, SYNC_SOURCE_COLLECTION")
        return MongoEndpoint(
            uri=self.source_uri,  # type: ignore[arg-type]
            database=self.source_db,  # type: ignore[arg-type]
            collection=self.source_collection,  # type: ignore[arg-type]
        )

    @property
    def target(self) -> MongoEndpoint:
        if not all([self.target_uri, self.target_db, self.target_collection]):
            raise ConfigError("Target settings missing: set SYNC_TARGET_URI, SYNC_TARGET_DB, SYNC_TARGET_COLLECTION")
        return MongoEndpoint(
            uri=self.target_uri,  # type: ignore[arg-type]
            database=self.target_db,  # type: ignore[arg-type]
            collection=self.target_collection,  # type: ignore[arg-type]
        )

    class Config:
        env_prefix = "SYNC_"
        extra = "ignore"

settings = Settings()
