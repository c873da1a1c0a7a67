from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Optional

from docsync_core import EngineConfig, SyncEngine, SyncState
from docsync_core.checkpoints.base import CheckpointStore
from docsync_core.checkpoints.codec import explicit_position
from docsync_core.checkpoints.file_store import FileCheckpointStore
from docsync_core.checkpoints.redis_store import RedisCheckpointStore
from docsync_core.connection import connect
from docsync_core.deadletter import DeadLetterSink
from docsync_core.errors import ConfigError
from docsync_core.health import HealthSignal
from docsync_core.sources.base import ChangeSource
from docsync_core.sources.change_stream import ChangeStreamSource
from docsync_core.sources.polling import FieldPollingSource
from docsync_core.types import Position
from docsync_core.writers.selector import select_write_strategy

from .config import Settings

FEED = "change_stream"
FIELD = "field"


def resolve_mode(cfg: Settings) -> str:
    if cfg.use_change_stream and cfg.sync_field:
        raise ConfigError("Use either --use-change-stream or --sync-field, not both")
    if cfg.use_change_stream:
        return FEED
    if cfg.sync_field:
        return FIELD
    raise ConfigError("Either --use-change-stream or --sync-field must be provided")


def build_checkpoint_store(cfg: Settings) -> Optional[CheckpointStore]:
    backend = (cfg.checkpoint_backend or "file").lower()
    store: Optional[CheckpointStore]
    if backend == "file":
        store = FileCheckpointStore(path=Path(cfg.resume_file)) if cfg.resume_file else None
    elif backend == "redis":
        if not cfg.redis_url:
            raise ConfigError("SYNC_REDIS_URL is required when SYNC_CHECKPOINT_BACKEND=redis")
        store = RedisCheckpointStore(url=cfg.redis_url, key=cfg.redis_key)
    else:
        raise ConfigError(f"Unsupported checkpoint backend: {backend}")
    if cfg.store_resume and store is None:
        raise ConfigError("--store-resume needs a checkpoint location (--resume-file or the redis backend)")
    return store


def build_start_position(cfg: Settings, mode: str) -> Optional[Position]:
    if cfg.resume_value is None:
        return None
    return explicit_position(
        cfg.resume_value,
        feed=mode == FEED,
        value_type=cfg.resume_type,
        identity=cfg.resume_id,
        identity_type=cfg.resume_id_type,
    )


def engine_config(cfg: Settings) -> EngineConfig:
    return EngineConfig(
        batch_size=cfg.limit,
        persist_progress=cfg.store_resume,
        once=cfg.once,
        idle_floor_sec=cfg.idle_delay_floor_sec,
        idle_ceiling_sec=cfg.idle_delay_ceiling_sec,
        ignore_corrupt_checkpoint=cfg.ignore_corrupt_checkpoint,
    )


@dataclass
class SyncRuntime:
    engine: SyncEngine
    clients: List[Any] = field(default_factory=list)

    async def aclose(self) -> None:
        for client in self.clients:
            await client.close()
        self.clients.clear()


async def build_runtime(cfg: Settings) -> SyncRuntime:
    """Validate settings, connect both sides, classify the target, wire the engine.

    Every configuration check runs before the first network call.
    """
    log = logging.getLogger(__name__)
    mode = resolve_mode(cfg)
    source_ep, target_ep = cfg.source, cfg.target
    start = build_start_position(cfg, mode)
    store = build_checkpoint_store(cfg)
    config = engine_config(cfg)

    clients: List[Any] = []
    try:
        source_client, source_coll = await connect(source_ep)
        clients.append(source_client)
        target_client, target_coll = await connect(target_ep)
        clients.append(target_client)
        writer = await select_write_strategy(
            target_client,
            target_coll,
            namespace=target_ep.namespace,
            mode=cfg.write_strategy,
            concurrency=cfg.concurrency,
        )
    except BaseException:
        for client in clients:
            await client.close()
        raise

    source: ChangeSource
    if mode == FEED:
        log.info("Starting sync using change streams")
        source = ChangeStreamSource(source_coll, full_document=cfg.full_document, max_await_ms=cfg.max_await_ms)
    else:
        log.info("Starting sync using field '%s'", cfg.sync_field)
        source = FieldPollingSource(source_coll, field=cfg.sync_field or "", page_size=cfg.limit)

    engine = SyncEngine(
        source,
        writer,
        checkpoints=store,
        health=HealthSignal(Path(cfg.health_file) if cfg.health_file else None),
        dead_letters=DeadLetterSink(Path(cfg.dead_letter_file) if cfg.dead_letter_file else None),
        config=config,
        start_position=start,
    )
    return SyncRuntime(engine=engine, clients=clients)


async def run_sync(cfg: Settings, on_engine: Optional[Callable[[SyncEngine], None]] = None) -> SyncState:
    runtime = await build_runtime(cfg)
    engine = runtime.engine
    if on_engine is not None:
        on_engine(engine)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, engine.stop)
    try:
        return await engine.run()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.remove_signal_handler(sig)
        await runtime.aclose()
