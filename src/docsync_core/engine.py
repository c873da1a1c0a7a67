from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, List, Optional

from .backoff import IdleBackoff
from .checkpoints.base import CheckpointStore, load_checkpoint
from .deadletter import DeadLetterSink
from .errors import CheckpointIoError, ConfigError, SkipError, SyncError, TransportError, WriteError
from .health import HealthSignal
from .metrics import (
    sync_checkpoint_saves_total,
    sync_documents_skipped_total,
    sync_events_total,
    sync_flush_duration_seconds,
    sync_idle_sleeps_total,
    sync_state,
)
from .sources.base import ChangeSource
from .types import IDENTITY_FIELD, ChangeEvent, Document, FeedPosition, FieldPosition, Position
from .writers.base import WriteStrategy


class SyncState(str, enum.Enum):
    BOOTSTRAPPING = "bootstrapping"
    LIVE_STREAMING = "live_streaming"
    POLLING_ACTIVE = "polling_active"
    POLLING_IDLE = "polling_idle"
    DRAINING = "draining"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass(frozen=True)
class EngineConfig:
    batch_size: int = 100
    persist_progress: bool = False
    once: bool = False
    idle_floor_sec: float = 10.0
    idle_ceiling_sec: float = 60.0
    ignore_corrupt_checkpoint: bool = False


@dataclass
class SyncStats:
    events: int = 0
    written: int = 0
    skipped: int = 0
    failed: int = 0
    dead_lettered: int = 0
    flushes: int = 0

    def summary(self) -> str:
        return (
            f"events={self.events} written={self.written} skipped={self.skipped} "
            f"failed={self.failed} dead_lettered={self.dead_lettered} flushes={self.flushes}"
        )


_STOP = object()


class SyncEngine:
    """Drives source -> batch -> write -> checkpoint -> health.

    Feed sources run until the stream ends, errors, or ``stop`` is called.
    Polling sources run until ``stop`` (or until caught up in one-shot mode).
    ``stop`` is honoured at every suspension point and always drains, so the
    last checkpoint written covers fully applied data only.
    """

    def __init__(
        self,
        source: ChangeSource,
        writer: WriteStrategy,
        *,
        checkpoints: Optional[CheckpointStore] = None,
        health: Optional[HealthSignal] = None,
        dead_letters: Optional[DeadLetterSink] = None,
        config: Optional[EngineConfig] = None,
        start_position: Optional[Position] = None,
    ) -> None:
        self.source = source
        self.writer = writer
        self.checkpoints = checkpoints
        self.health = health or HealthSignal()
        self.dead_letters = dead_letters or DeadLetterSink()
        self.config = config or EngineConfig()
        if self.config.batch_size < 1:
            raise ConfigError("batch size must be at least 1")
        self.stats = SyncStats()
        self.backoff = IdleBackoff(floor=self.config.idle_floor_sec, ceiling=self.config.idle_ceiling_sec)
        self._start_position = start_position
        self._state = SyncState.BOOTSTRAPPING
        self._stopping = asyncio.Event()
        self._batch: List[Document] = []
        self._pending: Optional[Position] = None
        self._position: Optional[Position] = None
        self._saved: Optional[Position] = None
        self._failed_at: Optional[Position] = None
        self._log = logging.getLogger(__name__)
        sync_state.state(self._state.value)

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def position(self) -> Optional[Position]:
        """Last position whose data has been applied to the target."""
        return self._position

    def stop(self) -> None:
        if not self._stopping.is_set():
            self._log.info("Stop requested; draining")
        self._stopping.set()

    def _set_state(self, state: SyncState) -> None:
        if state is not self._state:
            self._log.debug("State %s -> %s", self._state.value, state.value)
        self._state = state
        sync_state.state(state.value)

    async def run(self) -> SyncState:
        self._set_state(SyncState.BOOTSTRAPPING)
        try:
            position = await self._resume_position()
            await self.source.open(position)
        except SyncError:
            self._set_state(SyncState.FAILED)
            raise
        self._position = self._saved = position
        try:
            if self.source.live:
                await self._run_live()
            else:
                await self._run_polling()
        finally:
            await self.source.close()
            self._log.info("Sync %s: %s", self._state.value, self.stats.summary())
        return self._state

    async def _resume_position(self) -> Optional[Position]:
        if self._start_position is not None:
            self._log.info("Starting from explicit position %r", self._start_position)
            position: Optional[Position] = self._start_position
        elif self.checkpoints is not None:
            position = await load_checkpoint(self.checkpoints, ignore_corrupt=self.config.ignore_corrupt_checkpoint)
        else:
            position = None
        if position is not None:
            expected = FeedPosition if self.source.live else FieldPosition
            if not isinstance(position, expected):
                mode = "change stream" if self.source.live else "field polling"
                raise ConfigError(f"Checkpoint {position!r} does not match {mode} mode")
        return position

    # --- live feed -------------------------------------------------------

    async def _run_live(self) -> None:
        self._set_state(SyncState.LIVE_STREAMING)
        self._log.info("Waiting for changes...")
        while True:
            try:
                events = await self._interruptible(self.source.pull())
            except TransportError as e:
                self._log.error("%s; flushing %d buffered documents and stopping", e, len(self._batch))
                await self._flush()
                self._set_state(SyncState.FAILED)
                raise
            if events is _STOP:
                await self._drain()
                return
            if events is None:
                self._log.info("Change stream ended")
                await self._flush()
                self._set_state(SyncState.STOPPED)
                return
            if not events:
                if self._batch:
                    await self._flush()
                if self.config.once:
                    self._log.info("No further changes available; one-shot run finished")
                    await self._drain()
                    return
                continue
            for event in events:
                self._accept(event)
                if len(self._batch) >= self.config.batch_size:
                    await self._flush()

    # --- field polling ---------------------------------------------------

    async def _run_polling(self) -> None:
        while True:
            self._set_state(SyncState.POLLING_ACTIVE)
            try:
                events = await self._interruptible(self.source.pull())
            except TransportError as e:
                self._log.warning("%s; retrying after backoff", e)
                if await self._idle():
                    continue
                break
            if events is _STOP:
                break
            if not events:
                if self.config.once:
                    self._log.info("Caught up; one-shot run finished")
                    break
                if await self._idle():
                    continue
                break
            for event in events:
                self._accept(event)
            advanced = self._pending is not None
            if not await self._flush():
                if await self._idle():
                    continue
                break
            if not advanced:
                self._log.warning("Page of %d documents carried no sortable position; cannot advance", len(events))
                if await self._idle():
                    continue
                break
            self.backoff.reset()
        await self._drain()

    async def _idle(self) -> bool:
        """Back off; False when a stop arrived during the sleep."""
        self._set_state(SyncState.POLLING_IDLE)
        delay = self.backoff.next_delay()
        sync_idle_sleeps_total.inc()
        self._log.info("No new data. Sleeping for %.1f s...", delay)
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return True
        return False

    # --- shared ----------------------------------------------------------

    async def _interruptible(self, pull: Awaitable[Any]) -> Any:
        task = asyncio.ensure_future(pull)
        if self._stopping.is_set():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            return _STOP
        stopper = asyncio.ensure_future(self._stopping.wait())
        done, _ = await asyncio.wait({task, stopper}, return_when=asyncio.FIRST_COMPLETED)
        if task in done:
            stopper.cancel()
            await asyncio.gather(stopper, return_exceptions=True)
            return task.result()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return _STOP

    def _accept(self, event: ChangeEvent) -> None:
        self.stats.events += 1
        sync_events_total.labels(operation=event.operation.value).inc()
        if event.position is not None:
            self._pending = event.position
        try:
            doc = self._replicable(event)
        except SkipError as e:
            self.stats.skipped += 1
            sync_documents_skipped_total.labels(reason=e.reason).inc()
            self._log.warning("Dropping %s event _id=%r: %s", event.operation.value, e.identity, e.reason)
            return
        if doc is not None:
            self._batch.append(doc)

    def _replicable(self, event: ChangeEvent) -> Optional[Document]:
        if not event.propagates:
            self._log.debug("Ignoring %s event _id=%r", event.operation.value, event.document_key)
            return None
        doc = event.document
        if doc is None:
            raise SkipError("no_full_document", identity=event.document_key)
        if IDENTITY_FIELD not in doc:
            raise SkipError("missing_id")
        return doc

    async def _flush(self) -> bool:
        """Apply the pending batch and advance the checkpoint.

        Returns False when the write failed outright; the checkpoint is left
        where it was.
        """
        batch, self._batch = self._batch, []
        position, self._pending = self._pending, None
        if batch:
            t0 = time.perf_counter()
            try:
                report = await self.writer.apply(batch)
            except WriteError as e:
                # a polling page is re-read after a failure; count it once
                if position is None or position != self._failed_at:
                    self.stats.failed += len(batch)
                self._failed_at = position
                self._log.error("Batch of %d documents not applied: %s (failed _ids: %s)", len(batch), e, e.failed_ids[:20])
                if self.source.live:
                    # the feed cannot be re-read from here
                    self.stats.dead_lettered += self.dead_letters.record(batch, f"batch write failed: {e}")
                return False
            sync_flush_duration_seconds.observe(time.perf_counter() - t0)
            self.stats.written += report.written
            self.stats.skipped += report.skipped
            if report.failed:
                self.stats.failed += len(report.failed)
                self._log.warning(
                    "%d of %d documents failed to write; checkpoint advances past them", len(report.failed), len(batch)
                )
                self.stats.dead_lettered += self.dead_letters.record(
                    [f.document for f in report.failed], "per-document write failed"
                )
            self._failed_at = None
            if report.written:
                self.stats.flushes += 1
                self.health.touch()
        if position is not None:
            self._position = position
            self.source.advance(position)
            await self._save_checkpoint(position)
        return True

    async def _save_checkpoint(self, position: Position) -> None:
        if self.checkpoints is None or not self.config.persist_progress:
            return
        try:
            await self.checkpoints.save(position)
        except CheckpointIoError as e:
            sync_checkpoint_saves_total.labels(status="failed").inc()
            self._log.error("Failed to persist checkpoint (will retry on next flush): %s", e)
            return
        sync_checkpoint_saves_total.labels(status="ok").inc()
        self._saved = position

    async def _drain(self) -> None:
        self._set_state(SyncState.DRAINING)
        await self._flush()
        if self._position is not None and self._position != self._saved:
            await self._save_checkpoint(self._position)
        self._set_state(SyncState.STOPPED)
