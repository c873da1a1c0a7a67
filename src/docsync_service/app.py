from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Dict, List

from docsync_core import SyncEngine, SyncState
from docsync_core.errors import ConfigError, SyncError
from docsync_core.logging import setup_logging

from .config import Settings, settings
from .infrastructure.build_info import get_build_info
from .infrastructure.health_http import start_health_server
from .startup import run_sync


def engine_status(engines: List[SyncEngine]) -> Dict[str, Any]:
    if not engines:
        return {"ready": False, "state": SyncState.BOOTSTRAPPING.value, "last_flush_ms": None}
    engine = engines[0]
    state = engine.state
    return {
        "ready": state not in (SyncState.BOOTSTRAPPING, SyncState.FAILED),
        "state": state.value,
        "last_flush_ms": engine.health.last_flush_ms,
    }


async def serve(cfg: Settings) -> SyncState:
    engines: List[SyncEngine] = []
    health_task = None
    if cfg.health_http_port:
        health_task = start_health_server(asyncio.get_running_loop(), cfg.health_http_port, lambda: engine_status(engines))
    try:
        return await run_sync(cfg, on_engine=engines.append)
    finally:
        if health_task is not None:
            health_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await health_task


def main() -> None:
    setup_logging()
    log = logging.getLogger(__name__)
    bi = get_build_info()
    log.info("docsync-service %s (commit %s)", bi.version or "dev", bi.commit or "unknown")
    try:
        state = asyncio.run(serve(settings))
    except ConfigError as e:
        log.error("Configuration error: %s", e)
        raise SystemExit(2)
    except SyncError as e:
        log.error("Sync failed: %s", e)
        raise SystemExit(1)
    raise SystemExit(0 if state is SyncState.STOPPED else 1)
