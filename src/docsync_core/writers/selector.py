from __future__ import annotations

import logging
from typing import Any

from .base import WriteStrategy
from .bulk import BulkReplaceWriter
from .concurrent import ConcurrentReplaceWriter
from ..connection import server_version, supports_atomic_bulk
from ..errors import ConfigError

STRATEGY_CHOICES = ("auto", "atomic", "concurrent")


async def select_write_strategy(
    client: Any,
    collection: Any,
    *,
    namespace: str,
    mode: str = "auto",
    concurrency: int = 10,
) -> WriteStrategy:
    """Pick the write strategy once per run.

    ``auto`` probes the target's server version; ``atomic`` / ``concurrent``
    force a choice without touching the server.
    """
    log = logging.getLogger(__name__)
    choice = (mode or "auto").lower()
    if choice not in STRATEGY_CHOICES:
        raise ConfigError(f"Unknown write strategy {mode!r}; expected one of {', '.join(STRATEGY_CHOICES)}")
    if choice == "auto":
        version = await server_version(client)
        atomic = supports_atomic_bulk(version)
        log.info("Target MongoDB %s: using %s writes", version, "atomic bulk" if atomic else "concurrent per-document")
    else:
        atomic = choice == "atomic"
        log.info("Write strategy forced to %s", choice)
    if atomic:
        return BulkReplaceWriter(client, namespace)
    return ConcurrentReplaceWriter(collection, concurrency=concurrency)
