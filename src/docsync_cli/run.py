from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from docsync_core import SyncState
from docsync_core.checkpoints.codec import RESUME_TYPES
from docsync_core.errors import ConfigError, SyncError
from docsync_core.logging import setup_logging
from docsync_core.writers.selector import STRATEGY_CHOICES
from docsync_service.config import Settings, settings
from docsync_service.startup import run_sync
from docsync_cli.config_loader import load_config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docsync",
        description="Replicate a MongoDB collection via change streams or field-ordered polling.",
    )
    parser.add_argument("--config", type=Path, default=None, help="YAML file with settings (flags override it)")
    parser.add_argument("--source-uri", help="Source MongoDB URI")
    parser.add_argument("--source-db", help="Source database name")
    parser.add_argument("--source-collection", help="Source collection name")
    parser.add_argument("--target-uri", help="Target MongoDB URI")
    parser.add_argument("--target-db", help="Target database name")
    parser.add_argument("--target-collection", help="Target collection name")
    parser.add_argument("--use-change-stream", action="store_true", default=None, help="Use change stream for sync")
    parser.add_argument("--sync-field", help="Field to use for field-based sync (e.g. updatedAt, _id)")
    parser.add_argument("--resume-value", help="Resume token or last synced field value (overrides resume file)")
    parser.add_argument("--resume-type", choices=RESUME_TYPES, help="Type of --resume-value in field mode")
    parser.add_argument("--resume-id", help="_id tiebreaker for --resume-value in field mode")
    parser.add_argument("--resume-id-type", choices=RESUME_TYPES, help="Type of --resume-id")
    parser.add_argument("--resume-file", help="Path to the resume file (token or field value)")
    parser.add_argument("--store-resume", action="store_true", default=None, help="Overwrite resume file with latest token or field value")
    parser.add_argument(
        "--ignore-corrupt-checkpoint",
        action="store_true",
        default=None,
        help="Start from scratch instead of failing when the checkpoint cannot be parsed",
    )
    parser.add_argument("--limit", type=int, help="Limit number of documents per sync batch")
    parser.add_argument("--concurrency", type=int, help="Max concurrent per-document writes")
    parser.add_argument("--write-strategy", choices=STRATEGY_CHOICES, help="Force atomic or concurrent writes (default: probe)")
    parser.add_argument("--health-file", help="File receiving the ms timestamp of the last successful flush")
    parser.add_argument("--dead-letter-file", help="JSON-lines file for documents that could not be written")
    parser.add_argument("--once", action="store_true", default=None, help="Stop once caught up instead of running forever")
    return parser


def settings_from_args(args: argparse.Namespace, base: Optional[Settings] = None) -> Settings:
    overrides: Dict[str, Any] = {}
    if args.config:
        overrides.update(load_config(args.config))
    known = set(Settings.model_fields)
    for key, value in vars(args).items():
        if key in known and value is not None:
            overrides[key] = value
    base = base or settings
    try:
        return Settings.model_validate({**base.model_dump(), **overrides})
    except ValidationError as e:
        raise ConfigError(str(e)) from e


def main(argv: Optional[List[str]] = None) -> None:
    setup_logging()
    log = logging.getLogger(__name__)
    args = build_parser().parse_args(argv)
    try:
        cfg = settings_from_args(args)
        state = asyncio.run(run_sync(cfg))
    except ConfigError as e:
        log.error("Configuration error: %s", e)
        raise SystemExit(2)
    except SyncError as e:
        log.error("Sync failed: %s", e)
        raise SystemExit(1)
    raise SystemExit(0 if state is SyncState.STOPPED else 1)


if __name__ == "__main__":
    main()
