from __future__ import annotations

import os
from dataclasses import dataclass
from importlib import metadata
from typing import Dict, Optional

DIST_NAME = "docsync"


@dataclass(frozen=True)
class BuildInfo:
    version: Optional[str]
    commit: Optional[str]
    date: Optional[str]

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {"version": self.version, "commit": self.commit, "date": self.date}


def _installed_version() -> Optional[str]:
    try:
        return metadata.version(DIST_NAME)
    except metadata.PackageNotFoundError:
        return None


def get_build_info() -> BuildInfo:
    """Image build stamps (``SYNC_BUILD_*``) win; fall back to the installed distribution."""
    return BuildInfo(
        version=os.getenv("SYNC_BUILD_VERSION") or _installed_version(),
        commit=os.getenv("SYNC_BUILD_COMMIT"),
        date=os.getenv("SYNC_BUILD_DATE"),
    )
