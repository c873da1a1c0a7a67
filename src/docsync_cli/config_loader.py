from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import yaml

from docsync_core.errors import ConfigError
from docsync_service.config import Settings

# Nested sections accepted in YAML and the flat setting prefix they map to
_SECTIONS = {"source": "source_", "target": "target_"}
_SECTION_KEYS = {"uri", "db", "collection"}


def config_from_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten a YAML mapping into ``Settings`` field overrides.

    ``source: {uri, db, collection}`` and ``target: {...}`` sections become
    ``source_uri`` etc.; everything else must already be a setting name.
    """
    known = set(Settings.model_fields)
    out: Dict[str, Any] = {}
    for key, value in data.items():
        k = str(key).replace("-", "_")
        if k in _SECTIONS and isinstance(value, dict):
            for sub, subval in value.items():
                if sub not in _SECTION_KEYS:
                    raise ConfigError(f"Unknown key '{k}.{sub}' in config")
                out[f"{_SECTIONS[k]}{sub}"] = subval
            continue
        if k not in known:
            raise ConfigError(f"Unknown config key: {key}")
        out[k] = value
    return out


def load_config(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must be a mapping at the top level")
    return config_from_dict(data)
