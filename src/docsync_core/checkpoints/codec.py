from __future__ import annotations

from datetime import datetime, timezone
from decimal import InvalidOperation
from typing import Any, Optional

from bson import Decimal128, Int64, ObjectId, json_util
from bson.errors import BSONError
from bson.json_util import CANONICAL_JSON_OPTIONS

from ..errors import ConfigError, CorruptCheckpointError
from ..types import FeedPosition, FieldPosition, Position

RESUME_TYPES = ("string", "int", "long", "double", "decimal", "objectid", "date", "bool")

# Datetimes come back timezone-aware so they compare with what the engine saved
_DECODE_OPTIONS = CANONICAL_JSON_OPTIONS.with_options(tz_aware=True, tzinfo=timezone.utc)

_TRUTHY = {"true", "t", "yes", "y", "1"}
_FALSY = {"false", "f", "no", "n", "0"}


def encode_position(position: Position) -> str:
    """Serialize a position as canonical Extended JSON.

    Feed tokens are written as-is; field positions as ``{"value": ..., "_id": ...}``.
    """
    if isinstance(position, FeedPosition):
        payload = position.token
    else:
        payload = {"value": position.value, "_id": position.identity}
    return json_util.dumps(payload, json_options=CANONICAL_JSON_OPTIONS)


def decode_position(raw: str) -> Position:
    try:
        data = json_util.loads(raw, json_options=_DECODE_OPTIONS)
    except (ValueError, TypeError, BSONError) as e:
        raise CorruptCheckpointError(f"Checkpoint is not valid Extended JSON: {e}") from e
    if not isinstance(data, dict):
        raise CorruptCheckpointError(f"Checkpoint must be a JSON object, got {type(data).__name__}")
    if set(data) == {"value", "_id"}:
        return FieldPosition(value=data["value"], identity=data["_id"])
    if "_data" in data:
        return FeedPosition(token=data)
    raise CorruptCheckpointError(f"Unrecognised checkpoint layout (keys: {sorted(data)})")


def parse_typed_value(raw: str, type_name: str) -> Any:
    t = (type_name or "string").lower()
    try:
        if t == "string":
            return raw
        if t == "int":
            return int(raw)
        if t == "long":
            return Int64(int(raw))
        if t == "double":
            return float(raw)
        if t == "decimal":
            return Decimal128(raw)
        if t == "objectid":
            return ObjectId(raw)
        if t == "date":
            text = raw.strip()
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            dt = datetime.fromisoformat(text)
            return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
        if t == "bool":
            low = raw.strip().lower()
            if low in _TRUTHY:
                return True
            if low in _FALSY:
                return False
            raise ValueError(f"not a boolean: {raw!r}")
    except (ValueError, TypeError, InvalidOperation, BSONError) as e:
        raise ConfigError(f"Cannot parse {raw!r} as {t}: {e}") from e
    raise ConfigError(f"Unsupported resume type {type_name!r}; expected one of {', '.join(RESUME_TYPES)}")


def explicit_position(
    value: str,
    *,
    feed: bool,
    value_type: str = "string",
    identity: Optional[str] = None,
    identity_type: str = "objectid",
) -> Position:
    """Build a start position from operator-supplied resume flags."""
    if feed:
        text = value.strip()
        if text.startswith("{"):
            try:
                token = json_util.loads(text, json_options=_DECODE_OPTIONS)
            except (ValueError, TypeError, BSONError) as e:
                raise ConfigError(f"Resume token is not valid Extended JSON: {e}") from e
            if not isinstance(token, dict):
                raise ConfigError("Resume token must be a JSON object")
            return FeedPosition(token=token)
        return FeedPosition(token={"_data": text})
    ident = parse_typed_value(identity, identity_type) if identity is not None else None
    return FieldPosition(value=parse_typed_value(value, value_type), identity=ident)
