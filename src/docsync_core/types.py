from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union


Document = Dict[str, Any]

IDENTITY_FIELD = "_id"


class OperationType(str, enum.Enum):
    INSERT = "insert"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    OTHER = "other"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "OperationType":
        try:
            return cls(raw)
        except ValueError:
            return cls.OTHER


# Deletes and everything else (drop, rename, invalidate, ...) are not forwarded.
PROPAGATED_OPERATIONS = frozenset({OperationType.INSERT, OperationType.UPDATE, OperationType.REPLACE})


@dataclass(frozen=True)
class FeedPosition:
    """Opaque change stream resume token. Stored and replayed verbatim."""

    token: Any


@dataclass(frozen=True)
class FieldPosition:
    """Exclusive lower bound for field-ordered polling.

    ``identity`` breaks ties between documents sharing the same field value.
    It is ``None`` when only a field value is known (operator supplied resume).
    """

    value: Any
    identity: Any = None


Position = Union[FeedPosition, FieldPosition]


@dataclass(frozen=True)
class ChangeEvent:
    operation: OperationType
    position: Optional[Position]
    document: Optional[Document] = None
    document_key: Any = None

    @property
    def propagates(self) -> bool:
        return self.operation in PROPAGATED_OPERATIONS


def has_identity(doc: Document) -> bool:
    return IDENTITY_FIELD in doc


def lookup(doc: Document, path: str) -> Any:
    """Resolve a dotted field path; raises KeyError when any segment is missing."""
    cur: Any = doc
    for part in path.split("."):
        if not isinstance(cur, dict):
            raise KeyError(path)
        cur = cur[part]
    return cur
