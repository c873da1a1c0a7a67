from __future__ import annotations

import asyncio
import copy
from collections import deque
from typing import Any, Dict, Iterable, List, Optional

from pymongo.errors import AutoReconnect, OperationFailure

from docsync_core.checkpoints.base import CheckpointStore
from docsync_core.errors import CheckpointIoError, WriteError
from docsync_core.types import Position
from docsync_core.writers.base import WriteReport, WriteStrategy

IDLE = object()


def _matches(doc: Dict[str, Any], flt: Dict[str, Any]) -> bool:
    for key, cond in flt.items():
        if key == "$or":
            if not any(_matches(doc, c) for c in cond):
                return False
        elif key == "$and":
            if not all(_matches(doc, c) for c in cond):
                return False
        elif isinstance(cond, dict) and "$ne" in cond:
            if doc.get(key) == cond["$ne"]:
                return False
        else:
            if key not in doc:
                return False
            if isinstance(cond, dict) and "$gt" in cond:
                if doc[key] is None or not doc[key] > cond["$gt"]:
                    return False
            elif doc[key] != cond:
                return False
    return True


def _sort_key(value: Any):
    # missing and null sort before every real value, as on the server
    return (0, 0) if value is None else (1, value)


class FakeCursor:
    def __init__(self, docs: List[Dict[str, Any]]) -> None:
        self._docs = docs
        self._sort: List[Any] = []
        self._limit = 0

    def sort(self, spec):
        self._sort = list(spec)
        return self

    def limit(self, n: int):
        self._limit = n
        return self

    async def to_list(self, length=None):
        docs = self._docs
        if self._sort:
            docs = sorted(docs, key=lambda d: tuple(_sort_key(d.get(k)) for k, _ in self._sort))
        if self._limit:
            docs = docs[: self._limit]
        return [copy.deepcopy(d) for d in docs]


class FakeChangeStream:
    def __init__(self, items: Iterable[Any], *, end: bool = True) -> None:
        self._items = deque(items)
        self._end = end
        self.alive = True
        self.closed = False

    async def try_next(self):
        await asyncio.sleep(0)
        if not self._items:
            if self._end:
                self.alive = False
                return None
            await asyncio.sleep(3600)
            return None
        item = self._items.popleft()
        if item is IDLE:
            return None
        if isinstance(item, Exception):
            self.alive = False
            raise item
        return item

    async def close(self) -> None:
        self.closed = True
        self.alive = False


class FakeFeed:
    """Ordered change log; ``open`` starts strictly after a resume token."""

    def __init__(self, items: Iterable[Any], *, end: bool = True) -> None:
        self.items = list(items)
        self.end = end
        self.stream: Optional[FakeChangeStream] = None

    def open(self, resume_after=None) -> FakeChangeStream:
        start = 0
        if resume_after is not None:
            for i, item in enumerate(self.items):
                if isinstance(item, dict) and item.get("_id") == resume_after:
                    start = i + 1
                    break
        self.stream = FakeChangeStream(self.items[start:], end=self.end)
        return self.stream


def change(op: str, token: str, doc: Optional[Dict[str, Any]] = None, key: Any = None) -> Dict[str, Any]:
    ident = key if key is not None else (doc or {}).get("_id")
    return {
        "_id": {"_data": token},
        "operationType": op,
        "fullDocument": doc,
        "documentKey": {"_id": ident},
    }


class FakeCollection:
    def __init__(self, docs: Iterable[Dict[str, Any]] = (), *, fail_ids: Iterable[Any] = (), find_errors: int = 0) -> None:
        self.docs = [dict(d) for d in docs]
        self.fail_ids = set(fail_ids)
        self.find_errors = find_errors
        self.find_calls: List[Dict[str, Any]] = []
        self.replace_calls: List[Any] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.feed: Optional[FakeFeed] = None
        self.watch_kwargs: Dict[str, Any] = {}

    def find(self, flt):
        self.find_calls.append(flt)
        if self.find_errors:
            self.find_errors -= 1
            raise AutoReconnect("connection reset by peer")
        return FakeCursor([d for d in self.docs if _matches(d, flt)])

    async def replace_one(self, flt, doc, upsert=False):
        ident = flt["_id"]
        self.replace_calls.append(ident)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if ident in self.fail_ids:
                raise OperationFailure(f"write rejected for {ident}")
            self.upsert(doc)
        finally:
            self.in_flight -= 1

    def upsert(self, doc) -> None:
        for i, existing in enumerate(self.docs):
            if existing.get("_id") == doc["_id"]:
                self.docs[i] = copy.deepcopy(doc)
                return
        self.docs.append(copy.deepcopy(doc))

    async def watch(self, **kwargs):
        self.watch_kwargs = kwargs
        assert self.feed is not None
        return self.feed.open(kwargs.get("resume_after"))

    def by_id(self) -> Dict[Any, Dict[str, Any]]:
        return {d["_id"]: d for d in self.docs}


class FakeAdmin:
    def __init__(self, version: str) -> None:
        self.version = version
        self.commands: List[str] = []

    async def command(self, name: str):
        self.commands.append(name)
        if name == "buildInfo":
            return {"version": self.version}
        return {"ok": 1}


class FakeClient:
    def __init__(self, collections: Optional[Dict[str, FakeCollection]] = None, *, version: str = "8.0.4", bulk_error: Optional[Exception] = None) -> None:
        self.collections = collections or {}
        self.admin = FakeAdmin(version)
        self.bulk_error = bulk_error
        self.bulk_calls: List[List[Any]] = []
        self.closed = False

    async def bulk_write(self, models):
        self.bulk_calls.append(list(models))
        if self.bulk_error is not None:
            raise self.bulk_error
        for m in models:
            self.collections[m._namespace].upsert(m._doc)

    async def close(self) -> None:
        self.closed = True


class MemoryCheckpointStore(CheckpointStore):
    def __init__(self, position: Optional[Position] = None, *, fail_saves: int = 0) -> None:
        self.position = position
        self.fail_saves = fail_saves
        self.saves: List[Position] = []

    async def load(self) -> Optional[Position]:
        return self.position

    async def save(self, position: Position) -> None:
        if self.fail_saves:
            self.fail_saves -= 1
            raise CheckpointIoError("disk full")
        self.position = position
        self.saves.append(position)


class RecordingWriter(WriteStrategy):
    name = "recording"

    def __init__(self, *, fail_batches: int = 0) -> None:
        self.fail_batches = fail_batches
        self.calls = 0
        self.batches: List[List[Any]] = []

    async def _write(self, docs, report: WriteReport) -> None:
        self.calls += 1
        if self.fail_batches:
            self.fail_batches -= 1
            raise WriteError("target unavailable", failed_ids=[d["_id"] for d in docs])
        self.batches.append([d["_id"] for d in docs])
        report.written += len(docs)
