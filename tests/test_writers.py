from __future__ import annotations

import asyncio

import pytest
from pymongo.errors import ClientBulkWriteException, OperationFailure

from docsync_core.connection import parse_major_version, supports_atomic_bulk
from docsync_core.errors import ConfigError, WriteError
from docsync_core.writers.bulk import BulkReplaceWriter
from docsync_core.writers.concurrent import ConcurrentReplaceWriter
from docsync_core.writers.selector import select_write_strategy

from _fakes import FakeClient, FakeCollection

NS = "shop.orders_copy"


def _batch():
    return [
        {"_id": "a", "n": 1},
        {"_id": "b", "n": 2},
        {"n": 3},
        {"_id": "d", "n": 4},
        {"_id": "e", "n": 5},
    ]


def test_atomic_writer_drops_unidentified_before_single_bulk_call():
    target = FakeCollection()
    client = FakeClient({NS: target})
    writer = BulkReplaceWriter(client, NS)

    report = asyncio.run(writer.apply(_batch()))

    assert report.written == 4
    assert report.skipped == 1
    assert report.failed == []
    assert len(client.bulk_calls) == 1
    models = client.bulk_calls[0]
    assert len(models) == 4
    assert all(m._upsert and m._namespace == NS for m in models)
    assert sorted(target.by_id()) == ["a", "b", "d", "e"]


def test_atomic_writer_transport_failure_names_whole_batch():
    client = FakeClient({NS: FakeCollection()}, bulk_error=OperationFailure("not primary"))
    writer = BulkReplaceWriter(client, NS)

    with pytest.raises(WriteError) as info:
        asyncio.run(writer.apply(_batch()))
    assert info.value.failed_ids == ["a", "b", "d", "e"]


def test_atomic_writer_names_only_rejected_documents():
    rejected = ClientBulkWriteException(
        {"writeErrors": [{"idx": 1, "code": 11000, "errmsg": "duplicate key"}]}, verbose=False
    )
    client = FakeClient({NS: FakeCollection()}, bulk_error=rejected)
    writer = BulkReplaceWriter(client, NS)
    batch = [{"_id": "a"}, {"_id": "b"}, {"_id": "c"}]

    with pytest.raises(WriteError) as info:
        asyncio.run(writer.apply(batch))
    assert info.value.failed_ids == ["b"]


def test_concurrent_writer_isolates_failures():
    target = FakeCollection(fail_ids={"b"})
    writer = ConcurrentReplaceWriter(target, concurrency=2)
    batch = [{"_id": i, "n": n} for n, i in enumerate("abcde")]

    report = asyncio.run(writer.apply(batch))

    assert report.written == 4
    assert [f.identity for f in report.failed] == ["b"]
    assert sorted(target.by_id()) == ["a", "c", "d", "e"]
    # every document attempted exactly once, never more than 2 at a time
    assert sorted(target.replace_calls) == list("abcde")
    assert target.max_in_flight <= 2


def test_concurrent_writer_skips_unidentified():
    target = FakeCollection()
    report = asyncio.run(ConcurrentReplaceWriter(target).apply(_batch()))
    assert report.skipped == 1
    assert len(target.replace_calls) == 4


def test_concurrency_must_be_positive():
    with pytest.raises(ConfigError):
        ConcurrentReplaceWriter(FakeCollection(), concurrency=0)


@pytest.mark.parametrize("kind", ["atomic", "concurrent"])
def test_replaying_a_batch_is_idempotent(kind):
    target = FakeCollection([{"_id": "a", "n": 0, "stale": True}])
    if kind == "atomic":
        writer = BulkReplaceWriter(FakeClient({NS: target}), NS)
    else:
        writer = ConcurrentReplaceWriter(target)
    batch = [{"_id": "a", "n": 1}, {"_id": "b", "n": 2}]

    asyncio.run(writer.apply(batch))
    once = {k: dict(v) for k, v in target.by_id().items()}
    asyncio.run(writer.apply(batch))

    assert target.by_id() == once == {"a": {"_id": "a", "n": 1}, "b": {"_id": "b", "n": 2}}


@pytest.mark.parametrize("version,expected", [("8.0.4", BulkReplaceWriter), ("7.0.12", ConcurrentReplaceWriter)])
def test_selector_probes_server_version(version, expected):
    target = FakeCollection()
    client = FakeClient({NS: target}, version=version)
    writer = asyncio.run(select_write_strategy(client, target, namespace=NS, concurrency=3))
    assert isinstance(writer, expected)
    assert client.admin.commands == ["buildInfo"]


def test_selector_forced_choice_skips_probe():
    target = FakeCollection()
    client = FakeClient({NS: target}, version="8.0.0")
    writer = asyncio.run(select_write_strategy(client, target, namespace=NS, mode="concurrent", concurrency=4))
    assert isinstance(writer, ConcurrentReplaceWriter)
    assert writer.concurrency == 4
    assert client.admin.commands == []


def test_selector_rejects_unknown_mode():
    with pytest.raises(ConfigError):
        asyncio.run(select_write_strategy(FakeClient(), FakeCollection(), namespace=NS, mode="fast"))


def test_version_threshold():
    assert supports_atomic_bulk("8.0.0-rc1")
    assert supports_atomic_bulk("10.1.2")
    assert not supports_atomic_bulk("7.0.12")
    assert not supports_atomic_bulk("unknown")
    assert parse_major_version("6.0.3") == 6
