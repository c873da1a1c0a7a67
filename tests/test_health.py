from __future__ import annotations

import asyncio

from aiohttp import test_utils
from bson import json_util

from docsync_core.deadletter import DeadLetterSink
from docsync_core.engine import SyncEngine, SyncState
from docsync_core.health import HealthSignal
from docsync_core.sources.polling import FieldPollingSource
from docsync_service.app import engine_status
from docsync_service.infrastructure.health_http import build_app

from _fakes import FakeCollection, RecordingWriter


def test_touch_writes_millisecond_timestamp(tmp_path):
    path = tmp_path / "health"
    signal = HealthSignal(path)
    signal.touch(now_ms=1_700_000_000_123)
    assert path.read_text(encoding="utf-8") == "1700000000123"
    signal.touch(now_ms=1_700_000_005_000)
    assert path.read_text(encoding="utf-8") == "1700000005000"
    assert signal.last_flush_ms == 1_700_000_005_000


def test_touch_failure_is_not_fatal(tmp_path):
    signal = HealthSignal(tmp_path / "missing-dir" / "health")
    signal.touch(now_ms=42)
    assert signal.last_flush_ms == 42


def test_dead_letters_are_extended_json_lines(tmp_path):
    path = tmp_path / "out" / "dead.jsonl"
    sink = DeadLetterSink(path)
    assert sink.record([{"_id": 1, "n": 2}, {"_id": 2}], "batch write failed") == 2
    assert sink.record([], "nothing") == 0
    lines = [json_util.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [line["document"] for line in lines] == [{"_id": 1, "n": 2}, {"_id": 2}]
    assert {line["reason"] for line in lines} == {"batch write failed"}
    assert sink.count == 2


def test_dead_letters_without_path_only_count():
    sink = DeadLetterSink()
    assert sink.record([{"_id": 1}], "per-document write failed") == 1
    assert sink.count == 1


def _engine():
    return SyncEngine(FieldPollingSource(FakeCollection(), field="v"), RecordingWriter())


def test_engine_status_reflects_state():
    assert engine_status([])["ready"] is False
    engine = _engine()
    assert engine_status([engine]) == {"ready": False, "state": "bootstrapping", "last_flush_ms": None}
    engine.health.touch(now_ms=5)
    engine._set_state(SyncState.POLLING_IDLE)
    assert engine_status([engine]) == {"ready": True, "state": "polling_idle", "last_flush_ms": 5}


def test_readiness_endpoint():
    status = {"ready": False, "state": "bootstrapping", "last_flush_ms": None}

    async def _run():
        async with test_utils.TestClient(test_utils.TestServer(build_app(lambda: status))) as client:
            not_ready = await client.get("/readyz")
            status.update(ready=True, state="live_streaming")
            ready = await client.get("/readyz")
            alive = await client.get("/healthz")
            return not_ready.status, ready.status, await ready.json(), await alive.text()

    not_ready, ready, body, alive = asyncio.run(_run())
    assert not_ready == 503
    assert ready == 200
    assert body["state"] == "live_streaming"
    assert alive == "ok"


def test_version_endpoint_prefers_build_stamps(monkeypatch):
    monkeypatch.setenv("SYNC_BUILD_VERSION", "1.4.0")
    monkeypatch.setenv("SYNC_BUILD_COMMIT", "abc1234")
    monkeypatch.delenv("SYNC_BUILD_DATE", raising=False)

    async def _run():
        async with test_utils.TestClient(test_utils.TestServer(build_app(lambda: {"ready": True}))) as client:
            resp = await client.get("/version")
            return await resp.json()

    assert asyncio.run(_run()) == {"version": "1.4.0", "commit": "abc1234", "date": None}
