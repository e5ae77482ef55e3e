"""Tests for engine wiring: degraded mode, purge on load and auto sync."""

import pytest

from ahacapture.engine.bus import Event
from ahacapture.engine.config import Config, StoreMode, SyncConfig
from ahacapture.engine.context import EngineContext
from ahacapture.engine.errors import EntryNotFoundError
from ahacapture.engine.models import CaptureDraft, EntryStatus
from ahacapture.engine.remote import FirestoreAdapter

from .conftest import HOUR, make_entry


@pytest.fixture(autouse=True)
def no_env_credentials(monkeypatch):
    monkeypatch.delenv("AHA_FIREBASE_API_KEY", raising=False)
    monkeypatch.delenv("AHA_FIREBASE_PROJECT_ID", raising=False)


@pytest.mark.asyncio
async def test_missing_credentials_degrade_to_local(remote_config):
    engine = EngineContext(remote_config)

    received = []

    async def handler(event: Event):
        received.append(event)

    engine.bus.subscribe("config.failed", handler)
    async with engine:
        entry = await engine.capture(
            CaptureDraft(content="x", group="G", category="C", note="Topic")
        )

    assert engine.store_mode is StoreMode.LOCAL
    assert entry.is_local
    assert len(received) == 1
    assert "local-only" in received[0].data["message"]


@pytest.mark.asyncio
async def test_configured_remote_builds_firestore_adapter(tmp_path):
    config = Config(data_dir=tmp_path / "data", remote={"api_key": "k", "project_id": "p"})

    engine = EngineContext(config)

    assert isinstance(engine.remote, FirestoreAdapter)
    assert engine.degraded is None
    await engine.close()


@pytest.mark.asyncio
async def test_local_mode_ignores_remote(local_config, remote):
    engine = EngineContext(local_config, remote=remote)
    assert engine.remote is None
    assert engine.degraded is None


@pytest.mark.asyncio
async def test_reads_purge_expired_trash(local_config, clock):
    engine = EngineContext(local_config, clock=clock)
    await engine.store.save([
        make_entry("local_old", status=EntryStatus.TRASH, deleted_at=clock.now - 25 * HOUR),
        make_entry("local_new", status=EntryStatus.TRASH, deleted_at=clock.now - HOUR),
    ])

    assert [e.id for e in await engine.entries()] == ["local_new"]

    clock.advance(24 * HOUR)
    assert await engine.entries() == []


@pytest.mark.asyncio
async def test_start_runs_auto_sync(tmp_path, remote, clock):
    config = Config(data_dir=tmp_path / "data", sync=SyncConfig(auto_sync=True))
    remote.add({"id": "r1", "content": "remote", "status": "active", "timestamp": clock.now})

    async with EngineContext(config, remote=remote, clock=clock) as engine:
        entries = await engine.entries()

    assert [e.id for e in entries] == ["r1"]
    assert remote.ops("fetch_open")


@pytest.mark.asyncio
async def test_thread_and_get(local_config, clock):
    engine = EngineContext(local_config, clock=clock)
    await engine.store.save([
        make_entry("local_root", session_id="T1"),
        make_entry("local_reply", session_ref="T1"),
    ])

    view = await engine.thread("local_reply")
    assert view["root"].id == "local_root"
    assert (await engine.get("local_reply")).is_reply

    with pytest.raises(EntryNotFoundError):
        await engine.thread("missing")
    with pytest.raises(EntryNotFoundError):
        await engine.get("missing")


@pytest.mark.asyncio
async def test_status_report(local_config):
    engine = EngineContext(local_config)
    await engine.store.save([make_entry("local_a"), make_entry("local_b", status=EntryStatus.DONE)])

    status = await engine.get_status()

    assert status["store_mode"] == "local"
    assert status["by_status"] == {"active": 1, "done": 1}


@pytest.mark.asyncio
async def test_status_report_skips_expired_trash(local_config, clock):
    engine = EngineContext(local_config, clock=clock)
    await engine.store.save([
        make_entry("local_a"),
        make_entry("local_old", status=EntryStatus.TRASH, deleted_at=clock.now - 25 * HOUR),
    ])

    status = await engine.get_status()

    assert status["entries"] == 1
    assert status["by_status"] == {"active": 1}
    assert [e.id for e in await engine.store.load()] == ["local_a"]
