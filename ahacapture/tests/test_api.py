"""HTTP API tests against a live aiohttp test server."""

import httpx
import pytest
from aiohttp import test_utils

from ahacapture.engine.api import create_api_app
from ahacapture.engine.context import EngineContext
from ahacapture.engine.models import EntryStatus

from .conftest import NOW, make_entry, offline_error


@pytest.fixture
async def engine(remote_config, remote, clock):
    engine = EngineContext(remote_config, remote=remote, clock=clock)
    await engine.start()
    yield engine
    await engine.close()


@pytest.fixture
async def client(engine):
    server = test_utils.TestServer(create_api_app(engine))
    await server.start_server()
    async with httpx.AsyncClient(base_url=str(server.make_url("")), trust_env=False) as client:
        yield client
    await server.close()


NEW_THREAD = {"content": "idea", "group": "Work", "category": "Ideas", "note": "Topic"}


@pytest.mark.asyncio
async def test_capture_and_list(client):
    response = await client.post("/entries", json={**NEW_THREAD, "url": "https://example.com/a"})
    assert response.status_code == 201
    entry = response.json()["entry"]
    assert entry["id"] == "doc1"
    assert entry["source"]["root"] == "https://example.com"

    listing = (await client.get("/entries")).json()
    assert listing["count"] == 1
    assert listing["groups"]["Work"]["Ideas"][0]["id"] == "doc1"


@pytest.mark.asyncio
async def test_capture_validation_error(client):
    response = await client.post("/entries", json={"content": "x"})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "invalid_request"


@pytest.mark.asyncio
async def test_capture_failure_maps_to_bad_gateway(client, remote):
    remote.online = False
    response = await client.post("/entries", json=NEW_THREAD)
    assert response.status_code == 502
    assert response.json()["error"]["code"] == "capture_failed"


@pytest.mark.asyncio
async def test_status_transitions(client, engine):
    await engine.store.save([make_entry("doc9")])

    response = await client.post("/entries/doc9/status", json={"status": "trash"})
    assert response.status_code == 200
    assert response.json()["entry"]["deletedAt"] == NOW

    response = await client.post("/entries/doc9/status", json={"status": "done"})
    assert response.status_code == 409

    response = await client.post("/entries/doc9/status", json={"status": "archived"})
    assert response.status_code == 400

    response = await client.post("/entries/missing/status", json={"status": "done"})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_list_by_status(client, engine):
    await engine.store.save([
        make_entry("a"),
        make_entry("b", status=EntryStatus.DONE, group="Home"),
    ])

    listing = (await client.get("/entries", params={"status": "done"})).json()
    assert list(listing["groups"]) == ["Home"]

    assert (await client.get("/entries", params={"status": "bogus"})).status_code == 400
    assert (await client.get("/entries", params={"order": "sideways"})).status_code == 400


@pytest.mark.asyncio
async def test_edit_and_delete(client, engine, remote):
    await engine.store.save([make_entry("doc9", note="old")])

    response = await client.patch("/entries/doc9", json={"note": None, "content": "edited"})
    assert response.json()["entry"]["note"] is None
    assert response.json()["entry"]["content"] == "edited"

    response = await client.delete("/entries/doc9")
    assert response.json() == {"deleted": "doc9"}
    assert remote.ops("delete") == [("delete", "doc9")]


@pytest.mark.asyncio
async def test_empty_trash(client, engine):
    await engine.store.save([make_entry("t", status=EntryStatus.TRASH, deleted_at=NOW), make_entry("k")])

    response = await client.post("/trash/empty")

    assert response.json() == {"deleted": ["t"]}


@pytest.mark.asyncio
async def test_thread_view(client, engine):
    await engine.store.save([
        make_entry("root", session_id="T1", timestamp=NOW),
        make_entry("c1", session_ref="T1", timestamp=NOW + 1),
        make_entry("c2", session_ref="T1", timestamp=NOW + 2),
    ])

    view = (await client.get("/threads/T1", params={"order": "desc"})).json()
    assert view["root"]["id"] == "root"
    assert [e["id"] for e in view["replies"]] == ["c2", "c1"]
    assert view["order"] == "desc"

    assert (await client.get("/threads/none")).status_code == 404


@pytest.mark.asyncio
async def test_pending_capture_handoff(client):
    response = await client.post("/pending-capture", json={
        "text": "selected", "url": "https://example.com", "mode": "context_menu_modal"
    })
    assert response.status_code == 202

    first = (await client.get("/pending-capture")).json()
    second = (await client.get("/pending-capture")).json()
    assert first["pending"]["text"] == "selected"
    assert second["pending"] is None


@pytest.mark.asyncio
async def test_sync_endpoint(client, remote):
    remote.add({"id": "r1", "content": "remote", "group": "G", "category": "C",
                "status": "active", "timestamp": NOW})

    response = await client.post("/sync")
    assert response.status_code == 200
    assert response.json()["added"] == 1

    suggestions = (await client.get("/suggestions")).json()
    assert suggestions["groups"] == ["G"]


@pytest.mark.asyncio
async def test_sync_failure_is_unavailable(client, remote):
    remote.fail["fetch_open"] = offline_error()

    response = await client.post("/sync")

    assert response.status_code == 503
    assert response.json()["ok"] is False


@pytest.mark.asyncio
async def test_status_endpoint(client):
    status = (await client.get("/status")).json()
    assert status["store_mode"] == "remote"
    assert status["degraded"] is None


@pytest.mark.asyncio
async def test_invalid_json_body(client):
    response = await client.post("/entries", content=b"not json",
                                 headers={"Content-Type": "application/json"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_non_string_fields_are_rejected(client, engine, remote):
    await engine.store.save([make_entry("doc9", note="old")])

    response = await client.post("/entries", json={**NEW_THREAD, "content": 5})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "invalid_request"
    assert "content" in response.json()["error"]["message"]

    response = await client.post("/entries", json={**NEW_THREAD, "url": ["https://example.com"]})
    assert response.status_code == 400

    response = await client.patch("/entries/doc9", json={"note": 5})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "invalid_request"

    response = await client.post("/pending-capture", json={"text": {"a": 1}})
    assert response.status_code == 400

    assert remote.ops("create") == []
    assert (await engine.store.get("doc9")).note == "old"
