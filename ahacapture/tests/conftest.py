"""Shared fixtures: temporary stores, a fixed clock and an in-memory remote store."""

import asyncio
import itertools
from typing import Any, Dict, List, Optional

import pytest

from ahacapture.engine.bus import EventBus
from ahacapture.engine.config import Config
from ahacapture.engine.errors import RemoteUnavailableError
from ahacapture.engine.models import Entry, EntryStatus
from ahacapture.engine.remote import RemoteAdapter
from ahacapture.engine.store import EntryStore, KeyValueStore


NOW = 1_700_000_000_000
HOUR = 3600 * 1000


class FakeRemote(RemoteAdapter):
    """In-memory remote store that records every call."""

    def __init__(self):
        self.docs: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.online = True
        self.create_delay = 0.0
        self.fail: Dict[str, Exception] = {}
        self.fetch_statuses = ("open", "active", "done")
        self._ids = itertools.count(1)

    def _check(self, op: str) -> None:
        if op in self.fail:
            raise self.fail[op]

    def add(self, data: Dict[str, Any]) -> None:
        self.docs[data["id"]] = dict(data)

    async def create(self, payload: Dict[str, Any]) -> str:
        self.calls.append(("create", payload))
        if self.create_delay:
            await asyncio.sleep(self.create_delay)
        self._check("create")
        entry_id = f"doc{next(self._ids)}"
        self.docs[entry_id] = {**payload, "id": entry_id, "timestamp": NOW}
        return entry_id

    async def fetch_open(self) -> List[Entry]:
        self.calls.append(("fetch_open",))
        self._check("fetch_open")
        return [
            Entry.from_dict(doc) for doc in self.docs.values()
            if doc.get("status", "open") in self.fetch_statuses
        ]

    async def set_status(self, entry_id: str, status: EntryStatus, deleted_at: Optional[int] = None) -> None:
        self.calls.append(("set_status", entry_id, status, deleted_at))
        self._check("set_status")
        await self.update(entry_id, {"status": status.value, "deletedAt": deleted_at})

    async def update(self, entry_id: str, fields: Dict[str, Any]) -> None:
        self.calls.append(("update", entry_id, fields))
        self._check("update")
        doc = self.docs.setdefault(entry_id, {"id": entry_id})
        for key, value in fields.items():
            if value is None:
                doc.pop(key, None)
            else:
                doc[key] = value

    async def delete(self, entry_id: str) -> None:
        self.calls.append(("delete", entry_id))
        self._check("delete")
        self.docs.pop(entry_id, None)

    async def is_online(self) -> bool:
        return self.online

    async def ensure_auth(self, interactive=None) -> None:
        self.calls.append(("ensure_auth",))
        self._check("ensure_auth")

    def ops(self, name: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == name]


class Clock:
    """Settable millisecond clock."""

    def __init__(self, now: int = NOW):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def kv(tmp_path):
    return KeyValueStore(tmp_path / "store")


@pytest.fixture
def store(kv):
    return EntryStore(kv)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def remote_config(tmp_path):
    return Config(data_dir=tmp_path / "data", store_mode="remote")


@pytest.fixture
def local_config(tmp_path):
    return Config(data_dir=tmp_path / "data", store_mode="local")


def make_entry(entry_id: str, **fields: Any) -> Entry:
    """Entry with sensible defaults for tests."""
    defaults = {
        "content": f"content of {entry_id}",
        "group": "Work",
        "category": "Ideas",
        "timestamp": NOW,
    }
    defaults.update(fields)
    return Entry(id=entry_id, **defaults)


def offline_error() -> RemoteUnavailableError:
    return RemoteUnavailableError("network down")
