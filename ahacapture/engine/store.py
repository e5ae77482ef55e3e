"""Durable local cache: a JSON key-value store and the entry collection on top of it."""

import asyncio
import json
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

import aiofiles
from loguru import logger

from .models import Entry, now_ms


ENTRIES_KEY = "entries"
GROUPS_KEY = "saved_groups"
CATEGORIES_KEY = "saved_categories"
THREAD_AUTOFETCH_KEY = "thread_autofetch"
DISPLAY_MODE_KEY = "display_mode"

DISPLAY_MODES = ("popup", "window")


class KeyValueStore:
    """
    One JSON document per key under a directory.

    Writes land in a temp file which is then renamed over the target, so a
    reader sees either the previous value or the new one, never a partial
    write.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._write_lock = asyncio.Lock()

    def _path(self, key: str) -> Path:
        return self.root / f"{key}.json"

    async def get(self, key: str, default: Any = None) -> Any:
        path = self._path(key)
        if not path.exists():
            return default
        try:
            async with aiofiles.open(path, "r") as f:
                raw = await f.read()
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"Corrupt value for key {key}, ignoring: {e}")
            return default

    async def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        tmp_path = path.with_suffix(".json.tmp")
        payload = json.dumps(value, ensure_ascii=False)
        async with self._write_lock:
            async with aiofiles.open(tmp_path, "w") as f:
                await f.write(payload)
                await f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        logger.debug(f"Stored key {key} ({len(payload)} bytes)")

    async def remove(self, key: str) -> None:
        async with self._write_lock:
            self._path(key).unlink(missing_ok=True)

    async def keys(self) -> List[str]:
        return sorted(p.stem for p in self.root.glob("*.json"))


class EntryStore:
    """
    The full entry collection plus the suggestion lists and preferences.

    All read-modify-write cycles go through ``transaction()`` or
    ``update_suggestions()``, which share a single lock. Two overlapping
    mutations therefore run one after the other instead of the later save
    silently discarding the earlier one.

    Once ``set_retention`` is called every load drops trash older than the
    retention window. Transactions and ``sweep`` persist the removal and hand
    the dropped entries to the ``on_purge`` callback.
    """

    def __init__(self, kv: KeyValueStore):
        self.kv = kv
        self._lock = asyncio.Lock()
        self.retention_ms: Optional[int] = None
        self.clock: Callable[[], int] = now_ms
        self.on_purge: Optional[Callable[[List[Entry]], Awaitable[None]]] = None

    def set_retention(
        self,
        retention_ms: int,
        clock: Callable[[], int] = now_ms,
        on_purge: Optional[Callable[[List[Entry]], Awaitable[None]]] = None
    ) -> None:
        self.retention_ms = retention_ms
        self.clock = clock
        self.on_purge = on_purge

    async def _read(self) -> List[Entry]:
        raw = await self.kv.get(ENTRIES_KEY, [])
        entries = []
        for item in raw:
            try:
                entries.append(Entry.from_dict(item))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping unreadable cached entry: {e}")
        return entries

    def _split(self, entries: List[Entry], now: Optional[int] = None) -> Tuple[List[Entry], List[Entry]]:
        if self.retention_ms is None:
            return entries, []
        now = self.clock() if now is None else now
        live, expired = [], []
        for entry in entries:
            (expired if entry.is_expired(now, self.retention_ms) else live).append(entry)
        return live, expired

    async def _report(self, expired: List[Entry]) -> None:
        if expired and self.on_purge is not None:
            await self.on_purge(expired)

    async def load(self) -> List[Entry]:
        """Load the persisted collection in stored order, without expired trash."""
        entries, _ = self._split(await self._read())
        return entries

    async def save(self, entries: Iterable[Entry]) -> None:
        """Replace the persisted collection."""
        await self.kv.set(ENTRIES_KEY, [e.to_dict() for e in entries])

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[List[Entry]]:
        """Serialized load-mutate-save.

        Yields the loaded list; whatever the caller leaves in it is saved on
        exit, unless it is unchanged and nothing expired. Nothing is saved if
        the block raises.
        """
        async with self._lock:
            entries, expired = self._split(await self._read())
            snapshot = list(entries)
            yield entries
            if expired or entries != snapshot:
                await self.save(entries)
        await self._report(expired)

    async def sweep(self, now: Optional[int] = None) -> List[Entry]:
        """Persist the removal of expired trash and return what was dropped."""
        async with self._lock:
            entries, expired = self._split(await self._read(), now)
            if expired:
                await self.save(entries)
        await self._report(expired)
        return expired

    async def get(self, entry_id: str) -> Optional[Entry]:
        for entry in await self.load():
            if entry.id == entry_id:
                return entry
        return None

    # Suggestions

    async def suggestions(self) -> Dict[str, List[str]]:
        return {
            "groups": await self.kv.get(GROUPS_KEY, []),
            "categories": await self.kv.get(CATEGORIES_KEY, [])
        }

    async def update_suggestions(
        self,
        groups: Iterable[Optional[str]] = (),
        categories: Iterable[Optional[str]] = ()
    ) -> Dict[str, List[str]]:
        """Union new values into the suggestion lists, keeping first-seen order."""
        async with self._lock:
            current = await self.suggestions()
            merged = {
                "groups": _union(current["groups"], groups),
                "categories": _union(current["categories"], categories)
            }
            if merged["groups"] != current["groups"]:
                await self.kv.set(GROUPS_KEY, merged["groups"])
            if merged["categories"] != current["categories"]:
                await self.kv.set(CATEGORIES_KEY, merged["categories"])
            return merged

    async def remove_suggestion(self, kind: str, value: str) -> bool:
        """Drop a single group or category suggestion. Returns True if it existed."""
        key = {"group": GROUPS_KEY, "category": CATEGORIES_KEY}.get(kind)
        if key is None:
            raise ValueError(f"Unknown suggestion kind: {kind}")
        async with self._lock:
            items = await self.kv.get(key, [])
            if value not in items:
                return False
            await self.kv.set(key, [item for item in items if item != value])
            return True

    # Preferences

    async def thread_autofetch(self, thread_key: str) -> bool:
        prefs = await self.kv.get(THREAD_AUTOFETCH_KEY, {})
        return bool(prefs.get(thread_key, False))

    async def set_thread_autofetch(self, thread_key: str, enabled: bool) -> None:
        async with self._lock:
            prefs = await self.kv.get(THREAD_AUTOFETCH_KEY, {})
            if enabled:
                prefs[thread_key] = True
            else:
                prefs.pop(thread_key, None)
            await self.kv.set(THREAD_AUTOFETCH_KEY, prefs)

    async def display_mode(self) -> str:
        return await self.kv.get(DISPLAY_MODE_KEY, DISPLAY_MODES[0])

    async def set_display_mode(self, mode: str) -> None:
        if mode not in DISPLAY_MODES:
            raise ValueError(f"display mode must be one of {DISPLAY_MODES}")
        await self.kv.set(DISPLAY_MODE_KEY, mode)

    async def clear(self) -> None:
        """Wipe the cache, suggestions and preferences."""
        async with self._lock:
            for key in (ENTRIES_KEY, GROUPS_KEY, CATEGORIES_KEY,
                        THREAD_AUTOFETCH_KEY, DISPLAY_MODE_KEY):
                await self.kv.remove(key)
        logger.info("Local cache cleared")


def _union(existing: List[str], new_values: Iterable[Optional[str]]) -> List[str]:
    result = list(existing)
    seen = set(result)
    for value in new_values:
        if value and value not in seen:
            seen.add(value)
            result.append(value)
    return result
