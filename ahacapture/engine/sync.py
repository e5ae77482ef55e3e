"""Sync engine: merge remote snapshots into the local cache and dual-write captures.

Merge precedence is whole-record: for every id the remote store returns,
the remote version replaces the local one. Ids the remote store did not
return (unsynced or local-only entries) are never touched.
"""

import asyncio
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from loguru import logger

from .auth import CredentialsPrompt
from .bus import Event, EventBus
from .errors import (
    CaptureError,
    ErrorEvent,
    ErrorKind,
    RemoteError,
    RemoteTimeoutError,
    RemoteUnavailableError,
    ValidationError,
)
from .models import (
    CaptureDraft,
    Entry,
    EntryStatus,
    SCHEMA_VERSION,
    new_local_id,
    new_session_id,
    now_ms,
)
from .remote import RemoteAdapter
from .store import EntryStore


DEFAULT_CREATE_TIMEOUT = 5.0
DEFAULT_CACHE_LIMIT = 50


@dataclass
class SyncResult:
    """Outcome of one merge cycle."""
    ok: bool
    fetched: int = 0
    added: int = 0
    updated: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def merge_entries(local: Iterable[Entry], remote: Iterable[Entry]) -> Tuple[List[Entry], int, int]:
    """Fold a remote snapshot into the local collection.

    Returns the merged list sorted newest first, plus the number of ids added
    and the number of existing ids whose record changed.
    """
    by_id: Dict[str, Entry] = {}
    for entry in local:
        by_id.setdefault(entry.id, entry)

    added = updated = 0
    for entry in remote:
        # Replies carry no group/category/source of their own
        incoming = entry.project_reply() if entry.is_reply else entry
        existing = by_id.get(entry.id)
        if existing is None:
            added += 1
        elif existing != incoming:
            updated += 1
        by_id[entry.id] = incoming

    merged = sorted(by_id.values(), key=lambda e: e.timestamp, reverse=True)
    return merged, added, updated


class SyncEngine:
    """
    Reconciles the local cache with the remote store.

    ``remote`` is None in local-only mode: captures get local-origin ids and
    merges are skipped.
    """

    def __init__(
        self,
        store: EntryStore,
        bus: EventBus,
        remote: Optional[RemoteAdapter] = None,
        create_timeout: float = DEFAULT_CREATE_TIMEOUT,
        cache_limit: int = DEFAULT_CACHE_LIMIT,
        clock: Callable[[], int] = now_ms
    ):
        self.store = store
        self.bus = bus
        self.remote = remote
        self.create_timeout = create_timeout
        self.cache_limit = cache_limit
        self.clock = clock

    @property
    def is_remote(self) -> bool:
        return self.remote is not None

    async def merge(self) -> SyncResult:
        """Fetch open entries remotely and merge them into the local cache."""
        if self.remote is None:
            logger.debug("Local-only mode, nothing to sync")
            return SyncResult(ok=False, error="No remote store configured")

        try:
            fetched = await self.remote.fetch_open()
        except RemoteError as e:
            logger.error(f"Fetch failed, keeping local cache: {e}")
            report = ErrorEvent.from_exception(ErrorKind.FETCH, e)
            await self.bus.emit(Event(type=report.event_type, data=report.to_dict(), source="sync"))
            return SyncResult(ok=False, error=str(e))

        async with self.store.transaction() as entries:
            merged, added, updated = merge_entries(entries, fetched)
            entries[:] = merged

        await self.store.update_suggestions(
            groups=[e.group for e in fetched],
            categories=[e.category for e in fetched]
        )

        result = SyncResult(ok=True, fetched=len(fetched), added=added, updated=updated)
        logger.info(f"Sync complete: {len(fetched)} fetched, {added} added, {updated} updated")
        await self.bus.emit(Event(type="sync.completed", data=result.to_dict(), source="sync"))
        return result

    async def create(
        self,
        draft: CaptureDraft,
        reply_to: Optional[str] = None,
        interactive: Optional[CredentialsPrompt] = None
    ) -> Entry:
        """
        Capture a new entry.

        In remote mode the remote create must succeed within the timeout,
        otherwise CaptureError is raised and nothing is written locally.
        In local mode a local-origin id is assigned without any network call.
        Either way the local cache gets the new entry and is trimmed to the
        most recent ``cache_limit`` entries.
        """
        draft = draft.cleaned()
        validate_draft(draft, new_thread=reply_to is None)

        session_id = session_ref = None
        if reply_to is None:
            session_id = new_session_id()
        else:
            session_ref = await self._thread_key_for(reply_to)

        payload = {
            "content": draft.content,
            "note": draft.note,
            "entryType": draft.entry_type,
            "origin": draft.origin,
            "group": draft.group,
            "category": draft.category,
            "source": draft.source.to_dict() if draft.source else None,
            "sessionId": session_id,
            "sessionRef": session_ref,
            "schemaVersion": SCHEMA_VERSION,
            "status": EntryStatus.ACTIVE.value
        }

        if self.remote is not None:
            try:
                entry_id = await self._create_remote(payload, interactive)
            except RemoteError as e:
                logger.error(f"Capture aborted: {e}")
                report = ErrorEvent.from_exception(ErrorKind.CAPTURE, e)
                await self.bus.emit(Event(type=report.event_type, data=report.to_dict(), source="sync"))
                raise CaptureError(f"Capture failed: {e}", cause=e) from e
        else:
            entry_id = new_local_id()

        entry = Entry(
            id=entry_id,
            content=draft.content,
            note=draft.note,
            group=draft.group,
            category=draft.category,
            session_id=session_id,
            session_ref=session_ref,
            source=draft.source,
            timestamp=self.clock(),
            entry_type=draft.entry_type,
            origin=draft.origin
        )

        async with self.store.transaction() as entries:
            entries.insert(0, entry)
            entries.sort(key=lambda e: e.timestamp, reverse=True)
            del entries[self.cache_limit:]

        await self.store.update_suggestions(groups=[draft.group], categories=[draft.category])

        logger.info(f"Captured entry {entry.id}" + (f" in thread {session_ref}" if session_ref else ""))
        await self.bus.emit(Event(
            type="capture.written",
            data={"id": entry.id, "thread": entry.thread_key, "local": entry.is_local},
            source="sync"
        ))
        return entry

    async def _create_remote(
        self,
        payload: Dict[str, Any],
        interactive: Optional[CredentialsPrompt]
    ) -> str:
        if not await self.remote.is_online():
            raise RemoteUnavailableError("No network connection")
        await self.remote.ensure_auth(interactive)
        try:
            return await asyncio.wait_for(self.remote.create(payload), timeout=self.create_timeout)
        except asyncio.TimeoutError as e:
            raise RemoteTimeoutError(
                f"Remote store did not confirm within {self.create_timeout:.0f}s"
            ) from e

    async def _thread_key_for(self, reference: str) -> str:
        """Resolve a reply target (entry id or thread key) to the thread key."""
        entries = await self.store.load()
        for entry in entries:
            if entry.id == reference:
                return entry.thread_key
        if any(e.session_id == reference for e in entries):
            return reference
        logger.warning(f"Reply target {reference} is not in the local cache, using it as thread key")
        return reference


def validate_draft(draft: CaptureDraft, new_thread: bool) -> None:
    if not draft.content:
        raise ValidationError("Content is required", field_name="content")
    if not draft.group or not draft.category:
        raise ValidationError(
            "Missing required fields",
            field_name="group" if not draft.group else "category"
        )
    if new_thread and not draft.note:
        raise ValidationError("A note is required to start a new thread", field_name="note")
