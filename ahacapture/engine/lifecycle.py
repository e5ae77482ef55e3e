"""Entry lifecycle: status transitions, edits, permanent deletion and trash purge.

State machine:
    active <-> done
    active | done -> trash      (stamps deletedAt)
    trash -> active             (clears deletedAt)
    trash -> purged             (automatic sweep after the retention window)

Local state is authoritative. Changes to remote-origin entries are mirrored
to the remote store on a best-effort basis; a failed mirror is logged and
published as ``mirror.failed`` but never rolls back the local change.
"""

from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from .bus import Event, EventBus
from .errors import (
    EntryNotFoundError,
    ErrorEvent,
    ErrorKind,
    InvalidTransitionError,
    RemoteError,
    ValidationError,
)
from .models import Entry, EntryStatus, now_ms
from .remote import RemoteAdapter
from .store import EntryStore


ALLOWED_TRANSITIONS = {
    EntryStatus.ACTIVE: {EntryStatus.DONE, EntryStatus.TRASH},
    EntryStatus.DONE: {EntryStatus.ACTIVE, EntryStatus.TRASH},
    EntryStatus.TRASH: {EntryStatus.ACTIVE},
    EntryStatus.UNKNOWN: {EntryStatus.ACTIVE, EntryStatus.TRASH},
}

DEFAULT_RETENTION_MS = 24 * 3600 * 1000

_UNSET: Any = object()


def transition(entry: Entry, target: EntryStatus, now: int) -> Entry:
    """Apply a status change to a single entry, enforcing the state machine."""
    if target not in ALLOWED_TRANSITIONS[entry.status]:
        raise InvalidTransitionError(
            f"Cannot move entry {entry.id} from {entry.status.value} to {target.value}"
        )
    deleted_at = now if target is EntryStatus.TRASH else None
    return entry.evolve(status=target, deleted_at=deleted_at, raw_status=None)


class LifecycleManager:
    """Applies lifecycle changes to the local cache and mirrors them remotely."""

    def __init__(
        self,
        store: EntryStore,
        bus: EventBus,
        remote: Optional[RemoteAdapter] = None,
        retention_ms: int = DEFAULT_RETENTION_MS,
        purge_remote: bool = True,
        clock: Callable[[], int] = now_ms
    ):
        self.store = store
        self.bus = bus
        self.remote = remote
        self.retention_ms = retention_ms
        self.purge_remote = purge_remote
        self.clock = clock
        store.set_retention(retention_ms, clock, on_purge=self._report_purged)

    async def set_status(self, entry_id: str, status: EntryStatus) -> Entry:
        return await self._apply(entry_id, status)

    async def mark_done(self, entry_id: str) -> Entry:
        return await self._apply(entry_id, EntryStatus.DONE)

    async def reopen(self, entry_id: str) -> Entry:
        return await self._apply(entry_id, EntryStatus.ACTIVE, required=EntryStatus.DONE)

    async def trash(self, entry_id: str) -> Entry:
        return await self._apply(entry_id, EntryStatus.TRASH)

    async def restore(self, entry_id: str) -> Entry:
        """Bring a trashed entry back. Restore always lands on active."""
        return await self._apply(entry_id, EntryStatus.ACTIVE, required=EntryStatus.TRASH)

    async def _apply(
        self,
        entry_id: str,
        target: EntryStatus,
        required: Optional[EntryStatus] = None
    ) -> Entry:
        async with self.store.transaction() as entries:
            index = _find(entries, entry_id)
            current = entries[index]
            if required is not None and current.status is not required:
                raise InvalidTransitionError(
                    f"Entry {entry_id} is {current.status.value}, expected {required.value}"
                )
            if current.status is target:
                logger.debug(f"Entry {entry_id} already {target.value}")
                return current
            updated = transition(current, target, self.clock())
            entries[index] = updated

        logger.info(f"Entry {entry_id}: {current.status.value} -> {target.value}")
        await self.bus.emit(Event(
            type="entry.status_changed",
            data={"id": entry_id, "from": current.status.value, "to": target.value},
            source="lifecycle"
        ))

        if not updated.is_local:
            await self._mirror(
                entry_id, self._remote_set_status, entry_id, target, updated.deleted_at
            )
        return updated

    async def edit(
        self,
        entry_id: str,
        content: Optional[str] = None,
        note: Any = _UNSET
    ) -> Entry:
        """Change the content and/or note of an entry. ``note=None`` clears it."""
        changes: Dict[str, Any] = {}
        if content is not None:
            content = content.strip()
            if not content:
                raise ValidationError("Content is required", field_name="content")
            changes["content"] = content
        if note is not _UNSET:
            changes["note"] = (note or "").strip() or None
        if not changes:
            raise ValidationError("Nothing to edit")

        async with self.store.transaction() as entries:
            index = _find(entries, entry_id)
            updated = entries[index].evolve(**changes)
            entries[index] = updated

        logger.info(f"Edited entry {entry_id}: {sorted(changes)}")
        await self.bus.emit(Event(
            type="entry.edited",
            data={"id": entry_id, "fields": sorted(changes)},
            source="lifecycle"
        ))

        if not updated.is_local:
            await self._mirror(entry_id, self._remote_update, entry_id, changes)
        return updated

    async def delete_permanently(self, entry_id: str) -> Entry:
        """Remove an entry from the local cache and from the remote store."""
        async with self.store.transaction() as entries:
            index = _find(entries, entry_id)
            removed = entries.pop(index)

        logger.info(f"Permanently deleted entry {entry_id}")
        await self.bus.emit(Event(type="entry.deleted", data={"id": entry_id}, source="lifecycle"))

        if not removed.is_local:
            await self._mirror(entry_id, self._remote_delete, entry_id)
        return removed

    async def empty_trash(self) -> List[Entry]:
        """Permanently delete every trashed entry, regardless of age."""
        async with self.store.transaction() as entries:
            removed = [e for e in entries if e.status is EntryStatus.TRASH]
            entries[:] = [e for e in entries if e.status is not EntryStatus.TRASH]

        if removed:
            logger.info(f"Emptied trash: {len(removed)} entries")
        for entry in removed:
            await self.bus.emit(Event(type="entry.deleted", data={"id": entry.id}, source="lifecycle"))
            if not entry.is_local:
                await self._mirror(entry.id, self._remote_delete, entry.id)
        return removed

    async def purge_expired(self, now: Optional[int] = None) -> List[Entry]:
        """Drop trashed entries older than the retention window.

        Every store transaction already does this on its way in; calling it
        directly forces the sweep without any other change.
        """
        return await self.store.sweep(now)

    async def _report_purged(self, expired: List[Entry]) -> None:
        """Announce purged entries; with ``purge_remote`` also delete them remotely."""
        logger.info(f"Purged {len(expired)} expired trash entries")
        for entry in expired:
            await self.bus.emit(Event(type="entry.purged", data={"id": entry.id}, source="lifecycle"))
            if self.purge_remote and not entry.is_local:
                await self._mirror(entry.id, self._remote_delete, entry.id)

    async def _remote_set_status(self, entry_id: str, status: EntryStatus, deleted_at: Optional[int]) -> None:
        await self.remote.set_status(entry_id, status, deleted_at)

    async def _remote_update(self, entry_id: str, fields: Dict[str, Any]) -> None:
        await self.remote.update(entry_id, fields)

    async def _remote_delete(self, entry_id: str) -> None:
        await self.remote.delete(entry_id)

    async def _mirror(self, entry_id: str, action: Callable, *args: Any) -> bool:
        """Run a remote mirror call; failures are reported, never raised."""
        if self.remote is None:
            logger.debug(f"No remote store, entry {entry_id} changed locally only")
            return False
        try:
            await action(*args)
            return True
        except RemoteError as e:
            logger.error(f"Remote mirror failed for entry {entry_id}: {e}")
            report = ErrorEvent.from_exception(ErrorKind.MIRROR, e, entry_id=entry_id)
            await self.bus.emit(Event(type=report.event_type, data=report.to_dict(), source="lifecycle"))
            return False


def _find(entries: List[Entry], entry_id: str) -> int:
    for index, entry in enumerate(entries):
        if entry.id == entry_id:
            return index
    raise EntryNotFoundError(entry_id)
