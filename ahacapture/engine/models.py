"""Entry model shared by the local cache and the remote store."""

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Union
from urllib.parse import urlsplit

import ulid
from loguru import logger


SCHEMA_VERSION = 3
LOCAL_ID_PREFIX = "local_"
SESSION_ID_PREFIX = "sess_"

# Fields kept in the local cache for replies fetched from the remote store
REPLY_FIELDS = ("id", "sessionRef", "timestamp", "status", "content", "note")

ENTRY_TYPE_HIGHLIGHT = "User Highlight"
ENTRY_TYPE_IDEA = "User Idea"


def now_ms() -> int:
    """Current wall clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def new_local_id() -> str:
    """Generate an id in the local-origin namespace."""
    return f"{LOCAL_ID_PREFIX}{ulid.ULID()}"


def new_session_id() -> str:
    """Generate a thread key for a brand-new root entry."""
    return f"{SESSION_ID_PREFIX}{ulid.ULID()}"


def is_local_id(entry_id: str) -> bool:
    """True if the id was generated client-side and never reached the remote store."""
    return entry_id.startswith(LOCAL_ID_PREFIX)


class EntryStatus(Enum):
    """Closed set of entry statuses."""
    ACTIVE = "active"
    DONE = "done"
    TRASH = "trash"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "EntryStatus":
        """Normalize a stored status value.

        Missing values read as active, the legacy ``open`` synonym maps to
        active, and anything unrecognized becomes UNKNOWN.
        """
        if value is None or value == "" or value == "open":
            return cls.ACTIVE
        if isinstance(value, cls):
            return value
        for member in (cls.ACTIVE, cls.DONE, cls.TRASH):
            if value == member.value:
                return member
        return cls.UNKNOWN


@dataclass(frozen=True)
class Root:
    """Entry that starts a thread keyed by its own sessionId."""
    thread_key: str


@dataclass(frozen=True)
class Reply:
    """Entry that belongs to the thread named by its sessionRef."""
    thread_key: str


@dataclass(frozen=True)
class LegacyUnresolved:
    """Entry with neither sessionId nor sessionRef; its raw id is the thread key."""
    thread_key: str


ThreadRole = Union[Root, Reply, LegacyUnresolved]


@dataclass(frozen=True)
class Source:
    """Where a capture came from. Display only, never part of identity."""
    mode: str  # custom | root | full
    full: Optional[str] = None
    root: Optional[str] = None
    label: Optional[str] = None

    @classmethod
    def from_url(cls, url: str, full: bool = False) -> "Source":
        parts = urlsplit(url)
        origin = f"{parts.scheme}://{parts.netloc}" if parts.scheme and parts.netloc else url
        if full:
            return cls(mode="full", full=url, root=origin)
        return cls(mode="root", full=origin, root=origin)

    @classmethod
    def custom(cls, label: str) -> "Source":
        return cls(mode="custom", label=label)

    @classmethod
    def from_dict(cls, data: Any) -> Optional["Source"]:
        if not data:
            return None
        if isinstance(data, str):
            return cls.custom(data)
        return cls(
            mode=data.get("mode") or "custom",
            full=data.get("full"),
            root=data.get("root"),
            label=data.get("label")
        )

    @property
    def display(self) -> str:
        if self.mode == "custom":
            return self.label or ""
        return (self.full if self.mode == "full" else self.root) or ""

    def to_dict(self) -> Dict[str, Any]:
        data = {"mode": self.mode, "full": self.full, "root": self.root}
        if self.label is not None:
            data["label"] = self.label
        return data


@dataclass(frozen=True)
class Entry:
    """A captured note.

    Instances are immutable; lifecycle changes produce new instances through
    ``evolve`` so the thread role is derived exactly once per version.
    """
    id: str
    content: str
    note: Optional[str] = None
    group: Optional[str] = None
    category: Optional[str] = None
    status: EntryStatus = EntryStatus.ACTIVE
    deleted_at: Optional[int] = None
    session_id: Optional[str] = None
    session_ref: Optional[str] = None
    source: Optional[Source] = None
    timestamp: int = field(default_factory=now_ms)
    schema_version: int = SCHEMA_VERSION
    entry_type: Optional[str] = None
    origin: Optional[str] = None
    reduced: bool = False
    raw_status: Optional[str] = None
    role: ThreadRole = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.session_id and self.session_ref:
            raise ValueError(f"Entry {self.id} has both sessionId and sessionRef")
        if (self.status is EntryStatus.TRASH) != (self.deleted_at is not None):
            raise ValueError(
                f"Entry {self.id}: deletedAt must be set exactly when status is trash"
            )

        if self.session_ref:
            role: ThreadRole = Reply(self.session_ref)
        elif self.session_id:
            role = Root(self.session_id)
        else:
            role = LegacyUnresolved(self.id)
        object.__setattr__(self, "role", role)

    @property
    def is_local(self) -> bool:
        return is_local_id(self.id)

    @property
    def is_reply(self) -> bool:
        return isinstance(self.role, Reply)

    @property
    def thread_key(self) -> str:
        return self.role.thread_key

    def is_expired(self, now: int, retention_ms: int) -> bool:
        """True for trash older than the retention window."""
        return (
            self.status is EntryStatus.TRASH
            and self.deleted_at is not None
            and now - self.deleted_at > retention_ms
        )

    def evolve(self, **changes: Any) -> "Entry":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def project_reply(self) -> "Entry":
        """Reduced cache representation of a reply."""
        return Entry(
            id=self.id,
            content=self.content,
            note=self.note,
            status=self.status,
            deleted_at=self.deleted_at,
            session_ref=self.session_ref,
            timestamp=self.timestamp,
            reduced=True,
            raw_status=self.raw_status
        )

    @property
    def status_value(self) -> str:
        if self.status is EntryStatus.UNKNOWN and self.raw_status:
            return self.raw_status
        return self.status.value

    def to_dict(self) -> Dict[str, Any]:
        if self.reduced:
            data: Dict[str, Any] = {
                "id": self.id,
                "sessionRef": self.session_ref,
                "timestamp": self.timestamp,
                "status": self.status_value,
                "content": self.content,
                "note": self.note
            }
        else:
            data = {
                "id": self.id,
                "content": self.content,
                "note": self.note,
                "group": self.group,
                "category": self.category,
                "status": self.status_value,
                "source": self.source.to_dict() if self.source else None,
                "timestamp": self.timestamp,
                "schemaVersion": self.schema_version,
                "entryType": self.entry_type,
                "origin": self.origin
            }
            if self.session_id:
                data["sessionId"] = self.session_id
            if self.session_ref:
                data["sessionRef"] = self.session_ref
        if self.deleted_at is not None:
            data["deletedAt"] = self.deleted_at
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Entry":
        """Build an entry from stored data, normalizing at the boundary."""
        entry_id = str(data["id"])
        raw = data.get("status")
        status = EntryStatus.parse(raw)
        timestamp = _as_int(data.get("timestamp")) or now_ms()

        deleted_at = _as_int(data.get("deletedAt"))
        if status is EntryStatus.TRASH and deleted_at is None:
            logger.warning(f"Trashed entry {entry_id} has no deletedAt, stamping now")
            deleted_at = now_ms()
        elif status is not EntryStatus.TRASH:
            deleted_at = None

        session_id = data.get("sessionId") or None
        session_ref = data.get("sessionRef") or None
        if session_id and session_ref:
            logger.warning(f"Entry {entry_id} carries sessionId and sessionRef, treating as reply")
            session_id = None

        reduced = session_ref is not None and set(data) <= set(REPLY_FIELDS) | {"deletedAt"}

        return cls(
            id=entry_id,
            # Early cache versions stored the body under "title"
            content=data.get("content") or data.get("title") or "",
            note=data.get("note") or None,
            group=data.get("group") or None,
            category=data.get("category") or None,
            status=status,
            deleted_at=deleted_at,
            session_id=session_id,
            session_ref=session_ref,
            source=Source.from_dict(data.get("source")),
            timestamp=timestamp,
            schema_version=_as_int(data.get("schemaVersion")) or SCHEMA_VERSION,
            entry_type=data.get("entryType"),
            origin=data.get("origin"),
            reduced=reduced,
            raw_status=str(raw) if status is EntryStatus.UNKNOWN else None
        )


@dataclass
class CaptureDraft:
    """User input for a new entry, before it has an id."""
    content: str
    group: Optional[str] = None
    category: Optional[str] = None
    note: Optional[str] = None
    source: Optional[Source] = None
    origin: str = "popup_manual"

    @property
    def entry_type(self) -> str:
        if self.origin == "context_menu_modal":
            return ENTRY_TYPE_HIGHLIGHT
        return ENTRY_TYPE_IDEA

    def cleaned(self) -> "CaptureDraft":
        """Copy with surrounding whitespace stripped and blanks turned into None."""
        return CaptureDraft(
            content=(self.content or "").strip(),
            group=(self.group or "").strip() or None,
            category=(self.category or "").strip() or None,
            note=(self.note or "").strip() or None,
            source=self.source,
            origin=self.origin
        )


def _as_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
