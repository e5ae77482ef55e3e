"""Local-first capture, lifecycle and sync engine."""

from .config import Config, StoreMode
from .context import EngineContext
from .models import CaptureDraft, Entry, EntryStatus, Source
from .threads import SortOrder

__all__ = [
    "CaptureDraft",
    "Config",
    "EngineContext",
    "Entry",
    "EntryStatus",
    "SortOrder",
    "Source",
    "StoreMode",
]
