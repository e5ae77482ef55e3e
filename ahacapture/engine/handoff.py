"""One-shot handoff of a pending capture from its initiator to the engine."""

import asyncio
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from loguru import logger

from .models import CaptureDraft, Source
from .store import KeyValueStore


PENDING_CAPTURE_KEY = "pending_capture"
CONTEXT_MENU_MODE = "context_menu_modal"
MANUAL_MODE = "popup_manual"

# The initiator may still be writing when the engine looks
DEFAULT_GRACE = 0.05


@dataclass
class CaptureTrigger:
    """Initial payload delivered by a page-selection capture or a manual open."""
    text: str = ""
    url: Optional[str] = None
    mode: str = MANUAL_MODE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CaptureTrigger":
        return cls(
            text=data.get("text") or "",
            url=data.get("url") or None,
            mode=data.get("mode") or MANUAL_MODE
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def source(self, full_url: bool = False) -> Optional[Source]:
        if not self.url:
            return None
        return Source.from_url(self.url, full=full_url)

    def draft(self, **fields: Any) -> CaptureDraft:
        """Start a capture draft prefilled from this trigger."""
        full_url = fields.pop("full_url", False)
        return CaptureDraft(
            content=fields.pop("content", None) or self.text,
            source=fields.pop("source", None) or self.source(full_url),
            origin=self.mode,
            **fields
        )


class PendingCaptureSlot:
    """
    Single-slot mailbox stored in the local key-value store.

    ``take`` reads and clears the slot exactly once; concurrent takers
    are serialized so only one of them receives the capture.
    """

    def __init__(self, kv: KeyValueStore, grace: float = DEFAULT_GRACE):
        self.kv = kv
        self.grace = grace
        self._lock = asyncio.Lock()

    async def put(self, trigger: CaptureTrigger) -> None:
        await self.kv.set(PENDING_CAPTURE_KEY, trigger.to_dict())
        logger.debug(f"Pending capture stored ({trigger.mode})")

    async def take(self) -> Optional[CaptureTrigger]:
        async with self._lock:
            data = await self.kv.get(PENDING_CAPTURE_KEY)
            if data is None:
                await asyncio.sleep(self.grace)
                data = await self.kv.get(PENDING_CAPTURE_KEY)
            if data is None:
                return None
            await self.kv.remove(PENDING_CAPTURE_KEY)

        logger.debug("Pending capture consumed")
        return CaptureTrigger.from_dict(data)
