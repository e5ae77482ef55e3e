"""Async event bus used to surface engine activity and errors to outer surfaces."""

import asyncio
from typing import Dict, List, Callable, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime
from collections import defaultdict
from loguru import logger


@dataclass
class Event:
    """Something that happened inside the engine."""
    type: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.utcnow)
    source: Optional[str] = None


class EventBus:
    """
    In-process pub/sub.

    Event types follow ``category.action``, for example ``capture.written``,
    ``entry.status_changed``, ``sync.completed`` or ``mirror.failed``.
    Handlers subscribe to an exact type, to ``category.*``, to ``*.action``
    or to ``*``.
    """

    def __init__(self, maxsize: int = 1000):
        self._subscribers: Dict[str, List[Callable[[Event], Any]]] = defaultdict(list)
        self._event_queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._running = False
        self._processor_task: Optional[asyncio.Task] = None
        self._stats = defaultdict(int)

    def subscribe(self, event_pattern: str, handler: Callable[[Event], Any]) -> None:
        self._subscribers[event_pattern].append(handler)
        logger.debug(f"Subscribed handler to pattern: {event_pattern}")

    def unsubscribe(self, event_pattern: str, handler: Callable[[Event], Any]) -> None:
        self._subscribers[event_pattern] = [
            h for h in self._subscribers[event_pattern] if h != handler
        ]

    async def emit(self, event: Event) -> None:
        """Queue an event; dropped with a warning when the queue is full."""
        if self._event_queue.full():
            logger.warning(f"Event queue full, dropping event: {event.type}")
            self._stats['dropped'] += 1
            return

        await self._event_queue.put(event)
        self._stats['emitted'] += 1
        logger.debug(f"Emitted event: {event.type}")

    async def start(self) -> None:
        if self._running:
            logger.warning("Event bus already running")
            return

        self._running = True
        self._processor_task = asyncio.create_task(self._process_events())
        logger.debug("Event bus started")

    async def stop(self) -> None:
        """Stop processing after delivering whatever is still queued."""
        self._running = False
        if self._processor_task:
            await self._processor_task
            self._processor_task = None
        while not self._event_queue.empty():
            await self._dispatch(self._event_queue.get_nowait())
        logger.debug("Event bus stopped")

    async def _process_events(self) -> None:
        while self._running:
            try:
                event = await asyncio.wait_for(self._event_queue.get(), timeout=0.2)
            except asyncio.TimeoutError:
                continue
            await self._dispatch(event)

    async def _dispatch(self, event: Event) -> None:
        handlers = [
            handler
            for pattern, pattern_handlers in list(self._subscribers.items())
            if self._matches_pattern(event.type, pattern)
            for handler in pattern_handlers
        ]

        tasks = []
        for handler in handlers:
            if asyncio.iscoroutinefunction(handler):
                tasks.append(asyncio.create_task(handler(event)))
            else:
                tasks.append(asyncio.create_task(asyncio.to_thread(handler, event)))

        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Handler error for event {event.type}: {result}")
                self._stats['handler_errors'] += 1

        self._stats['processed'] += 1

    def _matches_pattern(self, event_type: str, pattern: str) -> bool:
        if pattern == "*":
            return True
        if pattern.endswith(".*"):
            prefix = pattern[:-2]
            return event_type.startswith(prefix + ".")
        if pattern.startswith("*."):
            suffix = pattern[1:]
            return event_type.endswith(suffix) and len(event_type) > len(suffix)
        return event_type == pattern

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)
