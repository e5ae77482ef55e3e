"""Engine context: owns every component and is passed explicitly to outer surfaces."""

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

import httpx
from loguru import logger

from .auth import CredentialsPrompt, FirebaseAuth
from .bus import Event, EventBus
from .config import Config, StoreMode
from .errors import ConfigurationError, EntryNotFoundError, ErrorEvent, ErrorKind
from .handoff import PendingCaptureSlot
from .lifecycle import LifecycleManager
from .models import CaptureDraft, Entry, EntryStatus, now_ms
from .remote import FirestoreAdapter, RemoteAdapter
from .store import EntryStore, KeyValueStore
from .sync import SyncEngine
from .threads import GroupedView, SortOrder, ThreadResolver


class EngineContext:
    """
    Wires the Entry Store, Remote Adapter, Lifecycle Manager, Sync Engine
    and Thread Resolver together.

    The Entry Store is the only holder of collection state; everything else
    is stateless or derived. When the configured store mode is remote but
    credentials are missing, the engine degrades to local-only mode and
    reports it once on startup.
    """

    def __init__(
        self,
        config: Config,
        remote: Optional[RemoteAdapter] = None,
        bus: Optional[EventBus] = None,
        clock: Callable[[], int] = now_ms
    ):
        self.config = config
        self.started_at = datetime.utcnow()
        self.bus = bus or EventBus()
        self.kv = KeyValueStore(config.store_dir)
        self.store = EntryStore(self.kv)
        self.pending = PendingCaptureSlot(self.kv)
        self.prompt: Optional[CredentialsPrompt] = None
        self.degraded: Optional[ErrorEvent] = None

        if config.store_mode is StoreMode.LOCAL:
            remote = None
        elif remote is None:
            remote = self._build_remote()
        self.remote = remote

        self.lifecycle = LifecycleManager(
            self.store,
            self.bus,
            remote=self.remote,
            retention_ms=config.sync.retention_ms,
            purge_remote=config.sync.purge_remote,
            clock=clock
        )
        self.sync = SyncEngine(
            self.store,
            self.bus,
            remote=self.remote,
            create_timeout=config.sync.create_timeout,
            cache_limit=config.sync.cache_limit,
            clock=clock
        )
        self.resolver = ThreadResolver()

    @property
    def store_mode(self) -> StoreMode:
        return StoreMode.REMOTE if self.remote is not None else StoreMode.LOCAL

    def _build_remote(self) -> Optional[RemoteAdapter]:
        remote_config = self.config.remote.with_env()
        if not remote_config.is_configured:
            error = ConfigurationError(
                "Remote credentials missing (api_key, project_id); running in local-only mode"
            )
            logger.warning(str(error))
            self.degraded = ErrorEvent.from_exception(ErrorKind.CONFIGURATION, error)
            return None

        client = httpx.AsyncClient(timeout=remote_config.timeout)
        auth = FirebaseAuth(remote_config.api_key, client, mode=remote_config.auth, kv=self.kv)
        return FirestoreAdapter(
            remote_config, auth, client, fetch_statuses=self.config.sync.fetch_statuses
        )

    async def start(self) -> None:
        logger.debug(f"Starting engine in {self.store_mode.value} mode")
        await self.bus.start()
        if self.degraded is not None:
            await self.bus.emit(Event(
                type=self.degraded.event_type, data=self.degraded.to_dict(), source="engine"
            ))
        await self.lifecycle.purge_expired()
        if self.config.sync.auto_sync and self.remote is not None:
            await self.sync.merge()

    async def close(self) -> None:
        if self.remote is not None:
            await self.remote.close()
        await self.bus.stop()
        logger.debug("Engine closed")

    async def __aenter__(self) -> "EngineContext":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # Read side

    async def entries(self) -> List[Entry]:
        """Current cache snapshot, after the trash purge sweep."""
        await self.lifecycle.purge_expired()
        return await self.store.load()

    async def get(self, entry_id: str) -> Entry:
        for entry in await self.entries():
            if entry.id == entry_id:
                return entry
        raise EntryNotFoundError(entry_id)

    async def thread(
        self,
        reference: str,
        query: Optional[str] = None,
        order: SortOrder = SortOrder.ASC
    ) -> Dict[str, Any]:
        view = self.resolver.thread(await self.entries(), reference, query=query, order=order)
        if view is None:
            raise EntryNotFoundError(reference)
        return view

    async def context_list(
        self,
        statuses: Iterable[EntryStatus] = (EntryStatus.ACTIVE,),
        query: Optional[str] = None,
        order: SortOrder = SortOrder.DESC
    ) -> GroupedView:
        return self.resolver.context_list(
            await self.entries(), statuses=statuses, query=query, order=order
        )

    # Write side

    async def capture(self, draft: CaptureDraft, reply_to: Optional[str] = None) -> Entry:
        return await self.sync.create(draft, reply_to=reply_to, interactive=self.prompt)

    async def get_status(self) -> Dict[str, Any]:
        entries = await self.entries()
        counts: Dict[str, int] = {}
        for entry in entries:
            counts[entry.status.value] = counts.get(entry.status.value, 0) + 1
        uptime = (datetime.utcnow() - self.started_at).total_seconds()
        return {
            "status": "running",
            "uptime": f"{uptime:.0f}s",
            "store_mode": self.store_mode.value,
            "degraded": self.degraded.message if self.degraded else None,
            "entries": len(entries),
            "by_status": counts,
            "events": self.bus.get_stats()
        }
