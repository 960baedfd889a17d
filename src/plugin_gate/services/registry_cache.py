"""Read-through TTL caches for the plugin catalog and the group map.

Each view lives under a fixed cache key together with the time it was
refreshed, stored as one immutable entry so the value and its timestamp are
always replaced together. Refreshes are not serialized: two callers that see
an expired key may both read the store, and the later write wins.

A failed refresh raises to the caller and leaves the previous entry in
place, so the next call inside its window still serves the old snapshot.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from plugin_gate.config import DEFAULT_CACHE_TTL_SEC
from plugin_gate.domain.registry import GroupRecord, PluginRecord
from plugin_gate.observability.structured_log import log_json
from plugin_gate.persistence.sqlite_store import SqliteRegistryStore
from plugin_gate.services.plugin_tracker import PluginRegistrationTracker

logger = logging.getLogger(__name__)

CACHE_KEY_PLUGINS = "plugins"
CACHE_KEY_GROUPS = "groups"


@dataclass(frozen=True)
class _CacheEntry:
    value: Any
    refreshed_at: float


class RegistryCache:
    def __init__(
        self,
        store: SqliteRegistryStore,
        tracker: PluginRegistrationTracker,
        ttl_sec: float = DEFAULT_CACHE_TTL_SEC,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._tracker = tracker
        self._ttl_sec = max(0.0, float(ttl_sec))
        self._clock = clock
        self._entries: Dict[str, _CacheEntry] = {}

    @property
    def ttl_sec(self) -> float:
        return self._ttl_sec

    def is_expired(self, key: str) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return True
        return self._clock() - entry.refreshed_at >= self._ttl_sec

    def peek(self, key: str) -> Any:
        """Last cached value for ``key`` without refreshing, or None."""
        entry = self._entries.get(key)
        return None if entry is None else entry.value

    def invalidate(self, key: Optional[str] = None) -> None:
        if key is None:
            self._entries = {}
        else:
            self._entries.pop(key, None)

    async def get_plugin_catalog(self) -> Tuple[PluginRecord, ...]:
        if not self.is_expired(CACHE_KEY_PLUGINS):
            return self._entries[CACHE_KEY_PLUGINS].value
        plugins = await self._load_active_plugins()
        snapshot = tuple(p for p in plugins if p.enabled)
        self._entries[CACHE_KEY_PLUGINS] = _CacheEntry(value=snapshot, refreshed_at=self._clock())
        log_json(logger, "registry.cache.refresh", key=CACHE_KEY_PLUGINS, size=len(snapshot))
        return snapshot

    async def get_group(self, external_id: int) -> Optional[GroupRecord]:
        entry = self._entries.get(CACHE_KEY_GROUPS)
        if entry is not None and not self.is_expired(CACHE_KEY_GROUPS):
            group = entry.value.get(external_id)
            if group is not None:
                return group
        groups = await asyncio.to_thread(self._store.list_groups)
        mapping = {g.external_id: g for g in groups}
        self._entries[CACHE_KEY_GROUPS] = _CacheEntry(value=mapping, refreshed_at=self._clock())
        log_json(logger, "registry.cache.refresh", key=CACHE_KEY_GROUPS, size=len(mapping))
        return mapping.get(external_id)

    async def list_internal_plugin_ids(self) -> List[int]:
        """Ids of registered internal plugins, read from the store on every call."""
        plugins = await self._load_active_plugins()
        return [p.plugin_id for p in plugins if p.internal]

    async def _load_active_plugins(self) -> List[PluginRecord]:
        plugins = await asyncio.to_thread(self._store.list_plugins)
        return [p for p in plugins if self._tracker.is_active(p.name)]
