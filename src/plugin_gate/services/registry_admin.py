"""Administrative writes over the plugin/group registry.

Writes never touch the read caches; readers see changes once the relevant
cache window expires.
"""
import asyncio
import logging
from typing import Any, Dict, Iterable, List

from plugin_gate.domain.registry import GroupRecord, NewGroup, PluginRecord, UpdateResult
from plugin_gate.observability.structured_log import log_json
from plugin_gate.persistence.sqlite_store import SqliteRegistryStore
from plugin_gate.services.plugin_tracker import PluginRegistrationTracker
from plugin_gate.services.registry_cache import RegistryCache

logger = logging.getLogger(__name__)


def merge_unique(*sequences: Iterable[int]) -> List[int]:
    out: List[int] = []
    seen = set()
    for seq in sequences:
        for value in seq or []:
            value = int(value)
            if value in seen:
                continue
            seen.add(value)
            out.append(value)
    return out


def _as_ids(values: Iterable[int]) -> List[int]:
    return [int(v) for v in values or []]


class RegistryAdmin:
    def __init__(
        self,
        store: SqliteRegistryStore,
        tracker: PluginRegistrationTracker,
        cache: RegistryCache,
    ) -> None:
        self._store = store
        self._tracker = tracker
        self._cache = cache

    async def list_plugins(self) -> List[PluginRecord]:
        return await asyncio.to_thread(self._store.list_plugins)

    async def list_groups(self) -> List[GroupRecord]:
        return await asyncio.to_thread(self._store.list_groups)

    async def register_plugin(self, name: str, internal: bool = False) -> None:
        await self._tracker.register_plugin(name, internal=internal, external=True)

    def clear_external_plugins(self) -> int:
        return self._tracker.clear_external_plugins()

    async def add_group(self, group: NewGroup) -> int:
        internal_ids = await self._cache.list_internal_plugin_ids()
        group.plugins = merge_unique(internal_ids, group.plugins)
        group.admins = _as_ids(group.admins)
        group_id = await asyncio.to_thread(self._store.insert_group, group)
        log_json(logger, "group.added", group_id=group_id, external_id=group.external_id, plugins=group.plugins)
        return group_id

    async def register_group(self, name: str, external_id: int, expired_at: str) -> bool:
        """Create a group for ``external_id`` unless one exists. Returns True when created."""
        existing = await asyncio.to_thread(self._store.find_group_by_external_id, external_id)
        if existing is not None:
            return False
        await self.add_group(NewGroup(name=name, external_id=external_id, expired_at=expired_at))
        return True

    async def update_group(self, group_id: int, fields: Dict[str, Any]) -> UpdateResult:
        existing = await asyncio.to_thread(self._store.get_group, group_id)
        if existing is None:
            return UpdateResult.NOT_FOUND
        changes = dict(fields)
        if changes.get("plugins") is not None:
            internal_ids = await self._cache.list_internal_plugin_ids()
            changes["plugins"] = merge_unique(internal_ids, changes["plugins"])
        if changes.get("admins") is not None:
            changes["admins"] = _as_ids(changes["admins"])
        changes = {k: v for k, v in changes.items() if v is not None}
        await asyncio.to_thread(self._store.update_group, group_id, changes)
        log_json(logger, "group.updated", group_id=group_id, fields=sorted(changes))
        return UpdateResult.UPDATED

    async def update_plugin(self, plugin_id: int, fields: Dict[str, Any]) -> UpdateResult:
        existing = await asyncio.to_thread(self._store.get_plugin, plugin_id)
        if existing is None:
            return UpdateResult.NOT_FOUND
        changes = {k: v for k, v in fields.items() if v is not None}
        for key in ("white_list_users", "black_list_users"):
            if key in changes:
                changes[key] = _as_ids(changes[key])
        await asyncio.to_thread(self._store.update_plugin, plugin_id, changes)
        log_json(logger, "plugin.updated", plugin_id=plugin_id, fields=sorted(changes))
        return UpdateResult.UPDATED

    async def delete_group(self, group_id: int) -> int:
        deleted = await asyncio.to_thread(self._store.delete_group, group_id)
        log_json(logger, "group.deleted", group_id=group_id, deleted=deleted)
        return deleted
