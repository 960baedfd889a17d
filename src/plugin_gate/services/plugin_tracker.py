import asyncio
import logging
from typing import FrozenSet, Set

from plugin_gate.observability.structured_log import log_json
from plugin_gate.persistence.sqlite_store import SqliteRegistryStore

logger = logging.getLogger(__name__)


class PluginRegistrationTracker:
    """Which plugin names are active in this process.

    Externally registered names are tracked separately so an external plugin
    host that reconnects can wipe its previous set before restating it.
    """

    def __init__(self, store: SqliteRegistryStore) -> None:
        self._store = store
        self._active: Set[str] = set()
        self._external: Set[str] = set()

    async def register_plugin(self, name: str, internal: bool = False, external: bool = False) -> None:
        name = (name or "").strip()
        if not name:
            raise ValueError("Plugin name is required.")
        plugin_id, created = await asyncio.to_thread(self._store.ensure_plugin, name, bool(internal))
        if created:
            log_json(logger, "plugin.created", plugin=name, plugin_id=plugin_id, internal=bool(internal))
        self._active.add(name)
        if external:
            self._external.add(name)
        log_json(logger, "plugin.registered", plugin=name, external=bool(external))

    def clear_external_plugins(self) -> int:
        removed = len(self._external)
        self._active.difference_update(self._external)
        self._external = set()
        log_json(logger, "plugin.external.cleared", removed=removed)
        return removed

    def is_active(self, name: str) -> bool:
        return name in self._active

    def active_names(self) -> FrozenSet[str]:
        return frozenset(self._active)

    def external_names(self) -> FrozenSet[str]:
        return frozenset(self._external)
