import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from plugin_gate.config import DEFAULT_CACHE_TTL_SEC
from plugin_gate.persistence.sqlite_store import SqliteRegistryStore
from plugin_gate.services.permission_resolver import PermissionResolver
from plugin_gate.services.plugin_tracker import PluginRegistrationTracker
from plugin_gate.services.registry_admin import RegistryAdmin
from plugin_gate.services.registry_cache import RegistryCache

logger = logging.getLogger(__name__)


@dataclass
class PluginRegistry:
    store: SqliteRegistryStore
    tracker: PluginRegistrationTracker
    cache: RegistryCache
    resolver: PermissionResolver
    admin: RegistryAdmin


def build_plugin_registry(db_path: Path, cache_ttl_sec: Optional[float] = None) -> PluginRegistry:
    logger.info("registry_db_path=%s", str(Path(db_path).expanduser().resolve()))
    store = SqliteRegistryStore(db_path=db_path)
    tracker = PluginRegistrationTracker(store)
    cache = RegistryCache(
        store=store,
        tracker=tracker,
        ttl_sec=DEFAULT_CACHE_TTL_SEC if cache_ttl_sec is None else cache_ttl_sec,
    )
    return PluginRegistry(
        store=store,
        tracker=tracker,
        cache=cache,
        resolver=PermissionResolver(cache),
        admin=RegistryAdmin(store=store, tracker=tracker, cache=cache),
    )


async def register_startup_plugins(
    registry: PluginRegistry,
    internal: Iterable[str] = (),
    builtin: Iterable[str] = (),
) -> None:
    for name in internal:
        await registry.tracker.register_plugin(name, internal=True)
    for name in builtin:
        await registry.tracker.register_plugin(name, internal=False)
    # Catalog built before registration would be missing these names.
    registry.cache.invalidate()
    logger.info("Active plugins: %s", ", ".join(sorted(registry.tracker.active_names())) or "-")
