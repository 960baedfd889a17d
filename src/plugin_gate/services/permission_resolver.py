import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from plugin_gate.domain.registry import PluginRecord
from plugin_gate.services.registry_cache import RegistryCache

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_expiry(raw: str) -> Optional[datetime]:
    """Parse a stored ``expired_at`` value into an aware datetime.

    Naive timestamps are read as local time. Returns None when unparseable.
    """
    value = (raw or "").strip()
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed


class PermissionResolver:
    def __init__(self, cache: RegistryCache, now: Callable[[], datetime] = _utc_now) -> None:
        self._cache = cache
        self._now = now

    async def is_group_admin(self, external_id: int, user_id: int) -> bool:
        group = await self._cache.get_group(external_id)
        if group is None:
            return False
        return user_id in group.admins

    async def is_group_valid(self, external_id: int) -> bool:
        group = await self._cache.get_group(external_id)
        if group is None:
            return False
        expires = parse_expiry(group.expired_at)
        if expires is None:
            logger.warning("Group %s has unparseable expired_at=%r", external_id, group.expired_at)
            return False
        return self._now() <= expires

    async def get_available_plugins(self, external_id: int, user_id: Optional[int] = None) -> List[str]:
        group = await self._cache.get_group(external_id)
        if group is None:
            return []
        granted = list(dict.fromkeys(group.plugins))
        catalog = await self._cache.get_plugin_catalog()
        by_id: Dict[int, PluginRecord] = {p.plugin_id: p for p in catalog}
        if user_id is not None:
            for plugin in catalog:
                if user_id in plugin.white_list_users and plugin.plugin_id not in granted:
                    granted.append(plugin.plugin_id)
                # Blacklist is applied after the whitelist, so it wins for a user on both lists.
                if user_id in plugin.black_list_users and plugin.plugin_id in granted:
                    granted.remove(plugin.plugin_id)
        return [by_id[pid].name for pid in granted if pid in by_id]

    async def is_plugin_available(self, external_id: int, plugin_name: str, user_id: Optional[int] = None) -> bool:
        return plugin_name in await self.get_available_plugins(external_id, user_id=user_id)
