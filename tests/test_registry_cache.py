import tempfile
import unittest
from pathlib import Path

from plugin_gate.config import DEFAULT_CACHE_TTL_SEC
from plugin_gate.domain.registry import NewGroup
from plugin_gate.persistence.sqlite_store import SqliteRegistryStore, StoreError
from plugin_gate.services.plugin_tracker import PluginRegistrationTracker
from plugin_gate.services.registry_cache import CACHE_KEY_GROUPS, CACHE_KEY_PLUGINS, RegistryCache


class _CountingStore(SqliteRegistryStore):
    def __init__(self, db_path: Path):
        super().__init__(db_path=db_path)
        self.plugin_reads = 0
        self.group_reads = 0
        self.fail_reads = False

    def list_plugins(self):
        self.plugin_reads += 1
        if self.fail_reads:
            raise StoreError("database is locked")
        return super().list_plugins()

    def list_groups(self):
        self.group_reads += 1
        if self.fail_reads:
            raise StoreError("database is locked")
        return super().list_groups()


class _Clock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestRegistryCache(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.store = _CountingStore(db_path=Path(self.tmp.name) / "registry.db")
        self.tracker = PluginRegistrationTracker(self.store)
        self.clock = _Clock()
        self.cache = RegistryCache(self.store, self.tracker, ttl_sec=10, clock=self.clock)
        await self.tracker.register_plugin("help", internal=True)
        await self.tracker.register_plugin("weather")

    async def asyncTearDown(self):
        self.tmp.cleanup()

    async def test_catalog_is_served_from_cache_within_ttl(self):
        first = await self.cache.get_plugin_catalog()
        self.clock.now += 9.9
        second = await self.cache.get_plugin_catalog()

        self.assertIs(first, second)
        self.assertEqual(self.store.plugin_reads, 1)
        self.assertEqual(sorted(p.name for p in first), ["help", "weather"])

    async def test_catalog_refreshes_once_after_ttl(self):
        await self.cache.get_plugin_catalog()
        self.clock.now += 10
        await self.cache.get_plugin_catalog()
        await self.cache.get_plugin_catalog()

        self.assertEqual(self.store.plugin_reads, 2)

    async def test_catalog_keeps_only_active_and_enabled_plugins(self):
        self.store.insert_plugin("never_registered")
        weather = self.store.find_plugin_by_name("weather")
        self.store.update_plugin(weather.plugin_id, {"enabled": False})

        catalog = await self.cache.get_plugin_catalog()

        self.assertEqual([p.name for p in catalog], ["help"])

    async def test_writes_are_not_visible_until_expiry(self):
        await self.cache.get_plugin_catalog()
        weather = self.store.find_plugin_by_name("weather")
        self.store.update_plugin(weather.plugin_id, {"enabled": False})

        stale = await self.cache.get_plugin_catalog()
        self.assertIn("weather", [p.name for p in stale])

        self.clock.now += 10
        fresh = await self.cache.get_plugin_catalog()
        self.assertNotIn("weather", [p.name for p in fresh])

    async def test_failed_refresh_keeps_previous_snapshot(self):
        first = await self.cache.get_plugin_catalog()
        self.clock.now += 15
        self.store.fail_reads = True

        with self.assertRaises(StoreError):
            await self.cache.get_plugin_catalog()

        self.assertIs(self.cache.peek(CACHE_KEY_PLUGINS), first)
        self.assertTrue(self.cache.is_expired(CACHE_KEY_PLUGINS))
        self.store.fail_reads = False
        recovered = await self.cache.get_plugin_catalog()
        self.assertEqual([p.name for p in recovered], [p.name for p in first])

    async def test_group_refresh_loads_every_group_in_one_read(self):
        self.store.insert_group(NewGroup(name="a", external_id=100))
        self.store.insert_group(NewGroup(name="b", external_id=200))

        a = await self.cache.get_group(100)
        b = await self.cache.get_group(200)

        self.assertEqual(a.name, "a")
        self.assertEqual(b.name, "b")
        self.assertEqual(self.store.group_reads, 1)
        self.assertEqual(sorted(self.cache.peek(CACHE_KEY_GROUPS)), [100, 200])

    async def test_missing_group_returns_none_after_refresh(self):
        self.assertIsNone(await self.cache.get_group(404))
        self.assertEqual(self.store.group_reads, 1)
        self.assertFalse(self.cache.is_expired(CACHE_KEY_GROUPS))

    async def test_group_timer_is_independent_of_plugin_timer(self):
        self.store.insert_group(NewGroup(name="a", external_id=100))
        await self.cache.get_plugin_catalog()
        self.clock.now += 5
        await self.cache.get_group(100)
        self.clock.now += 5

        self.assertTrue(self.cache.is_expired(CACHE_KEY_PLUGINS))
        self.assertFalse(self.cache.is_expired(CACHE_KEY_GROUPS))

    async def test_internal_plugin_ids_ignore_cache_and_enabled_flag(self):
        await self.cache.get_plugin_catalog()
        help_plugin = self.store.find_plugin_by_name("help")
        self.store.update_plugin(help_plugin.plugin_id, {"enabled": False})

        ids = await self.cache.list_internal_plugin_ids()

        self.assertEqual(ids, [help_plugin.plugin_id])

    async def test_failed_group_refresh_keeps_previous_map(self):
        self.store.insert_group(NewGroup(name="a", external_id=100))
        await self.cache.get_group(100)
        before = self.cache.peek(CACHE_KEY_GROUPS)
        self.clock.now += 15
        self.store.fail_reads = True

        with self.assertRaises(StoreError):
            await self.cache.get_group(100)

        self.assertIs(self.cache.peek(CACHE_KEY_GROUPS), before)
        self.assertTrue(self.cache.is_expired(CACHE_KEY_GROUPS))
        self.store.fail_reads = False
        recovered = await self.cache.get_group(100)
        self.assertEqual(recovered.name, "a")

    def test_default_ttl_comes_from_config(self):
        cache = RegistryCache(self.store, self.tracker)
        self.assertEqual(cache.ttl_sec, DEFAULT_CACHE_TTL_SEC)
