import sqlite3
import tempfile
import unittest
from pathlib import Path

from plugin_gate.domain.registry import NewGroup
from plugin_gate.persistence.sqlite_store import (
    SqliteRegistryStore,
    StoreError,
    decode_id_list,
    encode_id_list,
)


class TestIdListCodec(unittest.TestCase):
    def test_encode_then_decode_keeps_order(self):
        values = [42, 7, 1000000007, 7]
        self.assertEqual(decode_id_list(encode_id_list(values)), values)

    def test_empty_values_decode_to_empty_list(self):
        self.assertEqual(decode_id_list(""), [])
        self.assertEqual(decode_id_list(None), [])
        self.assertEqual(encode_id_list([]), "")
        self.assertEqual(encode_id_list(None), "")

    def test_decode_skips_blank_and_invalid_parts(self):
        self.assertEqual(decode_id_list(" 1, ,x,3,"), [1, 3])


class TestSqliteRegistryStore(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.db_path = Path(self.tmp.name) / "nested" / "registry.db"
        self.store = SqliteRegistryStore(db_path=self.db_path)

    def tearDown(self):
        self.tmp.cleanup()

    def test_schema_version_is_seeded_once(self):
        self.assertEqual(self.store.schema_version(), "v1")
        SqliteRegistryStore(db_path=self.db_path)
        conn = sqlite3.connect(str(self.db_path))
        try:
            count = conn.execute("SELECT COUNT(*) FROM version").fetchone()[0]
        finally:
            conn.close()
        self.assertEqual(count, 1)

    def test_plugin_insert_find_and_update(self):
        plugin_id = self.store.insert_plugin("weather", internal=True)
        plugin = self.store.find_plugin_by_name("weather")
        self.assertIsNotNone(plugin)
        self.assertEqual(plugin.plugin_id, plugin_id)
        self.assertTrue(plugin.enabled)
        self.assertTrue(plugin.internal)
        self.assertEqual(plugin.threshold, 2)
        self.assertEqual(plugin.white_list_users, [])
        self.assertEqual(plugin.black_list_users, [])

        changed = self.store.update_plugin(
            plugin_id,
            {"enabled": False, "white_list_users": [5, 3], "black_list_users": []},
        )
        self.assertEqual(changed, 1)
        updated = self.store.get_plugin(plugin_id)
        self.assertFalse(updated.enabled)
        self.assertEqual(updated.white_list_users, [5, 3])
        self.assertEqual(updated.black_list_users, [])
        self.assertIsNone(self.store.find_plugin_by_name("missing"))
        self.assertIsNone(self.store.get_plugin(999))

    def test_duplicate_plugin_name_raises_store_error(self):
        self.store.insert_plugin("echo")
        with self.assertRaises(StoreError):
            self.store.insert_plugin("echo")
        self.assertEqual(len(self.store.list_plugins()), 1)

    def test_ensure_plugin_creates_once_and_keeps_existing_row(self):
        plugin_id, created = self.store.ensure_plugin("echo", internal=True)
        self.assertTrue(created)
        self.store.update_plugin(plugin_id, {"enabled": False})

        again_id, created_again = self.store.ensure_plugin("echo")

        self.assertEqual(again_id, plugin_id)
        self.assertFalse(created_again)
        plugin = self.store.get_plugin(plugin_id)
        self.assertFalse(plugin.enabled)
        self.assertTrue(plugin.internal)
        self.assertEqual(plugin.white_list_users, [])
        self.assertEqual(len(self.store.list_plugins()), 1)

    def test_unknown_update_field_is_rejected(self):
        plugin_id = self.store.insert_plugin("echo")
        with self.assertRaises(ValueError):
            self.store.update_plugin(plugin_id, {"colour": "red"})

    def test_group_round_trip_and_delete(self):
        group_id = self.store.insert_group(
            NewGroup(name="Room", external_id=-1001, admins=[9, 8], expired_at="2030-01-01", plugins=[2, 1])
        )
        group = self.store.find_group_by_external_id(-1001)
        self.assertEqual(group.group_id, group_id)
        self.assertEqual(group.admins, [9, 8])
        self.assertEqual(group.plugins, [2, 1])
        self.assertEqual(group.expired_at, "2030-01-01")

        self.store.update_group(group_id, {"admins": [], "external_id": -1002})
        moved = self.store.get_group(group_id)
        self.assertEqual(moved.admins, [])
        self.assertEqual(moved.external_id, -1002)

        self.assertEqual(self.store.delete_group(group_id), 1)
        self.assertEqual(self.store.delete_group(group_id), 0)
        self.assertEqual(self.store.list_groups(), [])

    def test_duplicate_external_id_raises_store_error(self):
        self.store.insert_group(NewGroup(name="a", external_id=1))
        with self.assertRaises(StoreError):
            self.store.insert_group(NewGroup(name="b", external_id=1))
