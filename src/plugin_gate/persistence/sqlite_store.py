import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from plugin_gate.domain.registry import (
    PLUGIN_DEFAULT_THRESHOLD,
    GroupRecord,
    NewGroup,
    PluginRecord,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION_V1 = "v1"

# Record field -> column. List-valued fields are stored comma-delimited.
_PLUGIN_COLUMNS: Dict[str, str] = {
    "name": "name",
    "enabled": "enabled",
    "internal": "internal",
    "threshold": "threshold",
    "white_list_users": "white_list_users",
    "black_list_users": "black_list_users",
}
_GROUP_COLUMNS: Dict[str, str] = {
    "name": "name",
    "external_id": "group_id",
    "admins": "admins",
    "expired_at": "expired_at",
    "plugins": "plugins",
}
_LIST_FIELDS = {"white_list_users", "black_list_users", "admins", "plugins"}
_BOOL_FIELDS = {"enabled", "internal"}


class StoreError(Exception):
    """Raised when a persistence operation fails (I/O or constraint violation)."""


def encode_id_list(values: Optional[Iterable[int]]) -> str:
    return ",".join(str(int(v)) for v in (values or []))


def decode_id_list(raw: Any) -> List[int]:
    if raw is None:
        return []
    ids: List[int] = []
    for part in str(raw).split(","):
        part = part.strip()
        if not part:
            continue
        try:
            ids.append(int(part))
        except ValueError:
            continue
    return ids


class SqliteRegistryStore:
    """Plugin/group records in SQLite.

    No caching and no business rules: callers get typed records with list
    fields already decoded, and hand typed values back on write.
    """

    def __init__(self, db_path: Path):
        self._db_path = Path(db_path).expanduser().resolve()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path))
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._connect()
            try:
                with conn:
                    yield conn
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc

    def _init_schema(self) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS plugins (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT UNIQUE,
                    enabled INTEGER,
                    white_list_users TEXT,
                    black_list_users TEXT,
                    internal INTEGER DEFAULT 0,
                    threshold INTEGER DEFAULT 2
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS "groups" (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT,
                    group_id BIGINT UNIQUE,
                    admins TEXT,
                    expired_at TEXT,
                    plugins TEXT
                )
                """
            )
            version_exists = conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'version'"
            ).fetchone()
            if not version_exists:
                conn.execute(
                    """
                    CREATE TABLE version (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        version TEXT
                    )
                    """
                )
                conn.execute("INSERT INTO version (version) VALUES (?)", (SCHEMA_VERSION_V1,))
                logger.info("Created registry schema %s at %s", SCHEMA_VERSION_V1, self._db_path)
            # TODO: compare the stored version with SCHEMA_VERSION_V1 once a v2 layout exists.

    def schema_version(self) -> str:
        with self._transaction() as conn:
            row = conn.execute("SELECT version FROM version ORDER BY id ASC LIMIT 1").fetchone()
        return str(row["version"]) if row else ""

    # ------------------------------------------------------------------
    # Plugins
    # ------------------------------------------------------------------

    def list_plugins(self) -> List[PluginRecord]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM plugins ORDER BY id ASC").fetchall()
        return [_row_to_plugin(r) for r in rows]

    def get_plugin(self, plugin_id: int) -> Optional[PluginRecord]:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM plugins WHERE id = ?", (int(plugin_id),)).fetchone()
        if not row:
            return None
        return _row_to_plugin(row)

    def find_plugin_by_name(self, name: str) -> Optional[PluginRecord]:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM plugins WHERE name = ?", (name,)).fetchone()
        if not row:
            return None
        return _row_to_plugin(row)

    def insert_plugin(
        self,
        name: str,
        enabled: bool = True,
        internal: bool = False,
        threshold: int = PLUGIN_DEFAULT_THRESHOLD,
        white_list_users: Optional[List[int]] = None,
        black_list_users: Optional[List[int]] = None,
    ) -> int:
        with self._transaction() as conn:
            cur = conn.execute(
                """
                INSERT INTO plugins (name, enabled, white_list_users, black_list_users, internal, threshold)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    name,
                    1 if enabled else 0,
                    encode_id_list(white_list_users),
                    encode_id_list(black_list_users),
                    1 if internal else 0,
                    int(threshold),
                ),
            )
            return int(cur.lastrowid)

    def ensure_plugin(self, name: str, internal: bool = False) -> Tuple[int, bool]:
        """Insert an enabled plugin row unless ``name`` exists. Returns (id, created).

        An existing row is left untouched, even when callers race on ``name``.
        """
        with self._transaction() as conn:
            cur = conn.execute(
                """
                INSERT INTO plugins (name, enabled, white_list_users, black_list_users, internal, threshold)
                VALUES (?, 1, '', '', ?, ?)
                ON CONFLICT(name) DO NOTHING
                """,
                (name, 1 if internal else 0, PLUGIN_DEFAULT_THRESHOLD),
            )
            created = cur.rowcount == 1
            row = conn.execute("SELECT id FROM plugins WHERE name = ?", (name,)).fetchone()
        return int(row["id"]), created

    def update_plugin(self, plugin_id: int, fields: Dict[str, Any]) -> int:
        return self._update("plugins", _PLUGIN_COLUMNS, plugin_id, fields)

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    def list_groups(self) -> List[GroupRecord]:
        with self._transaction() as conn:
            rows = conn.execute('SELECT * FROM "groups" ORDER BY id ASC').fetchall()
        return [_row_to_group(r) for r in rows]

    def get_group(self, group_id: int) -> Optional[GroupRecord]:
        with self._transaction() as conn:
            row = conn.execute('SELECT * FROM "groups" WHERE id = ?', (int(group_id),)).fetchone()
        if not row:
            return None
        return _row_to_group(row)

    def find_group_by_external_id(self, external_id: int) -> Optional[GroupRecord]:
        with self._transaction() as conn:
            row = conn.execute('SELECT * FROM "groups" WHERE group_id = ?', (int(external_id),)).fetchone()
        if not row:
            return None
        return _row_to_group(row)

    def insert_group(self, group: NewGroup) -> int:
        with self._transaction() as conn:
            cur = conn.execute(
                """
                INSERT INTO "groups" (name, group_id, admins, expired_at, plugins)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    group.name,
                    int(group.external_id),
                    encode_id_list(group.admins),
                    group.expired_at,
                    encode_id_list(group.plugins),
                ),
            )
            return int(cur.lastrowid)

    def update_group(self, group_id: int, fields: Dict[str, Any]) -> int:
        return self._update("groups", _GROUP_COLUMNS, group_id, fields)

    def delete_group(self, group_id: int) -> int:
        with self._transaction() as conn:
            cur = conn.execute('DELETE FROM "groups" WHERE id = ?', (int(group_id),))
            return int(cur.rowcount)

    def _update(self, table: str, columns: Dict[str, str], row_id: int, fields: Dict[str, Any]) -> int:
        assignments: List[str] = []
        params: List[Any] = []
        for key, value in fields.items():
            column = columns.get(key)
            if column is None:
                raise ValueError(f"Unknown {table} field: {key}")
            assignments.append(f"{column} = ?")
            params.append(_to_column_value(key, value))
        if not assignments:
            return 0
        params.append(int(row_id))
        with self._transaction() as conn:
            cur = conn.execute(
                f"UPDATE \"{table}\" SET {', '.join(assignments)} WHERE id = ?",
                tuple(params),
            )
            return int(cur.rowcount)


def _to_column_value(key: str, value: Any) -> Any:
    if key in _LIST_FIELDS:
        return encode_id_list(value)
    if key in _BOOL_FIELDS:
        return 1 if value else 0
    return value


def _row_to_plugin(row: sqlite3.Row) -> PluginRecord:
    threshold = row["threshold"]
    return PluginRecord(
        plugin_id=int(row["id"]),
        name=str(row["name"] or ""),
        enabled=bool(row["enabled"]),
        internal=bool(row["internal"]),
        threshold=int(threshold) if threshold is not None else PLUGIN_DEFAULT_THRESHOLD,
        white_list_users=decode_id_list(row["white_list_users"]),
        black_list_users=decode_id_list(row["black_list_users"]),
    )


def _row_to_group(row: sqlite3.Row) -> GroupRecord:
    return GroupRecord(
        group_id=int(row["id"]),
        name=str(row["name"] or ""),
        external_id=int(row["group_id"]),
        admins=decode_id_list(row["admins"]),
        expired_at=str(row["expired_at"] or ""),
        plugins=decode_id_list(row["plugins"]),
    )
