"""
Storage Backend Module

Provides the abstract repository interface injected into every back office
component, and implementations for in-memory (testing), SQLite (single node)
and PostgreSQL (production). Records are JSON documents keyed by
auto-increment integer ids; monetary values are stored as Decimal strings.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union
from decimal import Decimal
from datetime import datetime, timezone
import copy
import sqlite3
import json
import logging
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager


logger = logging.getLogger(__name__)

SEQUENCES_TABLE = "_sequences"


def _copy(record: Dict[str, Any]) -> Dict[str, Any]:
    return json.loads(json.dumps(record, default=str))


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: int
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        result['created_at'] = self.created_at.isoformat()
        result['updated_at'] = self.updated_at.isoformat()
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
        return result


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: int, data: Dict[str, Any]) -> None:
        """Insert or replace a record"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: int) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table in id order"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: int) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: int) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records whose fields equal every filter value"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def next_id(self, table: str) -> int:
        """Allocate the next auto-increment id for a table; ids are never reused"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def load_for_update(self, table: str, record_id: int) -> Optional[Dict[str, Any]]:
        """
        Load a record and lock it until the surrounding transaction ends.
        Backends that serialize whole transactions get this for free.
        """
        return self.load(table, record_id)

    def _begin(self) -> None:
        """Start a database transaction (default no-op)"""
        pass

    def _commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def _rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations; nested blocks join the outer one"""
        self._begin()
        try:
            yield
        except BaseException:
            self._rollback()
            raise
        self._commit()


class InMemoryStorage(StorageInterface):
    """
    In-memory storage implementation for testing.

    A transaction holds the storage lock for its whole duration and snapshots
    the data on entry; rollback restores the snapshot.
    """

    def __init__(self):
        self._data: Dict[str, Dict[int, Dict[str, Any]]] = {}
        self._sequences: Dict[str, int] = {}
        self._lock = threading.RLock()
        self._depth = 0
        self._snapshot = None

    def _ensure_table(self, table: str) -> None:
        if table not in self._data:
            self._data[table] = {}

    def save(self, table: str, record_id: int, data: Dict[str, Any]) -> None:
        with self._lock:
            self._ensure_table(table)
            # Round-trip through JSON so stored rows match what SQL backends return
            self._data[table][int(record_id)] = _copy(data)

    def load(self, table: str, record_id: int) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(int(record_id))
            return _copy(record) if record is not None else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            return [_copy(self._data[table][key]) for key in sorted(self._data[table])]

    def delete(self, table: str, record_id: int) -> bool:
        with self._lock:
            self._ensure_table(table)
            return self._data[table].pop(int(record_id), None) is not None

    def exists(self, table: str, record_id: int) -> bool:
        with self._lock:
            self._ensure_table(table)
            return int(record_id) in self._data[table]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [record for record in self.load_all(table)
                if all(key in record and record[key] == value for key, value in filters.items())]

    def count(self, table: str) -> int:
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])

    def next_id(self, table: str) -> int:
        with self._lock:
            self._sequences[table] = self._sequences.get(table, 0) + 1
            return self._sequences[table]

    def _begin(self) -> None:
        self._lock.acquire()
        try:
            if self._depth == 0:
                self._snapshot = (copy.deepcopy(self._data), dict(self._sequences))
        except Exception:
            self._lock.release()
            raise
        self._depth += 1

    def _commit(self) -> None:
        self._depth -= 1
        if self._depth == 0:
            self._snapshot = None
        self._lock.release()

    def _rollback(self) -> None:
        self._depth -= 1
        if self._depth == 0 and self._snapshot is not None:
            self._data, self._sequences = self._snapshot
            self._snapshot = None
        self._lock.release()

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """
    SQLite storage for a single node.

    The connection runs in autocommit mode; ``atomic`` opens the only
    explicit transaction with BEGIN IMMEDIATE so writers are serialized.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:", timeout: float = 5.0):
        self.db_path = str(db_path)
        # timeout: seconds to wait for another connection's write lock
        self._connection = sqlite3.connect(self.db_path, timeout=timeout,
                                           check_same_thread=False, isolation_level=None)
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        self._tables = set()

        with self._lock:
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
            self._connection.execute(
                f"CREATE TABLE IF NOT EXISTS {SEQUENCES_TABLE} (name TEXT PRIMARY KEY, value INTEGER NOT NULL)"
            )

    def _ensure_table(self, table: str) -> None:
        if table in self._tables:
            return
        with self._lock:
            self._connection.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id INTEGER PRIMARY KEY,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            self._tables.add(table)

    def _query(self, table: str, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._lock:
            self._ensure_table(table)
            return self._connection.execute(sql, params)

    def save(self, table: str, record_id: int, data: Dict[str, Any]) -> None:
        now = datetime.now(timezone.utc).isoformat()
        # Keep the first created_at when a row is replaced
        self._query(table, f"""
            INSERT INTO {table} (id, data, created_at, updated_at) VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at
        """, (int(record_id), json.dumps(data, default=str), now, now))

    def load(self, table: str, record_id: int) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._query(table, f"SELECT data FROM {table} WHERE id = ?", (int(record_id),)).fetchone()
        return json.loads(row['data']) if row else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._query(table, f"SELECT data FROM {table} ORDER BY id").fetchall()
        return [json.loads(row['data']) for row in rows]

    def delete(self, table: str, record_id: int) -> bool:
        with self._lock:
            return self._query(table, f"DELETE FROM {table} WHERE id = ?", (int(record_id),)).rowcount > 0

    def exists(self, table: str, record_id: int) -> bool:
        with self._lock:
            row = self._query(table, f"SELECT 1 FROM {table} WHERE id = ?", (int(record_id),)).fetchone()
        return row is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Filter in Python; rows are JSON documents"""
        return [record for record in self.load_all(table)
                if all(key in record and record[key] == value for key, value in filters.items())]

    def count(self, table: str) -> int:
        with self._lock:
            return self._query(table, f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    def next_id(self, table: str) -> int:
        with self._lock:
            self._connection.execute(f"""
                INSERT INTO {SEQUENCES_TABLE} (name, value) VALUES (?, 1)
                ON CONFLICT(name) DO UPDATE SET value = value + 1
            """, (table,))
            row = self._connection.execute(
                f"SELECT value FROM {SEQUENCES_TABLE} WHERE name = ?", (table,)
            ).fetchone()
            return row['value']

    def _begin(self) -> None:
        self._lock.acquire()
        try:
            if self._depth == 0:
                self._connection.execute("BEGIN IMMEDIATE")
        except Exception:
            # e.g. database is locked by another connection past the busy timeout
            self._lock.release()
            raise
        self._depth += 1

    def _commit(self) -> None:
        self._depth -= 1
        try:
            if self._depth == 0:
                try:
                    self._connection.execute("COMMIT")
                except Exception:
                    self._connection.execute("ROLLBACK")
                    self._tables.clear()
                    raise
        finally:
            self._lock.release()

    def _rollback(self) -> None:
        self._depth -= 1
        try:
            if self._depth == 0:
                self._connection.execute("ROLLBACK")
                # Tables created inside the rolled back transaction are gone
                self._tables.clear()
        finally:
            self._lock.release()

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


class PostgreSQLStorage(StorageInterface):
    """
    PostgreSQL storage with JSONB rows.

    ``load_for_update`` takes a row lock (SELECT ... FOR UPDATE) held until
    the surrounding ``atomic`` block commits or rolls back.
    """

    def __init__(self, connection_string: str, connection=None):
        """
        Args:
            connection_string: libpq URL
            connection: An already open DB-API connection whose cursors return
                dict rows; when omitted one is opened with psycopg2
        """
        self.connection_string = connection_string
        self._lock = threading.RLock()
        self._depth = 0
        self._tables = set()
        if connection is None:
            import psycopg2
            import psycopg2.extras
            connection = psycopg2.connect(connection_string, cursor_factory=psycopg2.extras.RealDictCursor)
        self._connection = connection
        self._connection.autocommit = False
        with self._lock:
            self._run(f"CREATE TABLE IF NOT EXISTS {SEQUENCES_TABLE} (name TEXT PRIMARY KEY, value BIGINT NOT NULL)")
            self._connection.commit()

    def _run(self, sql: str, params=None, fetch: Optional[str] = None):
        with self._connection.cursor() as cursor:
            cursor.execute(sql, params)
            if fetch == "one":
                return cursor.fetchone()
            if fetch == "all":
                return cursor.fetchall()
            return cursor.rowcount

    def _statement(self, table: Optional[str], sql: str, params=None, fetch: Optional[str] = None):
        """
        Run one statement; outside ``atomic`` it commits immediately, or rolls
        back on failure so the shared connection stays usable
        """
        with self._lock:
            try:
                if table is not None:
                    self._ensure_table(table)
                result = self._run(sql, params, fetch)
            except Exception:
                if self._depth == 0:
                    self._connection.rollback()
                    self._tables.clear()
                raise
            if self._depth == 0:
                self._connection.commit()
            return result

    def _ensure_table(self, table: str) -> None:
        if table in self._tables:
            return
        self._run(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id BIGINT PRIMARY KEY,
                data JSONB NOT NULL,
                created_at TIMESTAMPTZ DEFAULT NOW(),
                updated_at TIMESTAMPTZ DEFAULT NOW()
            )
        """)
        self._run(f"CREATE INDEX IF NOT EXISTS idx_{table}_data ON {table} USING gin(data)")
        self._tables.add(table)

    def save(self, table: str, record_id: int, data: Dict[str, Any]) -> None:
        now = datetime.now(timezone.utc)
        self._statement(table, f"""
            INSERT INTO {table} (id, data, created_at, updated_at) VALUES (%s, %s, %s, %s)
            ON CONFLICT (id) DO UPDATE SET data = EXCLUDED.data, updated_at = EXCLUDED.updated_at
        """, (int(record_id), json.dumps(data, default=str), now, now))

    def load(self, table: str, record_id: int) -> Optional[Dict[str, Any]]:
        row = self._statement(table, f"SELECT data FROM {table} WHERE id = %s", (int(record_id),), fetch="one")
        return dict(row['data']) if row else None

    def load_for_update(self, table: str, record_id: int) -> Optional[Dict[str, Any]]:
        row = self._statement(table, f"SELECT data FROM {table} WHERE id = %s FOR UPDATE",
                              (int(record_id),), fetch="one")
        return dict(row['data']) if row else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        rows = self._statement(table, f"SELECT data FROM {table} ORDER BY id", fetch="all")
        return [dict(row['data']) for row in rows]

    def delete(self, table: str, record_id: int) -> bool:
        return self._statement(table, f"DELETE FROM {table} WHERE id = %s", (int(record_id),)) > 0

    def exists(self, table: str, record_id: int) -> bool:
        return self.load(table, record_id) is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """JSONB containment match on every filter"""
        if not filters:
            return self.load_all(table)
        rows = self._statement(table, f"SELECT data FROM {table} WHERE data @> %s::jsonb ORDER BY id",
                               (json.dumps(filters, default=str),), fetch="all")
        return [dict(row['data']) for row in rows]

    def count(self, table: str) -> int:
        row = self._statement(table, f"SELECT COUNT(*) AS total FROM {table}", fetch="one")
        return row['total']

    def next_id(self, table: str) -> int:
        row = self._statement(None, f"""
            INSERT INTO {SEQUENCES_TABLE} (name, value) VALUES (%s, 1)
            ON CONFLICT (name) DO UPDATE SET value = {SEQUENCES_TABLE}.value + 1
            RETURNING value
        """, (table,), fetch="one")
        return int(row['value'])

    def _begin(self) -> None:
        # The server opens the transaction on the first statement
        self._lock.acquire()
        self._depth += 1

    def _commit(self) -> None:
        self._depth -= 1
        try:
            if self._depth == 0:
                try:
                    self._connection.commit()
                except Exception:
                    self._connection.rollback()
                    self._tables.clear()
                    raise
        finally:
            self._lock.release()

    def _rollback(self) -> None:
        self._depth -= 1
        try:
            if self._depth == 0:
                self._connection.rollback()
                self._tables.clear()
        finally:
            self._lock.release()

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Build a storage backend from a database URL.

    Supported forms: ``memory://``, ``sqlite://`` (in-memory SQLite),
    ``sqlite:///path/to/file.db`` and ``postgresql://...``.
    """
    if database_url.startswith("memory://"):
        storage = InMemoryStorage()
    elif database_url.startswith("sqlite://"):
        path = database_url[len("sqlite:///"):] if database_url.startswith("sqlite:///") else ""
        storage = SQLiteStorage(path or ":memory:")
    elif database_url.startswith(("postgresql://", "postgres://")):
        storage = PostgreSQLStorage(database_url)
    else:
        raise ValueError(f"Unsupported database URL: {database_url}")

    logger.info("Using %s backend", type(storage).__name__)
    return storage
