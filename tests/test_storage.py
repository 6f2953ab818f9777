"""
Tests for storage backends and transaction support
"""

import pytest
import sqlite3
import tempfile
import threading
import os
from datetime import datetime, timezone

from loan_backoffice.storage import (
    InMemoryStorage, SQLiteStorage, PostgreSQLStorage, StorageRecord, create_storage
)


def sample(record_id, **fields):
    data = {"id": record_id, "name": f"Record {record_id}", "amount": "100.50"}
    data.update(fields)
    return data


class StorageContract:
    """Behaviour every backend must share"""

    def make_storage(self):
        raise NotImplementedError

    def setup_method(self):
        self.storage = self.make_storage()

    def teardown_method(self):
        self.storage.close()

    def test_save_and_load(self):
        self.storage.save("things", 1, sample(1))
        assert self.storage.load("things", 1) == sample(1)
        assert self.storage.load("things", 2) is None

    def test_save_replaces(self):
        self.storage.save("things", 1, sample(1))
        self.storage.save("things", 1, sample(1, name="Renamed"))
        assert self.storage.load("things", 1)["name"] == "Renamed"
        assert self.storage.count("things") == 1

    def test_exists_delete_count(self):
        self.storage.save("things", 1, sample(1))
        self.storage.save("things", 2, sample(2))

        assert self.storage.exists("things", 1)
        assert self.storage.count("things") == 2
        assert self.storage.delete("things", 1)
        assert not self.storage.delete("things", 1)
        assert not self.storage.exists("things", 1)

    def test_find(self):
        self.storage.save("things", 1, sample(1, related_id=7))
        self.storage.save("things", 2, sample(2, related_id=8))
        self.storage.save("things", 3, sample(3, related_id=7))

        found = self.storage.find("things", {"related_id": 7})
        assert sorted(r["id"] for r in found) == [1, 3]
        assert len(self.storage.find("things", {})) == 3

    def test_next_id_is_per_table_and_increasing(self):
        assert self.storage.next_id("a") == 1
        assert self.storage.next_id("a") == 2
        assert self.storage.next_id("b") == 1

    def test_ids_not_reused_after_delete(self):
        first = self.storage.next_id("things")
        self.storage.save("things", first, sample(first))
        self.storage.delete("things", first)
        assert self.storage.next_id("things") == first + 1

    def test_atomic_commits(self):
        with self.storage.atomic():
            self.storage.save("things", 1, sample(1))
            self.storage.save("other", 1, sample(1))
        assert self.storage.exists("things", 1)
        assert self.storage.exists("other", 1)

    def test_atomic_rolls_back_every_write(self):
        self.storage.save("things", 1, sample(1))

        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.storage.save("things", 1, sample(1, name="Changed"))
                self.storage.save("things", 2, sample(2))
                self.storage.delete("things", 1)
                raise RuntimeError("boom")

        assert self.storage.load("things", 1) == sample(1)
        assert not self.storage.exists("things", 2)

    def test_nested_atomic_joins_outer(self):
        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.storage.save("things", 1, sample(1))
                with self.storage.atomic():
                    self.storage.save("things", 2, sample(2))
                raise RuntimeError("outer fails after inner commit")

        assert self.storage.count("things") == 0

    def test_load_for_update(self):
        self.storage.save("things", 1, sample(1))
        with self.storage.atomic():
            assert self.storage.load_for_update("things", 1) == sample(1)
            assert self.storage.load_for_update("things", 99) is None


class TestInMemoryStorage(StorageContract):

    def make_storage(self):
        return InMemoryStorage()

    def test_returned_records_are_copies(self):
        self.storage.save("things", 1, sample(1))
        loaded = self.storage.load("things", 1)
        loaded["name"] = "mutated"
        assert self.storage.load("things", 1)["name"] == "Record 1"


class TestSQLiteStorage(StorageContract):

    def make_storage(self):
        return SQLiteStorage(":memory:")


class TestSQLiteFileStorage:
    """Data survives reopening the database file"""

    def test_persistence(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "loans.db")

            storage = SQLiteStorage(path)
            record_id = storage.next_id("things")
            storage.save("things", record_id, sample(record_id))
            storage.close()

            reopened = SQLiteStorage(path)
            try:
                assert reopened.load("things", record_id) == sample(record_id)
                assert reopened.next_id("things") == record_id + 1
            finally:
                reopened.close()


class TestSQLiteSharedFile:
    """Two connections on one database file"""

    def setup_method(self):
        self.tmp = tempfile.TemporaryDirectory()
        path = os.path.join(self.tmp.name, "loans.db")
        self.holder = SQLiteStorage(path)
        self.blocked = SQLiteStorage(path, timeout=0.1)

    def teardown_method(self):
        self.holder.close()
        self.blocked.close()
        self.tmp.cleanup()

    def test_locked_database_does_not_wedge_other_threads(self):
        self.blocked.save("things", 1, sample(1))

        with self.holder.atomic():
            self.holder.save("things", 2, sample(2))

            with pytest.raises(sqlite3.OperationalError, match="locked"):
                with self.blocked.atomic():
                    self.blocked.save("things", 3, sample(3))

            counts = []
            reader = threading.Thread(target=lambda: counts.append(self.blocked.count("things")))
            reader.start()
            reader.join(timeout=2)
            assert not reader.is_alive()
            assert counts == [1]

        with self.blocked.atomic():
            self.blocked.save("things", 3, sample(3))
        assert self.blocked.count("things") == 3


class FakeCursor:
    """DB-API cursor that records statements and can fail the next one"""

    rowcount = 0

    def __init__(self, connection):
        self.connection = connection

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def execute(self, sql, params=None):
        self.connection.statements.append(" ".join(sql.split()))
        if self.connection.fail_next:
            self.connection.fail_next = False
            raise RuntimeError("relation does not exist")

    def fetchone(self):
        return {"total": 0, "value": 1, "data": {}}

    def fetchall(self):
        return []


class FakeConnection:
    """Stands in for a psycopg2 connection"""

    def __init__(self):
        self.statements = []
        self.commits = 0
        self.rollbacks = 0
        self.fail_next = False
        self.autocommit = True

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        pass


class TestPostgreSQLStatements:
    """Transaction handling of the PostgreSQL backend around one connection"""

    def setup_method(self):
        self.connection = FakeConnection()
        self.storage = PostgreSQLStorage("postgresql://loans", connection=self.connection)

    def test_init_creates_sequences_table(self):
        assert self.connection.autocommit is False
        assert self.connection.statements[0].startswith("CREATE TABLE IF NOT EXISTS _sequences")
        assert self.connection.commits == 1

    def test_failed_statement_rolls_back_outside_transaction(self):
        self.connection.fail_next = True
        with pytest.raises(RuntimeError):
            self.storage.count("things")
        assert self.connection.rollbacks == 1

        assert self.storage.count("things") == 0
        creates = [s for s in self.connection.statements if s.startswith("CREATE TABLE IF NOT EXISTS things")]
        assert len(creates) == 2

    def test_failed_statement_inside_transaction_rolls_back_once(self):
        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.connection.fail_next = True
                self.storage.count("things")
        assert self.connection.rollbacks == 1
        assert self.storage.count("things") == 0

    def test_statements_inside_transaction_commit_once(self):
        commits = self.connection.commits
        with self.storage.atomic():
            self.storage.save("things", 1, sample(1))
            self.storage.load_for_update("things", 1)
        assert self.connection.commits == commits + 1
        assert any(s.endswith("FOR UPDATE") for s in self.connection.statements)


class TestCreateStorage:
    """Test building storage from a database URL"""

    def test_memory(self):
        assert isinstance(create_storage("memory://"), InMemoryStorage)

    def test_sqlite_in_memory(self):
        storage = create_storage("sqlite://")
        assert isinstance(storage, SQLiteStorage)
        assert storage.db_path == ":memory:"
        storage.close()

    def test_sqlite_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            storage = create_storage(f"sqlite:///{tmp}/loans.db")
            assert storage.db_path == f"{tmp}/loans.db"
            storage.close()

    def test_unsupported(self):
        with pytest.raises(ValueError, match="Unsupported database URL"):
            create_storage("mongodb://localhost")


class TestStorageRecord:

    def test_to_dict_serializes_timestamps(self):
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        record = StorageRecord(id=1, created_at=now, updated_at=now)
        assert record.to_dict() == {
            "id": 1,
            "created_at": "2024-01-01T00:00:00+00:00",
            "updated_at": "2024-01-01T00:00:00+00:00",
        }
