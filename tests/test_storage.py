"""Tests for the storage session."""
import sqlite3

import pytest

from recall_db.errors import ConstraintError, StoreError, ValidationError
from recall_db.services.storage import StorageSession, translate_errors

@pytest.fixture
def session(tmp_path):
    """Open a session with one scratch table."""
    session = StorageSession(tmp_path / "nested" / "dir" / "test.db").open()
    with session.write_transaction() as txn:
        txn.execute("CREATE TABLE items (id INTEGER PRIMARY KEY, name TEXT UNIQUE)")
    yield session
    session.close()

def count(session):
    with session.read_connection() as conn:
        return conn.fetchone("SELECT COUNT(*) AS n FROM items")["n"]

def test_open_creates_directory_and_enables_pragmas(session):
    assert session.path.exists()
    with session.write_transaction() as txn:
        assert txn.fetchone("PRAGMA foreign_keys")["foreign_keys"] == 1
        assert txn.fetchone("PRAGMA journal_mode")["journal_mode"] == "wal"

def test_commit_and_rollback(session):
    with session.write_transaction() as txn:
        txn.execute("INSERT INTO items (name) VALUES (?)", ["a"])
    assert count(session) == 1

    with pytest.raises(KeyError):
        with session.write_transaction() as txn:
            txn.execute("INSERT INTO items (name) VALUES (?)", ["b"])
            raise KeyError("abort")
    assert count(session) == 1
    assert not session.in_transaction

def test_nested_transaction_joins_outer(session):
    """Test that an inner scope's writes roll back with the outer scope."""
    with pytest.raises(RuntimeError):
        with session.write_transaction() as outer:
            with session.write_transaction() as inner:
                assert inner is outer
                inner.execute("INSERT INTO items (name) VALUES (?)", ["a"])
            assert count(session) == 1
            raise RuntimeError("abort")
    assert count(session) == 0

def test_reader_inside_transaction_sees_own_writes(session):
    with session.write_transaction() as txn:
        txn.execute("INSERT INTO items (name) VALUES (?)", ["a"])
        with session.read_connection() as conn:
            assert conn is txn

def test_constraint_errors_are_translated(session):
    with session.write_transaction() as txn:
        txn.execute("INSERT INTO items (name) VALUES (?)", ["a"])
    with pytest.raises(ConstraintError):
        with session.write_transaction() as txn:
            txn.execute("INSERT INTO items (name) VALUES (?)", ["a"])

def test_binding_errors_are_validation_errors(session):
    with pytest.raises(ValidationError):
        with session.write_transaction() as txn:
            txn.execute("INSERT INTO items (name) VALUES (?)", ["a", "b"])

def test_operational_errors_are_store_errors(session):
    with pytest.raises(StoreError):
        with session.read_connection() as conn:
            conn.execute("SELECT * FROM missing_table")

def test_translate_errors_mapping():
    with pytest.raises(ConstraintError):
        with translate_errors():
            raise sqlite3.IntegrityError("UNIQUE constraint failed")
    with pytest.raises(StoreError) as exc_info:
        with translate_errors():
            raise sqlite3.OperationalError("disk I/O error")
    assert isinstance(exc_info.value.__cause__, sqlite3.OperationalError)

def test_closed_session_raises(tmp_path):
    session = StorageSession(tmp_path / "closed.db").open()
    session.close()
    session.close()
    with pytest.raises(StoreError):
        with session.write_transaction():
            pass
    with pytest.raises(StoreError):
        with session.read_connection():
            pass

def test_column_helpers(session):
    with session.write_transaction() as txn:
        assert txn.table_exists("items")
        assert not txn.table_exists("missing")
        txn.add_column("items", "color", "TEXT")
        assert txn.column_names("items") == ["id", "name", "color"]
        with pytest.raises(ValidationError):
            txn.add_column("items", "bad name", "TEXT")
