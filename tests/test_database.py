"""Tests for database initialization."""
import pytest

from recall_db.errors import MigrationError
from recall_db.migrations import MIGRATIONS, MigrationStep
from recall_db.services.database import Database

@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary database for testing."""
    db = Database(tmp_path / "test.db", embedding_dimension=2)
    yield db
    db.close()

def test_database_initialization(temp_db):
    """Test that database initializes with the application schema."""
    assert temp_db.schema_version == MIGRATIONS[-1].version
    with temp_db.session.read_connection() as conn:
        for table in ["notes", "sync_queue", "schema_version"]:
            assert conn.table_exists(table), f"Table {table} does not exist"

def test_notes_table_structure(temp_db):
    """Test notes table has the columns the record store expects."""
    with temp_db.session.read_connection() as conn:
        columns = set(conn.column_names("notes"))
    expected_columns = set(temp_db.records.spec("notes").columns)
    assert expected_columns.issubset(columns), f"Missing columns in notes table: {expected_columns - columns}"

def test_reopen_does_not_reapply(tmp_path):
    path = tmp_path / "test.db"
    with Database(path) as db:
        key = db.records.insert("notes", {"title": "persisted"})
    with Database(path) as db:
        assert db.records.get("notes", key)["title"] == "persisted"
        assert [row["version"] for row in db.migrations.history()] == [m.version for m in MIGRATIONS]

def test_failed_migration_blocks_startup(tmp_path):
    """Test that a failing migration raises and leaves no open session."""
    def broken(txn):
        txn.execute("CREATE TABLE notes_v2 (id INTEGER PRIMARY KEY)")
        txn.execute("THIS IS NOT SQL")

    steps = MIGRATIONS + [MigrationStep(99, "Broken step", broken)]
    with pytest.raises(MigrationError) as exc_info:
        Database(tmp_path / "test.db", migrations=steps)
    assert exc_info.value.version == 99

    with Database(tmp_path / "test.db") as db:
        assert db.migrations.current_version() == MIGRATIONS[-1].version
        with db.session.read_connection() as conn:
            assert not conn.table_exists("notes_v2")

def test_in_memory_database():
    with Database(":memory:", embedding_dimension=2) as db:
        key = db.notes_index.insert_with_embedding({"title": "m"}, [1.0, 0.0])
        assert db.notes_index.search([1.0, 0.0], 1) == [(key, pytest.approx(1.0))]
