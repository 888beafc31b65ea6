"""Database migrations for recall-db."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Sequence

from recall_db.errors import MigrationError
from recall_db.services.storage import StorageSession, Transaction

logger = logging.getLogger(__name__)

SCHEMA_VERSION_TABLE = """
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY,
        description TEXT,
        applied_at TEXT NOT NULL
    )
"""


@dataclass(frozen=True)
class MigrationStep:
    """One versioned, run-once schema change.

    ``action`` receives the open transaction and must not commit it; the
    manager commits the action together with the version record.
    """
    version: int
    description: str
    action: Callable[[Transaction], None]


def validate_steps(steps: Sequence[MigrationStep]) -> None:
    """Check that versions are positive and strictly ascending."""
    previous = 0
    for step in steps:
        if not isinstance(step.version, int) or isinstance(step.version, bool) or step.version < 1:
            raise MigrationError(f"Invalid migration version: {step.version!r}", version=step.version)
        if step.version <= previous:
            raise MigrationError(
                f"Migration {step.version} is out of order or duplicated (follows {previous})",
                version=step.version,
            )
        previous = step.version


class MigrationManager:
    """Owns the persisted schema version and applies pending steps."""

    def __init__(self, session: StorageSession):
        self.session = session

    def current_version(self) -> int:
        """Get current schema version from database (0 if never migrated)."""
        with self.session.read_connection() as conn:
            if not conn.table_exists("schema_version"):
                return 0
            row = conn.fetchone("SELECT MAX(version) AS version FROM schema_version")
        return row["version"] if row["version"] is not None else 0

    def history(self) -> List[Dict]:
        """Applied migrations, oldest first."""
        with self.session.read_connection() as conn:
            if not conn.table_exists("schema_version"):
                return []
            return conn.fetchall(
                "SELECT version, description, applied_at FROM schema_version ORDER BY version"
            )

    def apply_pending(self, steps: Sequence[MigrationStep]) -> int:
        """Run all pending migrations and return the resulting version.

        Each step runs in its own transaction together with its version
        record, so a failed step leaves the previous version in place.
        """
        steps = list(steps)
        validate_steps(steps)

        with self.session.write_transaction() as txn:
            txn.execute(SCHEMA_VERSION_TABLE)
        current_version = self.current_version()
        logger.info(f"Current database schema version: {current_version}")

        pending = [step for step in steps if step.version > current_version]
        if not pending:
            logger.info("Database schema is up to date")
            return current_version

        logger.info(f"Running {len(pending)} pending migration(s)...")

        for step in pending:
            logger.info(f"Running migration {step.version}: {step.description}")
            try:
                with self.session.write_transaction() as txn:
                    step.action(txn)
                    txn.execute(
                        "INSERT INTO schema_version (version, description, applied_at) VALUES (?, ?, ?)",
                        (step.version, step.description, datetime.now().isoformat()),
                    )
            except Exception as e:
                logger.error(f"Migration {step.version} failed: {e}", exc_info=True)
                raise MigrationError(
                    f"Migration {step.version} ({step.description}) failed: {e}",
                    version=step.version,
                ) from e
            current_version = step.version
            logger.info(f"Migration {step.version} completed successfully")

        logger.info("All migrations completed successfully")
        return current_version


def migration_001_create_notes(txn: Transaction):
    """Migration 001: Create the notes table."""
    txn.execute("""
        CREATE TABLE notes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            body TEXT NOT NULL DEFAULT '',
            created_at TEXT,
            updated_at TEXT,
            embedding BLOB
        )
    """)
    txn.execute("CREATE INDEX idx_notes_updated_at ON notes(updated_at)")


def migration_002_create_sync_queue(txn: Transaction):
    """Migration 002: Create the sync_queue table.

    record_key has no declared type so integer and text keys keep their type.
    """
    txn.execute("""
        CREATE TABLE sync_queue (
            table_name TEXT NOT NULL,
            record_key NOT NULL,
            operation TEXT NOT NULL CHECK (operation IN ('insert', 'update', 'delete')),
            revision INTEGER NOT NULL DEFAULT 1,
            marked_at TEXT NOT NULL,
            PRIMARY KEY (table_name, record_key)
        )
    """)
    txn.execute("CREATE INDEX idx_sync_queue_marked_at ON sync_queue(marked_at)")


def migration_003_add_location(txn: Transaction):
    """Migration 003: Add location column to notes."""
    txn.add_column("notes", "location", "TEXT")


def migration_004_add_remote_id(txn: Transaction):
    """Migration 004: Add remote_id column to notes.

    Holds the identifier assigned by the remote counterpart once a note has
    been synced; unique when present.
    """
    txn.add_column("notes", "remote_id", "TEXT")
    txn.execute("CREATE UNIQUE INDEX idx_notes_remote_id ON notes(remote_id)")


# List of all migrations in order
MIGRATIONS: List[MigrationStep] = [
    MigrationStep(1, "Create notes table", migration_001_create_notes),
    MigrationStep(2, "Create sync_queue table", migration_002_create_sync_queue),
    MigrationStep(3, "Add location to notes", migration_003_add_location),
    MigrationStep(4, "Add remote_id to notes", migration_004_add_remote_id),
]


def run_migrations(session: StorageSession) -> int:
    """Bring the application schema up to date. Raises MigrationError on failure."""
    return MigrationManager(session).apply_pending(MIGRATIONS)
