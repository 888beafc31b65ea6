"""Database service: wires the storage session, migrations and stores together.

Opening a ``Database`` runs pending migrations before anything else can touch
the schema. A ``MigrationError`` propagates out of the constructor, so a
process never runs against a half-migrated store.
"""
import logging
from pathlib import Path
from typing import Optional, Sequence, Union

from recall_db.migrations import MIGRATIONS, MigrationManager, MigrationStep
from recall_db.models.tables import NOTES, TableRegistry, default_registry
from recall_db.services.embedding_index import EmbeddingIndex
from recall_db.services.records import RecordStore
from recall_db.services.storage import StorageSession
from recall_db.services.sync_queue import SyncQueue

logger = logging.getLogger(__name__)


class Database:
    """The local store: record CRUD, embeddings and sync bookkeeping."""

    def __init__(
        self,
        path: Union[Path, str],
        embedding_dimension: int = 384,
        busy_timeout_ms: int = 5000,
        registry: Optional[TableRegistry] = None,
        migrations: Sequence[MigrationStep] = MIGRATIONS,
    ):
        """Open the database at ``path`` and bring its schema up to date.

        Args:
            path: Database file, or ":memory:"
            embedding_dimension: Vector length expected for notes
            busy_timeout_ms: How long to wait on a locked database
            registry: Tables known to the record store
            migrations: Ordered schema steps to apply
        """
        self.session = StorageSession(path, busy_timeout_ms=busy_timeout_ms).open()
        try:
            self.migrations = MigrationManager(self.session)
            self.schema_version = self.migrations.apply_pending(migrations)
        except Exception:
            self.session.close()
            raise

        self.sync_queue = SyncQueue(self.session)
        self.records = RecordStore(
            self.session,
            registry if registry is not None else default_registry(),
            sync_queue=self.sync_queue,
        )
        self.notes_index = EmbeddingIndex(self.records, NOTES.name, embedding_dimension)
        logger.info(f"Initialized database {path} at schema version {self.schema_version}")

    def close(self):
        """Close the storage session."""
        self.session.close()

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
