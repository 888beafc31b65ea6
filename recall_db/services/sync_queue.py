"""Dirty-record bookkeeping for an external sync collaborator.

Every write through the record store marks the touched record here, inside
the same transaction as the write. The collaborator reads the queue with
``list_dirty()`` and removes entries with ``clear()`` once the remote side
has acknowledged them. Conflict resolution is not handled here.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional

from recall_db.errors import ValidationError
from recall_db.services.storage import StorageSession

logger = logging.getLogger(__name__)

OPERATIONS = ("insert", "update", "delete")


@dataclass(frozen=True)
class DirtyEntry:
    """A record with local changes not yet acknowledged by the remote side."""
    table: str
    key: Any
    operation: str
    revision: int
    marked_at: str


class SyncQueue:
    """Per-record dirty flags persisted in the ``sync_queue`` table."""

    def __init__(self, session: StorageSession):
        self.session = session

    def mark_dirty(self, table: str, key: Any, operation: str = "update") -> None:
        """Flag a record as changed.

        Joins the caller's write transaction when there is one. An update to a
        record whose insert has not been synced yet stays an insert.
        """
        if operation not in OPERATIONS:
            raise ValidationError(f"Unknown sync operation: {operation!r}")
        with self.session.write_transaction() as txn:
            txn.execute(
                """INSERT INTO sync_queue (table_name, record_key, operation, revision, marked_at)
                   VALUES (?, ?, ?, 1, ?)
                   ON CONFLICT(table_name, record_key) DO UPDATE SET
                       operation = CASE
                           WHEN sync_queue.operation = 'insert' AND excluded.operation = 'update'
                           THEN 'insert'
                           ELSE excluded.operation
                       END,
                       revision = sync_queue.revision + 1,
                       marked_at = excluded.marked_at""",
                (table, key, operation, datetime.now().isoformat()),
            )
        logger.debug(f"Marked {table}:{key} dirty ({operation})")

    def list_dirty(self, table: Optional[str] = None, limit: Optional[int] = None) -> List[DirtyEntry]:
        """Dirty records, oldest mark first."""
        sql = "SELECT table_name, record_key, operation, revision, marked_at FROM sync_queue"
        params: list = []
        if table is not None:
            sql += " WHERE table_name = ?"
            params.append(table)
        sql += " ORDER BY marked_at, table_name, record_key"
        if limit is not None:
            if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
                raise ValidationError(f"limit must be a non-negative integer, got {limit!r}")
            sql += " LIMIT ?"
            params.append(limit)

        with self.session.read_connection() as conn:
            rows = conn.fetchall(sql, params)
        return [
            DirtyEntry(
                table=row["table_name"],
                key=row["record_key"],
                operation=row["operation"],
                revision=row["revision"],
                marked_at=row["marked_at"],
            )
            for row in rows
        ]

    def is_dirty(self, table: str, key: Any) -> bool:
        with self.session.read_connection() as conn:
            row = conn.fetchone(
                "SELECT 1 AS dirty FROM sync_queue WHERE table_name = ? AND record_key = ?",
                (table, key),
            )
        return row is not None

    def clear(self, table: str, key: Any, revision: Optional[int] = None) -> bool:
        """Remove a record's dirty flag after remote acknowledgement.

        With ``revision``, the flag is only removed if no newer local change
        happened since the collaborator read it. Returns True if removed.
        """
        sql = "DELETE FROM sync_queue WHERE table_name = ? AND record_key = ?"
        params: list = [table, key]
        if revision is not None:
            sql += " AND revision = ?"
            params.append(revision)
        with self.session.write_transaction() as txn:
            cleared = txn.execute(sql, params).rowcount > 0
        if cleared:
            logger.debug(f"Cleared dirty flag for {table}:{key}")
        else:
            logger.info(f"Dirty flag for {table}:{key} not cleared (missing or newer revision)")
        return cleared

    def count(self) -> int:
        with self.session.read_connection() as conn:
            row = conn.fetchone("SELECT COUNT(*) AS n FROM sync_queue")
        return row["n"]
