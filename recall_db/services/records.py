"""Generic record store: the single mutation gateway for all tables.

Operations are parameterized by a registered table name and by column names
declared on its ``TableSpec``. Values are always bound, never interpolated.
Every write runs inside a write transaction (joining the caller's one if it is
already open) and marks the affected records dirty in the same transaction.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, TypeVar

from recall_db.errors import OperationCancelled, ValidationError
from recall_db.models.tables import TableRegistry, TableSpec, default_registry
from recall_db.services.filters import compile_filter, compile_order_by, quote, validate_page
from recall_db.services.storage import StorageSession, Transaction
from recall_db.services.sync_queue import SyncQueue

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RecordStore:
    """Transactional CRUD over registered tables."""

    def __init__(
        self,
        session: StorageSession,
        registry: Optional[TableRegistry] = None,
        sync_queue: Optional[SyncQueue] = None,
    ):
        self.session = session
        self.registry = registry if registry is not None else default_registry()
        self.sync_queue = sync_queue

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Scoped write transaction; commits on success, rolls back on error."""
        with self.session.write_transaction() as txn:
            yield txn

    def with_transaction(self, body: Callable[[Transaction], T]) -> T:
        """Run ``body(txn)`` inside one write transaction and return its result."""
        with self.session.write_transaction() as txn:
            return body(txn)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def spec(self, table: str) -> TableSpec:
        return self.registry.get(table)

    @staticmethod
    def _check_fields(spec: TableSpec, fields: Mapping[str, Any]) -> Dict[str, Any]:
        if not isinstance(fields, Mapping):
            raise ValidationError(f"Fields must be a mapping, got {type(fields).__name__}")
        spec.check_columns(fields.keys())
        return dict(fields)

    def _mark(self, spec: TableSpec, keys: Sequence[Any], operation: str) -> None:
        if self.sync_queue is None or not spec.track_changes:
            return
        for key in keys:
            self.sync_queue.mark_dirty(spec.name, key, operation)

    def _select_keys(self, txn: Transaction, spec: TableSpec, where_sql: str, params) -> List[Any]:
        rows = txn.fetchall(
            f"SELECT {quote(spec.key)} AS k FROM {quote(spec.name)} WHERE {where_sql}", params
        )
        return [row["k"] for row in rows]

    @staticmethod
    def _require_filter(where_sql: str, operation: str) -> None:
        if not where_sql:
            raise ValidationError(f"{operation} requires a filter expression")

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------

    def insert(self, table: str, fields: Mapping[str, Any]) -> Any:
        """Insert one record and return its key."""
        spec = self.spec(table)
        fields = self._check_fields(spec, fields)
        if not spec.autoincrement_key and fields.get(spec.key) is None:
            raise ValidationError(f"Table {table!r} requires an explicit {spec.key!r}")

        if fields:
            columns = ", ".join(quote(c) for c in fields)
            placeholders = ", ".join("?" for _ in fields)
            sql = f"INSERT INTO {quote(spec.name)} ({columns}) VALUES ({placeholders})"
        else:
            sql = f"INSERT INTO {quote(spec.name)} DEFAULT VALUES"

        with self.session.write_transaction() as txn:
            cursor = txn.execute(sql, list(fields.values()))
            key = fields[spec.key] if fields.get(spec.key) is not None else cursor.lastrowid
            self._mark(spec, [key], "insert")
        logger.debug(f"Inserted {table}:{key}")
        return key

    def query(
        self,
        table: str,
        where: Optional[str] = None,
        params: Sequence[Any] = (),
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        columns: Optional[Sequence[str]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> List[Dict[str, Any]]:
        """Select rows matching ``where``.

        Rows are always ordered (the key column is the final tiebreaker), so
        limit/offset pages neither skip nor repeat rows between calls.

        Args:
            table: Registered table name
            where: Filter expression with ``?`` placeholders
            params: Values bound to the placeholders, in order
            order_by: Column names, optionally followed by ASC or DESC
            limit: Maximum number of rows
            offset: Rows to skip
            columns: Subset of declared columns to return (default: all)
            cancel: Event checked between rows; when set the query is abandoned

        Returns:
            List of row dicts keyed by column name
        """
        spec = self.spec(table)
        where_sql, params = compile_filter(where, params, spec)
        order_sql = compile_order_by(order_by, spec)
        limit, offset = validate_page(limit, offset)
        columns = tuple(columns) if columns else spec.columns
        spec.check_columns(columns)

        sql = f"SELECT {', '.join(quote(c) for c in columns)} FROM {quote(spec.name)}"
        if where_sql:
            sql += f" WHERE {where_sql}"
        sql += f" ORDER BY {order_sql}"
        if limit is not None or offset is not None:
            sql += " LIMIT ? OFFSET ?"
            params = params + (limit if limit is not None else -1, offset or 0)

        rows = []
        with self.session.read_connection() as conn:
            for row in conn.iterate(sql, params):
                if cancel is not None and cancel.is_set():
                    raise OperationCancelled(f"Query on {table!r} cancelled")
                rows.append(row)
        return rows

    def get(self, table: str, key: Any) -> Optional[Dict[str, Any]]:
        """Fetch one record by key, or None."""
        spec = self.spec(table)
        rows = self.query(table, f"{spec.key} = ?", (key,), limit=1)
        return rows[0] if rows else None

    def count(self, table: str, where: Optional[str] = None, params: Sequence[Any] = ()) -> int:
        spec = self.spec(table)
        where_sql, params = compile_filter(where, params, spec)
        sql = f"SELECT COUNT(*) AS n FROM {quote(spec.name)}"
        if where_sql:
            sql += f" WHERE {where_sql}"
        with self.session.read_connection() as conn:
            return conn.fetchone(sql, params)["n"]

    def update(
        self, table: str, fields: Mapping[str, Any], where: str, params: Sequence[Any] = ()
    ) -> int:
        """Update matching rows and return how many were changed."""
        spec = self.spec(table)
        fields = self._check_fields(spec, fields)
        if not fields:
            raise ValidationError("update requires at least one field")
        if spec.key in fields:
            raise ValidationError(f"Key column {spec.key!r} cannot be updated")
        where_sql, params = compile_filter(where, params, spec)
        self._require_filter(where_sql, "update")

        assignments = ", ".join(f"{quote(c)} = ?" for c in fields)
        sql = f"UPDATE {quote(spec.name)} SET {assignments} WHERE {where_sql}"

        with self.session.write_transaction() as txn:
            keys = self._select_keys(txn, spec, where_sql, params)
            if not keys:
                return 0
            affected = txn.execute(sql, list(fields.values()) + list(params)).rowcount
            self._mark(spec, keys, "update")
        logger.debug(f"Updated {affected} row(s) in {table}")
        return affected

    def delete(self, table: str, where: str, params: Sequence[Any] = ()) -> int:
        """Delete matching rows (and the vectors stored on them)."""
        spec = self.spec(table)
        where_sql, params = compile_filter(where, params, spec)
        self._require_filter(where_sql, "delete")

        with self.session.write_transaction() as txn:
            keys = self._select_keys(txn, spec, where_sql, params)
            if not keys:
                return 0
            affected = txn.execute(
                f"DELETE FROM {quote(spec.name)} WHERE {where_sql}", params
            ).rowcount
            self._mark(spec, keys, "delete")
        logger.debug(f"Deleted {affected} row(s) from {table}")
        return affected
