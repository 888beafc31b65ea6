"""Storage session over SQLite.

One ``StorageSession`` owns the writer connection for a database file. Writes
go through ``write_transaction()``, which serializes writers with a lock and
``BEGIN IMMEDIATE``; reads go through ``read_connection()``, which hands out a
separate connection so WAL readers are not blocked by an in-flight writer.
"""
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from recall_db.errors import ConstraintError, StoreError, ValidationError
from recall_db.models.tables import check_identifier

logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"


def _row_to_dict(cursor, row):
    """Convert a database row tuple to a dict using cursor description."""
    if row is None:
        return None
    return {desc[0]: value for desc, value in zip(cursor.description, row)}


@contextmanager
def translate_errors(action: str = "statement") -> Iterator[None]:
    """Map sqlite3 exceptions onto the recall-db error taxonomy."""
    try:
        yield
    except sqlite3.IntegrityError as e:
        raise ConstraintError(str(e)) from e
    except (sqlite3.ProgrammingError, sqlite3.InterfaceError) as e:
        raise ValidationError(f"Invalid {action}: {e}") from e
    except sqlite3.Error as e:
        logger.error(f"Storage failure during {action}: {e}")
        raise StoreError(f"{action} failed: {e}") from e


class SessionConnection:
    """Thin wrapper that runs parameterized statements on one connection."""

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        logger.debug(f"SQL: {sql} params={len(params)}")
        with translate_errors("statement"):
            return self._conn.execute(sql, tuple(params))

    def fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        cursor = self.execute(sql, params)
        with translate_errors("fetch"):
            return [_row_to_dict(cursor, row) for row in cursor.fetchall()]

    def fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        cursor = self.execute(sql, params)
        with translate_errors("fetch"):
            return _row_to_dict(cursor, cursor.fetchone())

    def iterate(self, sql: str, params: Sequence[Any] = ()) -> Iterator[Dict[str, Any]]:
        """Yield rows one at a time so callers can stop between rows."""
        cursor = self.execute(sql, params)
        while True:
            with translate_errors("fetch"):
                row = cursor.fetchone()
            if row is None:
                return
            yield _row_to_dict(cursor, row)

    def table_exists(self, table: str) -> bool:
        row = self.fetchone(
            "SELECT name FROM sqlite_master WHERE type='table' AND name = ?", (table,)
        )
        return row is not None

    def column_names(self, table: str) -> List[str]:
        check_identifier(table)
        cursor = self.execute(f"PRAGMA table_info({table})")
        return [row[1] for row in cursor.fetchall()]


class Transaction(SessionConnection):
    """A write transaction in progress. Never commits on its own."""

    def add_column(self, table: str, column: str, declaration: str) -> None:
        """Add a column to ``table``; ``declaration`` is trusted schema text."""
        check_identifier(table)
        check_identifier(column)
        logger.info(f"Adding {column} column to {table} table...")
        self.execute(f"ALTER TABLE {table} ADD COLUMN {column} {declaration}")


class StorageSession:
    """Explicitly owned database handle with single-writer transactions."""

    def __init__(self, path: Union[Path, str], busy_timeout_ms: int = 5000):
        self.path = MEMORY_PATH if str(path) == MEMORY_PATH else Path(path)
        self.busy_timeout_ms = busy_timeout_ms
        self._write_conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._local = threading.local()

    @property
    def is_memory(self) -> bool:
        return self.path == MEMORY_PATH

    @property
    def is_open(self) -> bool:
        return self._write_conn is not None

    @property
    def in_transaction(self) -> bool:
        """True if the calling thread holds the write transaction."""
        return getattr(self._local, "transaction", None) is not None

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(
            str(self.path),
            timeout=self.busy_timeout_ms / 1000,
            isolation_level=None,
            check_same_thread=False,
        )

    def open(self) -> "StorageSession":
        """Open the writer connection and configure the database."""
        if self._write_conn is not None:
            return self
        if not self.is_memory:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        with translate_errors("open"):
            conn = self._connect()
            conn.execute("PRAGMA foreign_keys = ON")
            if not self.is_memory:
                conn.execute("PRAGMA journal_mode = WAL")
        self._write_conn = conn
        logger.info(f"Opened storage session at {self.path}")
        return self

    def close(self) -> None:
        """Close the writer connection. Safe to call twice."""
        with self._lock:
            if self._write_conn is None:
                return
            self._write_conn.close()
            self._write_conn = None
        logger.info(f"Closed storage session at {self.path}")

    def __enter__(self) -> "StorageSession":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _require_open(self) -> sqlite3.Connection:
        if self._write_conn is None:
            raise StoreError(f"Storage session for {self.path} is not open")
        return self._write_conn

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        try:
            conn.rollback()
        except sqlite3.Error as e:
            logger.error(f"Rollback failed: {e}")

    @contextmanager
    def write_transaction(self) -> Iterator[Transaction]:
        """Scoped write transaction.

        Commits when the block exits normally and rolls back on any exception.
        A nested call on the same thread joins the outer transaction.
        """
        current = getattr(self._local, "transaction", None)
        if current is not None:
            yield current
            return

        with self._lock:
            conn = self._require_open()
            with translate_errors("begin"):
                conn.execute("BEGIN IMMEDIATE")
            txn = Transaction(conn)
            self._local.transaction = txn
            try:
                yield txn
                with translate_errors("commit"):
                    conn.commit()
            except BaseException:
                self._rollback(conn)
                raise
            finally:
                self._local.transaction = None

    @contextmanager
    def read_connection(self) -> Iterator[SessionConnection]:
        """Connection for reads.

        Inside this thread's write transaction the writer connection is used so
        uncommitted writes are visible; otherwise readers get their own
        connection and only see committed data.
        """
        current = getattr(self._local, "transaction", None)
        if current is not None:
            yield current
            return

        if self.is_memory:
            with self._lock:
                yield SessionConnection(self._require_open())
            return

        self._require_open()
        with translate_errors("open reader"):
            conn = self._connect()
            conn.execute("PRAGMA query_only = ON")
        try:
            yield SessionConnection(conn)
        finally:
            conn.close()
