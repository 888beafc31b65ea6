"""Embedding index: vectors stored on their owning record, ranked on demand."""
import logging
import threading
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from recall_db.errors import (
    OperationCancelled,
    ProviderError,
    RecordNotFoundError,
    StoreError,
    ValidationError,
)
from recall_db.services.embeddings import EmbeddingProvider
from recall_db.services.records import RecordStore
from recall_db.services.vectors import as_vector, decode_vector, encode_vector, rank

logger = logging.getLogger(__name__)


def _embed(provider: EmbeddingProvider, text: str) -> np.ndarray:
    try:
        return provider.embed(text)
    except ProviderError:
        raise
    except Exception as e:
        raise ProviderError(f"Embedding provider failed: {e}") from e


class EmbeddingIndex:
    """Vector payloads for one table, persisted through the record store.

    The vector lives in the table's embedding column, so deleting a record
    deletes its embedding in the same statement.
    """

    def __init__(self, store: RecordStore, table: str, dimension: int):
        spec = store.spec(table)
        if spec.embedding_column is None:
            raise ValidationError(f"Table {table!r} has no embedding column")
        if isinstance(dimension, bool) or not isinstance(dimension, int) or dimension < 1:
            raise ValidationError(f"Embedding dimension must be a positive integer, got {dimension!r}")
        self.store = store
        self.table = table
        self.spec = spec
        self.dimension = dimension

    def _check_dimension(self, vector: Sequence[float]) -> np.ndarray:
        arr = as_vector(vector)
        if arr.shape[0] != self.dimension:
            raise ValidationError(
                f"Expected a {self.dimension}-dimensional vector, got {arr.shape[0]}"
            )
        return arr

    def _key_filter(self) -> str:
        return f"{self.spec.key} = ?"

    def _scoped_filter(self, where: Optional[str], extra: str) -> str:
        if where and where.strip():
            return f"({where}) AND {extra}"
        return extra

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def attach(self, key: Any, vector: Sequence[float]) -> None:
        """Store ``vector`` on the record identified by ``key``."""
        blob = encode_vector(self._check_dimension(vector))
        with self.store.transaction():
            affected = self.store.update(
                self.table, {self.spec.embedding_column: blob}, self._key_filter(), (key,)
            )
            if affected == 0:
                raise RecordNotFoundError(self.table, key)

    def detach(self, key: Any) -> None:
        """Remove the vector from a record, keeping the record."""
        with self.store.transaction():
            affected = self.store.update(
                self.table, {self.spec.embedding_column: None}, self._key_filter(), (key,)
            )
            if affected == 0:
                raise RecordNotFoundError(self.table, key)

    def insert_with_embedding(self, fields: Mapping[str, Any], vector: Sequence[float]) -> Any:
        """Insert a record and attach its vector in one transaction."""
        arr = self._check_dimension(vector)

        def body(txn):
            key = self.store.insert(self.table, fields)
            self.attach(key, arr)
            return key

        return self.store.with_transaction(body)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def candidates(
        self,
        where: Optional[str] = None,
        params: Sequence[Any] = (),
        cancel: Optional[threading.Event] = None,
    ) -> List[Tuple[Any, np.ndarray]]:
        """Load (key, vector) pairs for embedded records matching ``where``."""
        column = self.spec.embedding_column
        rows = self.store.query(
            self.table,
            self._scoped_filter(where, f"{column} IS NOT NULL"),
            params,
            columns=(self.spec.key, column),
            cancel=cancel,
        )
        result = []
        for row in rows:
            try:
                vector = decode_vector(row[column])
            except ValidationError as e:
                raise StoreError(
                    f"Corrupt embedding for {self.table}:{row[self.spec.key]}: {e}"
                ) from e
            result.append((row[self.spec.key], vector))
        return result

    def count(self, where: Optional[str] = None, params: Sequence[Any] = ()) -> int:
        """Number of embedded records matching ``where``."""
        column = self.spec.embedding_column
        return self.store.count(self.table, self._scoped_filter(where, f"{column} IS NOT NULL"), params)

    def get_vector(self, key: Any) -> Optional[np.ndarray]:
        record = self.store.get(self.table, key)
        if record is None:
            raise RecordNotFoundError(self.table, key)
        blob = record[self.spec.embedding_column]
        return decode_vector(blob) if blob is not None else None

    def search(
        self,
        query_vector: Sequence[float],
        top_k: int,
        where: Optional[str] = None,
        params: Sequence[Any] = (),
        cancel: Optional[threading.Event] = None,
    ) -> List[Tuple[Any, float]]:
        """Rank embedded records (optionally pre-filtered) against a query vector."""
        query = self._check_dimension(query_vector)
        if top_k <= 0:
            return []
        candidates = self.candidates(where, params, cancel=cancel)
        logger.debug(f"Ranking {len(candidates)} candidate(s) from {self.table}")
        return rank(query, candidates, top_k, cancel=cancel)

    def search_text(
        self,
        text: str,
        provider: EmbeddingProvider,
        top_k: int,
        where: Optional[str] = None,
        params: Sequence[Any] = (),
        cancel: Optional[threading.Event] = None,
    ) -> List[Tuple[Any, float]]:
        """Embed ``text`` with ``provider`` and search with the result."""
        return self.search(_embed(provider, text), top_k, where, params, cancel=cancel)

    # -------------------------------------------------------------------------
    # Bulk re-indexing
    # -------------------------------------------------------------------------

    def reindex(
        self,
        provider: EmbeddingProvider,
        text_fn: Callable[[Dict[str, Any]], str],
        batch_size: int = 64,
        where: Optional[str] = None,
        params: Sequence[Any] = (),
        cancel: Optional[threading.Event] = None,
    ) -> int:
        """Re-embed matching records, committing one batch at a time.

        Batches are paged by key, so records are visited exactly once even
        though each batch is committed before the next is read. Embeddings are
        computed before the batch's write transaction opens.

        Returns:
            Number of records re-embedded
        """
        if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size < 1:
            raise ValidationError(f"batch_size must be a positive integer, got {batch_size!r}")
        params = tuple(params or ())
        key_column = self.spec.key
        last_key = None
        total = 0

        while True:
            if cancel is not None and cancel.is_set():
                raise OperationCancelled(f"Re-indexing {self.table} cancelled after {total} record(s)")

            if last_key is None:
                page_where, page_params = where, params
            else:
                page_where = self._scoped_filter(where, f"{key_column} > ?")
                page_params = params + (last_key,)
            rows = self.store.query(
                self.table, page_where, page_params, order_by=[key_column], limit=batch_size
            )
            if not rows:
                break

            vectors = [self._check_dimension(_embed(provider, text_fn(row))) for row in rows]
            with self.store.transaction():
                for row, vector in zip(rows, vectors):
                    self.attach(row[key_column], vector)

            total += len(rows)
            last_key = rows[-1][key_column]
            logger.info(f"Re-indexed {total} record(s) in {self.table}")
            if len(rows) < batch_size:
                break

        return total
