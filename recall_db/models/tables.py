"""Table descriptors for the record store.

Every table the store touches is registered up front as a ``TableSpec``.
Statements are only ever built from names held in a descriptor, so column and
table names never come from caller-supplied strings.
"""
import re
from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Tuple

from recall_db.errors import ValidationError

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def check_identifier(name: str) -> str:
    """Return ``name`` if it is a plain SQL identifier, else raise ValidationError."""
    if not isinstance(name, str) or not IDENTIFIER_RE.match(name):
        raise ValidationError(f"Invalid identifier: {name!r}")
    return name


@dataclass(frozen=True)
class TableSpec:
    """Descriptor for one domain table.

    Attributes:
        name: Table name
        columns: All columns the store may read or write, key included
        key: Primary key column
        embedding_column: Column holding the encoded vector, if any
        track_changes: Mark written records dirty in the sync queue
        autoincrement_key: Key is an INTEGER PRIMARY KEY assigned by the engine
    """
    name: str
    columns: Tuple[str, ...]
    key: str = "id"
    embedding_column: Optional[str] = None
    track_changes: bool = True
    autoincrement_key: bool = True

    def __post_init__(self):
        check_identifier(self.name)
        object.__setattr__(self, "columns", tuple(self.columns))
        if len(set(self.columns)) != len(self.columns):
            raise ValidationError(f"Duplicate columns in table {self.name!r}")
        for column in self.columns:
            check_identifier(column)
        if self.key not in self.columns:
            raise ValidationError(f"Key column {self.key!r} not in columns of {self.name!r}")
        if self.embedding_column is not None and self.embedding_column not in self.columns:
            raise ValidationError(
                f"Embedding column {self.embedding_column!r} not in columns of {self.name!r}"
            )

    def has_column(self, column: str) -> bool:
        return column in self.columns

    def check_columns(self, columns) -> None:
        """Raise ValidationError for any column not declared on this table."""
        unknown = [c for c in columns if c not in self.columns]
        if unknown:
            raise ValidationError(f"Unknown columns for table {self.name!r}: {unknown}")


class TableRegistry:
    """Closed set of tables known to a record store."""

    def __init__(self, *specs: TableSpec):
        self._tables: Dict[str, TableSpec] = {}
        for spec in specs:
            self.register(spec)

    def register(self, spec: TableSpec) -> TableSpec:
        if spec.name in self._tables:
            raise ValidationError(f"Table {spec.name!r} is already registered")
        self._tables[spec.name] = spec
        return spec

    def get(self, name: str) -> TableSpec:
        try:
            return self._tables[name]
        except KeyError:
            raise ValidationError(f"Unknown table: {name!r}") from None

    def __contains__(self, name: str) -> bool:
        return name in self._tables

    def __iter__(self) -> Iterator[TableSpec]:
        return iter(self._tables.values())


# Application schema (created by recall_db.migrations)
NOTES = TableSpec(
    name="notes",
    columns=("id", "title", "body", "created_at", "updated_at", "location", "remote_id", "embedding"),
    key="id",
    embedding_column="embedding",
)


def default_registry() -> TableRegistry:
    """Registry holding the application's own tables."""
    return TableRegistry(NOTES)
