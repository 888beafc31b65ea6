"""Exception types for recall-db."""


class RecallDBError(Exception):
    """Base class for all recall-db errors."""


class ValidationError(RecallDBError, ValueError):
    """Malformed input from the caller. Never retried."""


class StoreError(RecallDBError):
    """Underlying storage failure for the current operation."""


class ConstraintError(StoreError):
    """Unique, foreign-key, not-null or check constraint violation."""


class RecordNotFoundError(StoreError):
    """A keyed operation targeted a record that does not exist."""

    def __init__(self, table: str, key):
        super().__init__(f"No record with key {key!r} in table {table!r}")
        self.table = table
        self.key = key


class MigrationError(RecallDBError):
    """A schema migration failed. Startup must not continue."""

    def __init__(self, message: str, version: int = None):
        super().__init__(message)
        self.version = version


class OperationCancelled(RecallDBError):
    """A long-running read or ranking was cancelled by the caller."""


class ProviderError(RecallDBError):
    """The embedding provider failed to produce a vector."""


class InvalidVectorWarning(UserWarning):
    """A ranking candidate was empty, non-numeric or held NaN or infinity."""


class DimensionMismatchWarning(InvalidVectorWarning):
    """A ranking candidate had a different dimension than the query."""
