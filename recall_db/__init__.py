"""recall-db: local-first record store with migrations and semantic search."""

__version__ = "0.1.0"
