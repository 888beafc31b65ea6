"""Configuration management for recall-db."""
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_prefix="RECALL_DB_")

    # Server
    host: str = "127.0.0.1"
    port: int = 8766

    # Database file (parent directory is created when the session opens)
    db_path: Path = Path.home() / "recall-db" / "recall.db"

    # Seconds SQLite waits on a locked database before failing, in ms
    busy_timeout_ms: int = 5000

    # Embeddings - dimension must match the model's output
    embedding_model: str = "all-MiniLM-L6-v2"
    embedding_dimension: int = 384

    # Re-indexing commits every N rows so readers are never starved
    reindex_batch_size: int = 64

    default_search_limit: int = 10

    # Logging
    log_level: str = "INFO"
    log_buffer_size: int = 100

settings = Settings()
