"""FastAPI server for recall-db."""
import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, HTTPException

from recall_db import __version__
from recall_db.api import search, stats, sync
from recall_db.config import Settings, settings
from recall_db.errors import ValidationError
from recall_db.log_handler import get_memory_handler
from recall_db.services.database import Database
from recall_db.services.embeddings import EmbeddingProvider, get_embedding_service

# Set up logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


def create_app(
    database_factory: Optional[Callable[[], Database]] = None,
    provider: Optional[EmbeddingProvider] = None,
    app_settings: Settings = settings,
) -> FastAPI:
    """Build the application.

    The database is opened (and migrated) when the app starts; a failed
    migration aborts startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Open the database on startup and close it on shutdown."""
        logger.info("Server starting up...")
        if database_factory is not None:
            db = database_factory()
        else:
            db = Database(
                app_settings.db_path,
                embedding_dimension=app_settings.embedding_dimension,
                busy_timeout_ms=app_settings.busy_timeout_ms,
            )
        app.state.db = db
        try:
            yield
        finally:
            logger.info("Server shutting down, closing database connection...")
            db.close()
            app.state.db = None

    app = FastAPI(title="recall-db Server", version=__version__, lifespan=lifespan)
    app.state.settings = app_settings
    app.state.provider = provider if provider is not None else get_embedding_service(app_settings.embedding_model)
    memory_handler = get_memory_handler(app_settings.log_buffer_size)

    app.include_router(search.router)
    app.include_router(sync.router)
    app.include_router(stats.router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "ok", "version": __version__}

    @app.get("/api/logs")
    async def get_logs(lines: int = 10, level: Optional[str] = None, logger_name: Optional[str] = None):
        """Get the last N log entries, optionally filtered by level and logger."""
        try:
            logs = memory_handler.recent(lines, min_level=level, logger_prefix=logger_name)
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return {"logs": logs, "count": len(logs)}

    return app


app = create_app()
