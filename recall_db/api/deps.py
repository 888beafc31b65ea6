"""Request dependencies: components live on app.state, set up by the lifespan."""
from fastapi import HTTPException, Request

from recall_db.services.database import Database
from recall_db.services.embeddings import EmbeddingProvider


def get_db(request: Request) -> Database:
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise HTTPException(status_code=503, detail="Database is not open")
    return db


def get_provider(request: Request) -> EmbeddingProvider:
    return request.app.state.provider
