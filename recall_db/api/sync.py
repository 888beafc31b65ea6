"""Sync API endpoints for the external sync collaborator."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from recall_db.api.deps import get_db
from recall_db.errors import ValidationError
from recall_db.models.schemas import ClearRequest, ClearResponse, DirtyListResponse, DirtyRecord
from recall_db.services.database import Database

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


@router.get("/dirty", response_model=DirtyListResponse)
async def list_dirty(table: Optional[str] = None, limit: Optional[int] = None, db: Database = Depends(get_db)):
    """List records with local changes not yet acknowledged by the remote side."""
    try:
        entries = db.sync_queue.list_dirty(table=table, limit=limit)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    records = [
        DirtyRecord(
            table=entry.table,
            key=entry.key,
            operation=entry.operation,
            revision=entry.revision,
            marked_at=entry.marked_at,
        )
        for entry in entries
    ]
    return DirtyListResponse(records=records, count=len(records))


@router.post("/clear", response_model=ClearResponse)
async def clear_dirty(request: ClearRequest, db: Database = Depends(get_db)):
    """Clear a record's dirty flag after the remote side acknowledged it."""
    cleared = db.sync_queue.clear(request.table, request.key, revision=request.revision)
    return ClearResponse(cleared=cleared)
