"""Statistics API endpoints."""
import logging

from fastapi import APIRouter, Depends

from recall_db.api.deps import get_db
from recall_db.models.schemas import StatsResponse
from recall_db.models.tables import NOTES
from recall_db.services.database import Database

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stats", tags=["stats"])


@router.get("/", response_model=StatsResponse)
async def get_stats(db: Database = Depends(get_db)):
    """Get schema version, record counts and sync backlog."""
    return StatsResponse(
        schema_version=db.migrations.current_version(),
        notes_count=db.records.count(NOTES.name),
        embedded_notes_count=db.notes_index.count(),
        dirty_count=db.sync_queue.count(),
        migrations=db.migrations.history(),
    )
