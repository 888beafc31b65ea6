"""Search API endpoints."""
import logging
import time

from fastapi import APIRouter, Depends, HTTPException, Request

from recall_db.api.deps import get_db, get_provider
from recall_db.errors import ProviderError, StoreError, ValidationError
from recall_db.models.schemas import SearchResult, SemanticSearchRequest, SemanticSearchResponse
from recall_db.models.tables import NOTES
from recall_db.services.database import Database
from recall_db.services.embeddings import EmbeddingProvider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/search", tags=["search"])


@router.post("/semantic", response_model=SemanticSearchResponse)
def semantic_search(
    request: SemanticSearchRequest,
    http_request: Request,
    db: Database = Depends(get_db),
    provider: EmbeddingProvider = Depends(get_provider),
):
    """Rank notes by cosine similarity to a query text or vector.

    Exact brute-force scan over the stored embeddings; ``title_pattern``
    narrows the candidate set before ranking.
    """
    start_time = time.perf_counter()
    limit = request.limit or http_request.app.state.settings.default_search_limit
    index = db.notes_index
    where, params = None, ()
    if request.title_pattern:
        where, params = "title LIKE ?", (request.title_pattern,)

    try:
        if request.vector is not None:
            ranked = index.search(request.vector, limit, where, params)
        else:
            ranked = index.search_text(request.query, provider, limit, where, params)
        candidates_ranked = index.count(where, params)

        titles = {}
        if ranked:
            keys = [key for key, _ in ranked]
            placeholders = ", ".join("?" for _ in keys)
            rows = db.records.query(NOTES.name, f"id IN ({placeholders})", keys, columns=("id", "title"))
            titles = {row["id"]: row["title"] for row in rows}
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ProviderError as e:
        logger.error(f"Embedding provider failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    except StoreError as e:
        logger.error(f"Semantic search failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    results = [
        SearchResult(note_id=key, title=titles.get(key, ""), similarity_score=score)
        for key, score in ranked
    ]
    logger.info(
        f"Semantic search over {candidates_ranked} candidate(s) took {(time.perf_counter()-start_time)*1000:.1f}ms"
    )
    return SemanticSearchResponse(results=results, query=request.query, candidates_ranked=candidates_ranked)
