"""Pydantic models for API requests/responses."""
from typing import Any, List, Optional, Union
from pydantic import BaseModel, Field, model_validator

class SemanticSearchRequest(BaseModel):
    """Request for semantic search over notes."""
    query: Optional[str] = Field(default=None, min_length=1, description="Search query text")
    vector: Optional[List[float]] = Field(default=None, description="Precomputed query embedding")
    limit: Optional[int] = Field(default=None, ge=1, le=100, description="Maximum number of results")
    title_pattern: Optional[str] = Field(default=None, description="SQL LIKE pattern applied to titles before ranking")

    @model_validator(mode="after")
    def _query_or_vector(self):
        if (self.query is None) == (self.vector is None):
            raise ValueError("Provide exactly one of 'query' or 'vector'")
        return self

class SearchResult(BaseModel):
    """Single search result."""
    note_id: int
    title: str
    similarity_score: float

class SemanticSearchResponse(BaseModel):
    """Response from semantic search."""
    results: List[SearchResult]
    query: Optional[str] = None
    candidates_ranked: int = 0

class DirtyRecord(BaseModel):
    """A record waiting to be synced."""
    table: str
    key: Union[int, str]
    operation: str
    revision: int
    marked_at: str

class DirtyListResponse(BaseModel):
    """Dirty records, oldest first."""
    records: List[DirtyRecord]
    count: int

class ClearRequest(BaseModel):
    """Acknowledge a synced record."""
    table: str
    key: Union[int, str]
    revision: Optional[int] = Field(default=None, description="Only clear if the record has not changed since this revision")

class ClearResponse(BaseModel):
    """Result of clearing a dirty flag."""
    cleared: bool

class StatsResponse(BaseModel):
    """Store statistics."""
    schema_version: int
    notes_count: int
    embedded_notes_count: int
    dirty_count: int
    migrations: List[dict[str, Any]] = Field(default_factory=list)
