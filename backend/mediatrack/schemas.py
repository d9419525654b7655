"""
schemas.py

Pydantic schemas for import progress, step results, media items and upload marks.
"""
from pydantic import BaseModel, ConfigDict
from typing import Optional, List, Literal
import datetime

Phase = Literal["movies", "series"]


class ImportStepResult(BaseModel):
    phase: Phase
    page: int
    imported: int = 0
    skipped: int = 0
    collections_added: int = 0
    total_pages: int
    has_more: bool
    next_phase: Phase
    next_page: int
    is_complete: bool = False


class ImportProgressState(BaseModel):
    phase: Phase = "movies"
    movies_page: int = 1
    series_page: int = 1
    movies_total_pages: int = 500
    series_total_pages: int = 500
    movies_imported: int = 0
    series_imported: int = 0
    movies_skipped: int = 0
    series_skipped: int = 0
    collections_discovered: int = 0
    is_importing: bool = False
    completed_at: Optional[datetime.datetime] = None
    last_sync_at: Optional[datetime.datetime] = None
    model_config = ConfigDict(from_attributes=True)


class ProgressSnapshot(ImportProgressState):
    movies_percent: float = 0.0
    series_percent: float = 0.0
    total_imported: int = 0
    total_skipped: int = 0
    is_locked: bool = False


class ImportingFlag(BaseModel):
    is_importing: bool


class SyncSummary(BaseModel):
    imported: int = 0
    skipped: int = 0
    users_processed: int = 0
    users_failed: int = 0


class MediaItemSchema(BaseModel):
    id: int
    media_id: str
    tmdb_id: int
    media_type: str
    title: str
    poster_path: Optional[str] = None
    backdrop_path: Optional[str] = None
    overview: Optional[str] = None
    genres: List[str] = []
    popularity: float = 0.0
    vote_average: Optional[float] = None
    release_date: Optional[datetime.date] = None
    collection_id: Optional[int] = None
    is_uploaded: bool = False


class UploadToggleResponse(BaseModel):
    media_id: str
    uploaded: bool
