"""
models.py

SQLAlchemy models for User, MediaItem, Collection, ImportProgress and UploadedMedia.
"""
import json

from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime, Date, Float, Text, UniqueConstraint, Index
from sqlalchemy.orm import declarative_base

from mediatrack.utils.timezone import utc_now

Base = declarative_base()

MEDIA_TYPES = ("movie", "series", "anime", "documentary")
IMPORT_PHASES = ("movies", "series")


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    email = Column(String, unique=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)


class Collection(Base):
    """TMDB collection (franchise) grouping, created lazily per user during import."""
    __tablename__ = "collections"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    tmdb_collection_id = Column(Integer, nullable=False)
    name = Column(String, nullable=False)
    poster_path = Column(String, nullable=True)
    backdrop_path = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        UniqueConstraint('user_id', 'tmdb_collection_id', name='uq_collections_user_tmdb'),
    )


class MediaItem(Base):
    """Imported catalog entry. Rows are insert-only: metadata is never refreshed in place.

    media_type is decided once at import time (documentary / anime / phase default)
    and is part of the dedup key, so a title can never be re-inserted under the same type.
    """
    __tablename__ = "media_items"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    tmdb_id = Column(Integer, nullable=False)
    media_type = Column(String, nullable=False, index=True)  # movie | series | anime | documentary
    title = Column(String, nullable=False, index=True)
    poster_path = Column(String, nullable=True)
    backdrop_path = Column(String, nullable=True)
    overview = Column(Text, nullable=True)
    genres = Column(Text, default="[]")  # JSON array of genre names, catalog order
    popularity = Column(Float, default=0.0, index=True)
    vote_average = Column(Float, nullable=True)
    release_date = Column(Date, nullable=True, index=True)
    # Weak reference: removing a collection leaves the item in place
    collection_id = Column(Integer, ForeignKey("collections.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, index=True)

    __table_args__ = (
        UniqueConstraint('user_id', 'tmdb_id', 'media_type', name='uq_media_items_user_tmdb_type'),
    )

    @property
    def media_id(self) -> str:
        """Public identifier used by upload marks, e.g. '603-movie'."""
        return f"{self.tmdb_id}-{self.media_type}"

    @property
    def genre_list(self) -> list:
        try:
            return json.loads(self.genres or "[]")
        except (TypeError, ValueError):
            return []


class ImportProgress(Base):
    """Per-user resumption checkpoint of the bulk import.

    movies_page / series_page hold the next page to fetch. is_importing is an advisory
    flag only: sessions may race on this row (last writer wins).
    """
    __tablename__ = "import_progress"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True)
    phase = Column(String(16), nullable=False, default="movies")
    movies_page = Column(Integer, nullable=False, default=1)
    series_page = Column(Integer, nullable=False, default=1)
    movies_total_pages = Column(Integer, nullable=False, default=500)
    series_total_pages = Column(Integer, nullable=False, default=500)
    movies_imported = Column(Integer, nullable=False, default=0)
    series_imported = Column(Integer, nullable=False, default=0)
    movies_skipped = Column(Integer, nullable=False, default=0)
    series_skipped = Column(Integer, nullable=False, default=0)
    collections_discovered = Column(Integer, nullable=False, default=0)
    is_importing = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class UploadedMedia(Base):
    """Membership record: presence means the user marked the item as uploaded."""
    __tablename__ = "uploaded_media"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    media_id = Column(String, nullable=False)  # "{tmdb_id}-{media_type}"
    created_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        UniqueConstraint('user_id', 'media_id', name='uq_uploaded_media_user_media'),
        Index('ix_uploaded_media_user', 'user_id'),
    )
