"""
crud.py

Store operations used by the import pipeline, the trending sync and the API.
Each write commits on its own so a failing row never takes earlier rows down with it;
(user_id, tmdb_id, media_type) uniqueness is enforced by the database, not here.
"""
import json
import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from sqlalchemy import String, cast, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mediatrack import models
from mediatrack.core.config import settings

logger = logging.getLogger(__name__)

PROGRESS_FIELDS = {
    "phase", "movies_page", "series_page", "movies_total_pages", "series_total_pages",
    "movies_imported", "series_imported", "movies_skipped", "series_skipped",
    "collections_discovered", "is_importing", "completed_at", "last_sync_at",
}


def media_exists(db: Session, user_id: int, tmdb_id: int, media_type: str) -> bool:
    return db.query(models.MediaItem.id).filter(
        models.MediaItem.user_id == user_id,
        models.MediaItem.tmdb_id == tmdb_id,
        models.MediaItem.media_type == media_type,
    ).first() is not None


def insert_media_item(db: Session, user_id: int, record: Dict[str, Any]) -> models.MediaItem:
    """Insert one media item. Rolls back and re-raises on failure (IntegrityError on a duplicate)."""
    genres = record.get("genres") or []
    item = models.MediaItem(
        user_id=user_id,
        tmdb_id=record["tmdb_id"],
        media_type=record["media_type"],
        title=record["title"],
        poster_path=record.get("poster_path"),
        backdrop_path=record.get("backdrop_path"),
        overview=record.get("overview"),
        genres=json.dumps(list(genres)),
        popularity=record.get("popularity") or 0.0,
        vote_average=record.get("vote_average"),
        release_date=record.get("release_date"),
        collection_id=record.get("collection_id"),
    )
    try:
        db.add(item)
        db.commit()
        db.refresh(item)
        return item
    except Exception:
        db.rollback()
        raise


def find_or_create_collection(db: Session, user_id: int, tmdb_collection_id: int, meta: Dict[str, Any]) -> Tuple[models.Collection, bool]:
    """Return (collection, created). A concurrent creator wins the unique index; we re-read its row."""
    existing = db.query(models.Collection).filter_by(user_id=user_id, tmdb_collection_id=tmdb_collection_id).one_or_none()
    if existing:
        return existing, False
    collection = models.Collection(
        user_id=user_id,
        tmdb_collection_id=tmdb_collection_id,
        name=meta.get("name") or "",
        poster_path=meta.get("poster_path"),
        backdrop_path=meta.get("backdrop_path"),
    )
    try:
        db.add(collection)
        db.commit()
        db.refresh(collection)
        return collection, True
    except IntegrityError:
        db.rollback()
        logger.debug(f"Collection {tmdb_collection_id} created concurrently for user {user_id}")
        return db.query(models.Collection).filter_by(user_id=user_id, tmdb_collection_id=tmdb_collection_id).one(), False


def read_progress(db: Session, user_id: int) -> models.ImportProgress:
    """Fetch the user's import progress, creating the default row on first access."""
    progress = db.query(models.ImportProgress).filter_by(user_id=user_id).one_or_none()
    if progress:
        return progress
    progress = models.ImportProgress(
        user_id=user_id,
        movies_total_pages=settings.import_max_pages,
        series_total_pages=settings.import_max_pages,
    )
    try:
        db.add(progress)
        db.commit()
        db.refresh(progress)
        return progress
    except IntegrityError:
        db.rollback()
        return db.query(models.ImportProgress).filter_by(user_id=user_id).one()


def write_progress(db: Session, user_id: int, **fields) -> models.ImportProgress:
    """Merge a partial update into the progress row (last writer wins)."""
    unknown = set(fields) - PROGRESS_FIELDS
    if unknown:
        raise ValueError(f"Unknown progress fields: {sorted(unknown)}")
    progress = read_progress(db, user_id)
    for key, value in fields.items():
        setattr(progress, key, value)
    try:
        db.commit()
        db.refresh(progress)
        return progress
    except Exception as e:
        logger.error(f"Failed to write import progress for user {user_id}: {e}")
        db.rollback()
        raise


def reset_progress(db: Session, user_id: int) -> models.ImportProgress:
    return write_progress(
        db,
        user_id,
        phase="movies",
        movies_page=1,
        series_page=1,
        movies_total_pages=settings.import_max_pages,
        series_total_pages=settings.import_max_pages,
        movies_imported=0,
        series_imported=0,
        movies_skipped=0,
        series_skipped=0,
        collections_discovered=0,
        is_importing=False,
        completed_at=None,
    )


def list_user_ids(db: Session) -> List[int]:
    return [row[0] for row in db.query(models.User.id).order_by(models.User.id).all()]


def list_upload_marks(db: Session, user_id: int) -> Set[str]:
    rows = db.query(models.UploadedMedia.media_id).filter(models.UploadedMedia.user_id == user_id).all()
    return {row[0] for row in rows}


def toggle_upload_mark(db: Session, user_id: int, media_id: str) -> bool:
    """Flip the uploaded mark for media_id. Returns True when the item is now marked."""
    mark = db.query(models.UploadedMedia).filter_by(user_id=user_id, media_id=media_id).one_or_none()
    try:
        if mark:
            db.delete(mark)
            db.commit()
            return False
        db.add(models.UploadedMedia(user_id=user_id, media_id=media_id))
        db.commit()
        return True
    except IntegrityError:
        # Another session marked it between our read and write
        db.rollback()
        return True


def list_media(
    db: Session,
    user_id: int,
    media_type: Optional[str] = None,
    search: Optional[str] = None,
    uploaded: Optional[bool] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[models.MediaItem]:
    q = db.query(models.MediaItem).filter(models.MediaItem.user_id == user_id)
    if media_type:
        q = q.filter(models.MediaItem.media_type == media_type)
    if search:
        q = q.filter(models.MediaItem.title.ilike(f"%{search}%"))
    if uploaded is not None:
        public_id = cast(models.MediaItem.tmdb_id, String) + "-" + models.MediaItem.media_type
        marked = select(models.UploadedMedia.media_id).where(models.UploadedMedia.user_id == user_id)
        q = q.filter(public_id.in_(marked) if uploaded else ~public_id.in_(marked))
    return q.order_by(models.MediaItem.popularity.desc(), models.MediaItem.id).offset(offset).limit(limit).all()
