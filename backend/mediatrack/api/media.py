from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from mediatrack import crud
from mediatrack.core.database import get_db
from mediatrack.models import MEDIA_TYPES
from mediatrack.schemas import MediaItemSchema, UploadToggleResponse

router = APIRouter()


def _serialize(item, marks) -> MediaItemSchema:
    return MediaItemSchema(
        id=item.id,
        media_id=item.media_id,
        tmdb_id=item.tmdb_id,
        media_type=item.media_type,
        title=item.title,
        poster_path=item.poster_path,
        backdrop_path=item.backdrop_path,
        overview=item.overview,
        genres=item.genre_list,
        popularity=item.popularity or 0.0,
        vote_average=item.vote_average,
        release_date=item.release_date,
        collection_id=item.collection_id,
        is_uploaded=item.media_id in marks,
    )


@router.get("", response_model=List[MediaItemSchema])
def list_media(
    user_id: int = 1,
    media_type: Optional[str] = None,
    search: Optional[str] = None,
    uploaded: Optional[bool] = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    """Browse the user's catalog, most popular first."""
    if media_type and media_type not in MEDIA_TYPES:
        raise HTTPException(status_code=400, detail=f"Unknown media_type: {media_type}")
    limit = max(1, min(limit, 200))
    items = crud.list_media(db, user_id, media_type=media_type, search=search,
                            uploaded=uploaded, limit=limit, offset=max(offset, 0))
    marks = crud.list_upload_marks(db, user_id)
    return [_serialize(item, marks) for item in items]


@router.get("/uploads", response_model=List[str])
def list_uploads(user_id: int = 1, db: Session = Depends(get_db)):
    return sorted(crud.list_upload_marks(db, user_id))


@router.post("/uploads/{media_id}/toggle", response_model=UploadToggleResponse)
def toggle_upload(media_id: str, user_id: int = 1, db: Session = Depends(get_db)):
    uploaded = crud.toggle_upload_mark(db, user_id, media_id)
    return UploadToggleResponse(media_id=media_id, uploaded=uploaded)
