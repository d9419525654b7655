"""
import_step.py

Server-side import step: one page of one phase.

Fetches the three TMDB orderings of the phase at `page`, merges them, inserts the
candidates the user does not have yet (creating collections on first sight), then
writes the new checkpoint. A catalog failure aborts before anything is counted; a
failing candidate is logged and the step carries on.
"""
import logging
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from mediatrack import crud
from mediatrack.core.config import settings
from mediatrack.models import IMPORT_PHASES
from mediatrack.schemas import ImportStepResult
from mediatrack.services.progress import apply_step_result
from mediatrack.services.tmdb_client import (
    CatalogError,
    CatalogItem,
    classify_media_type,
    merge_unique,
    normalize_item,
)

logger = logging.getLogger(__name__)

IMPORTED = "imported"
SKIPPED = "skipped"
FAILED = "failed"


def media_record(item: CatalogItem, media_type: str, collection_id: Optional[int] = None) -> dict:
    return {
        "tmdb_id": item.tmdb_id,
        "media_type": media_type,
        "title": item.title,
        "poster_path": item.poster_path,
        "backdrop_path": item.backdrop_path,
        "overview": item.overview,
        "genres": item.genres,
        "popularity": item.popularity,
        "vote_average": item.vote_average,
        "release_date": item.release_date,
        "collection_id": collection_id,
    }


async def import_candidate(db: Session, catalog, user_id: int, phase: str, item: CatalogItem) -> Tuple[str, bool]:
    """Insert one candidate if absent. Returns (outcome, collection_created).

    A unique-index rejection means another session inserted the same row after our
    existence check; it is counted as skipped so imported + skipped still adds up.
    """
    media_type = classify_media_type(item.genre_ids, phase)
    if crud.media_exists(db, user_id, item.tmdb_id, media_type):
        return SKIPPED, False

    collection = item.collection
    if collection is None and phase == 'movies' and getattr(catalog, 'resolve_collections', False):
        try:
            collection = await catalog.fetch_movie_collection(item.tmdb_id)
        except CatalogError as e:
            logger.warning(f"Collection lookup failed for movie/{item.tmdb_id}, importing without one: {e}")
            collection = None

    created = False
    try:
        collection_id = None
        if collection:
            row, created = crud.find_or_create_collection(db, user_id, collection['id'], collection)
            collection_id = row.id
        crud.insert_media_item(db, user_id, media_record(item, media_type, collection_id))
        return IMPORTED, created
    except IntegrityError:
        logger.debug(f"{media_type}/{item.tmdb_id} inserted concurrently for user {user_id}; counted as skipped")
        return SKIPPED, created
    except SQLAlchemyError as e:
        logger.warning(f"Insert failed for {media_type}/{item.tmdb_id} (user {user_id}): {e}")
        return FAILED, created


async def run_import_step(
    db: Session,
    catalog,
    user_id: int,
    phase: str,
    page: int,
    max_pages: Optional[int] = None,
) -> ImportStepResult:
    if phase not in IMPORT_PHASES:
        raise ValueError(f"Unknown import phase: {phase!r}")
    if page < 1:
        raise ValueError(f"Page must be >= 1, got {page}")

    # Fail fast on missing credentials, and create the checkpoint row on first use
    await catalog.api_key()
    crud.read_progress(db, user_id)

    logger.info(f"User {user_id} importing {phase} page {page}")
    payloads = await catalog.fetch_phase_page(phase, page)
    genre_map = await catalog.genre_map(phase)

    ceiling = max_pages or settings.import_max_pages
    reported = max((int((p or {}).get('total_pages') or 0) for p in payloads), default=0)
    total_pages = min(reported, ceiling)
    candidates = merge_unique(payloads)
    if not candidates:
        # Past the end of every ordering: this page closes the phase
        total_pages = min(total_pages or page - 1, page - 1)

    imported = skipped = collections_added = 0
    for raw in candidates:
        item = normalize_item(raw, phase, genre_map)
        if item is None:
            continue
        outcome, collection_created = await import_candidate(db, catalog, user_id, phase, item)
        if outcome == IMPORTED:
            imported += 1
        elif outcome == SKIPPED:
            skipped += 1
        if collection_created:
            collections_added += 1

    has_more = page < total_pages
    is_complete = False
    if has_more:
        next_phase, next_page = phase, page + 1
    elif phase == 'movies':
        next_phase, next_page = 'series', 1
    else:
        next_phase, next_page = 'series', min(page + 1, total_pages + 1)
        is_complete = True

    result = ImportStepResult(
        phase=phase,
        page=page,
        imported=imported,
        skipped=skipped,
        collections_added=collections_added,
        total_pages=total_pages,
        has_more=has_more,
        next_phase=next_phase,
        next_page=next_page,
        is_complete=is_complete,
    )

    # Re-read so counters written by other sessions during this step are not lost
    db.expire_all()
    state = apply_step_result(crud.read_progress(db, user_id), result)
    update = state.model_dump(exclude={'is_importing', 'last_sync_at'})
    if is_complete:
        # The running loop owns the flag otherwise; a late step must not re-raise it after a pause
        update['is_importing'] = False
    crud.write_progress(db, user_id, **update)

    logger.info(
        f"User {user_id} {phase} page {page}/{total_pages}: imported={imported}, "
        f"skipped={skipped}, collections={collections_added}, next={next_phase}:{next_page}"
    )
    return result
