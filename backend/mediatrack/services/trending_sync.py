"""
trending_sync.py

Periodic top-up of every user's catalog with TMDB's weekly trending titles.
The trending pages are fetched once per run and shared by all users; each user gets
the same insert-if-absent treatment as the bulk import. A failing user is logged and
the run moves on to the next one.
"""
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from mediatrack import crud
from mediatrack.services.import_step import IMPORTED, SKIPPED, import_candidate
from mediatrack.services.tmdb_client import CatalogItem, normalize_item
from mediatrack.utils.timezone import utc_now

logger = logging.getLogger(__name__)

# TMDB trending media type -> import phase whose classification rules apply
TRENDING_SOURCES = (('movie', 'movies'), ('tv', 'series'))


async def fetch_trending_candidates(catalog) -> List[Tuple[str, CatalogItem]]:
    """(phase, item) pairs from one page of each weekly trending list."""
    candidates = []
    for media_type, phase in TRENDING_SOURCES:
        payload = await catalog.fetch_trending(media_type, 'week', page=1)
        genre_map = await catalog.genre_map(phase)
        for raw in (payload or {}).get('results') or []:
            item = normalize_item(raw, phase, genre_map)
            if item is not None:
                candidates.append((phase, item))
    return candidates


async def sync_user(db, catalog, user_id: int, candidates: List[Tuple[str, CatalogItem]]) -> Dict[str, int]:
    imported = skipped = 0
    for phase, item in candidates:
        outcome, _ = await import_candidate(db, catalog, user_id, phase, item)
        if outcome == IMPORTED:
            imported += 1
        elif outcome == SKIPPED:
            skipped += 1
    crud.write_progress(db, user_id, last_sync_at=utc_now())
    return {"imported": imported, "skipped": skipped}


async def sync_trending(session_factory, catalog, user_ids: Optional[Iterable[int]] = None) -> Dict[str, int]:
    """Run one trending sync. Catalog errors while fetching abort the whole run."""
    await catalog.api_key()
    candidates = await fetch_trending_candidates(catalog)

    if user_ids is None:
        with session_factory() as db:
            user_ids = crud.list_user_ids(db)

    summary = {"imported": 0, "skipped": 0, "users_processed": 0, "users_failed": 0}
    per_user: Dict[int, Dict[str, int]] = {}
    for user_id in user_ids:
        try:
            with session_factory() as db:
                stats = await sync_user(db, catalog, user_id, candidates)
        except Exception as e:
            logger.error(f"Trending sync failed for user {user_id}: {e}", exc_info=True)
            summary["users_failed"] += 1
            continue
        per_user[user_id] = stats
        summary["imported"] += stats["imported"]
        summary["skipped"] += stats["skipped"]
        summary["users_processed"] += 1
        logger.info(f"Trending sync user {user_id}: {stats['imported']} new, {stats['skipped']} already present")

    summary["per_user"] = per_user
    logger.info(
        f"Trending sync done: {summary['imported']} imported, {summary['skipped']} skipped, "
        f"{summary['users_processed']} users ok, {summary['users_failed']} failed"
    )
    return summary
