"""
tasks.py

Celery task definitions for background catalog work and toast notifications.
Toasts go out on the Redis channel notifications:{user_id}; a failed publish is only logged.
"""
import asyncio
import json
import logging
import time

from celery import shared_task

from mediatrack.core.redis_client import get_redis, get_redis_sync

logger = logging.getLogger(__name__)


def _notification(user_id: int, message: str, notification_type: str) -> str:
    return json.dumps({
        "user_id": user_id,
        "message": message,
        "type": notification_type,
        "timestamp": int(time.time())
    })


async def send_toast_notification(user_id: int, message: str, notification_type: str = "info"):
    """Publish a toast via Redis pub/sub."""
    try:
        await get_redis().publish(f"notifications:{user_id}", _notification(user_id, message, notification_type))
    except Exception as e:
        logger.warning(f"Failed to publish notification: {e}")


def send_toast_notification_sync(user_id: int, message: str, notification_type: str = "info"):
    """Synchronous version for Celery workers to avoid event loop issues."""
    try:
        r = get_redis_sync()
        r.publish(f"notifications:{user_id}", _notification(user_id, message, notification_type))
    except Exception as e:
        logger.warning(f"Failed to publish sync notification: {e}")


def format_sync_notification(imported: int, skipped: int) -> str:
    if imported:
        return f"Trending sync: {imported} new titles added ({skipped} already in your catalog)"
    return "Trending sync: no new titles."


@shared_task(bind=True, max_retries=2, default_retry_delay=300)
def sync_trending_catalog(self, user_ids=None):
    """
    Add this week's trending movies and series to every user's catalog.
    Runs on the beat schedule every trending_sync_interval_hours.
    """
    from mediatrack.core.database import SessionLocal
    from mediatrack.services.tmdb_client import CatalogError, CatalogNotConfigured, TMDBClient
    from mediatrack.services.trending_sync import sync_trending

    logger.info("[TrendingTask] Starting trending catalog sync")
    try:
        summary = asyncio.run(sync_trending(SessionLocal, TMDBClient(), user_ids=user_ids))
    except CatalogNotConfigured as exc:
        logger.error(f"[TrendingTask] Skipped: {exc}")
        return {"error": "unconfigured"}
    except CatalogError as exc:
        logger.error(f"[TrendingTask] Catalog unavailable: {exc}")
        if self.request.retries < self.max_retries:
            raise self.retry(countdown=300 * (2 ** self.request.retries))
        raise

    for user_id, stats in summary.pop("per_user", {}).items():
        send_toast_notification_sync(
            user_id,
            format_sync_notification(stats["imported"], stats["skipped"]),
            "success"
        )
    logger.info(f"[TrendingTask] ✅ Done: {summary}")
    return summary
