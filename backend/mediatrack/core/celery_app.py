from celery import Celery
from mediatrack.core.config import settings
import os

celery_app = Celery(
    "mediatrack",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["mediatrack.services.tasks"]
)

celery_app.conf.update(
    result_expires=3600,
    task_acks_late=True,
    worker_prefetch_multiplier=1,    # Process one task at a time

    # Connection settings
    broker_connection_retry_on_startup=True,
    broker_pool_limit=10,

    # RedBeat scheduler configuration
    beat_scheduler='redbeat.schedulers:RedBeatScheduler',
    redbeat_redis_url=settings.redis_url,
    redbeat_key_prefix='celery:beat:',

    task_routes={
        'mediatrack.services.tasks.sync_trending_catalog': {'queue': 'sync'},
    },

    # Scheduled tasks
    beat_schedule={
        "sync-trending-catalog": {
            "task": "mediatrack.services.tasks.sync_trending_catalog",
            "schedule": 60 * 60 * settings.trending_sync_interval_hours,
        },
    },
    timezone=os.getenv("MEDIATRACK_TIMEZONE") or os.getenv("TZ") or "UTC",
)
