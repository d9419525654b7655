import os
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    db_user: str = os.getenv("POSTGRES_USER", "mediatrack")
    db_password: str = os.getenv("POSTGRES_PASSWORD", "mediatrack")
    db_name: str = os.getenv("POSTGRES_DB", "mediatrack")
    database_url: str = os.getenv(
        "DATABASE_URL",
        f"postgresql+psycopg2://{os.getenv('POSTGRES_USER', 'mediatrack')}:{os.getenv('POSTGRES_PASSWORD', 'mediatrack')}@db:5432/{os.getenv('POSTGRES_DB', 'mediatrack')}",
    )
    redis_url: str = os.getenv("REDIS_URL", "redis://redis:6379/0")

    # TMDB catalog
    # The key can also be set at runtime in Redis (settings:global:tmdb_api_key), which wins.
    tmdb_api_key: str = os.getenv("TMDB_API_KEY", "")
    tmdb_base_url: str = os.getenv("TMDB_BASE_URL", "https://api.themoviedb.org/3")
    tmdb_image_base: str = os.getenv("TMDB_IMAGE_BASE", "https://image.tmdb.org/t/p/w500")
    tmdb_language: str = os.getenv("TMDB_LANGUAGE", "fr-FR")
    # Shared by all processes through Redis (TMDB allows roughly 40 requests / 10 s)
    tmdb_rate_limit: int = int(os.getenv("TMDB_RATE_LIMIT", "40"))
    tmdb_rate_window_seconds: float = float(os.getenv("TMDB_RATE_WINDOW_SECONDS", "10"))
    catalog_timeout_seconds: float = float(os.getenv("CATALOG_TIMEOUT_SECONDS", "10"))
    # List endpoints carry no collection info; resolving it costs one details call per new movie
    catalog_resolve_collections: bool = os.getenv("CATALOG_RESOLVE_COLLECTIONS", "false").lower() == "true"

    # Bulk import pipeline
    import_max_pages: int = int(os.getenv("IMPORT_MAX_PAGES", "500"))
    import_tick_seconds: float = float(os.getenv("IMPORT_TICK_SECONDS", "1.0"))
    import_step_timeout_seconds: float = float(os.getenv("IMPORT_STEP_TIMEOUT_SECONDS", "15"))

    # Trending sync (Celery beat)
    trending_sync_interval_hours: int = int(os.getenv("TRENDING_SYNC_INTERVAL_HOURS", "6"))

    # Used by the CLI / remote loop to reach the API
    api_base_url: str = os.getenv("MEDIATRACK_API_URL", "http://localhost:8000")

settings = Settings()
