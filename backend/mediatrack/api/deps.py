from mediatrack.core.database import SessionLocal
from mediatrack.services.tmdb_client import TMDBClient


def get_catalog() -> TMDBClient:
    """A fresh TMDB client per request; the API key is resolved lazily."""
    return TMDBClient()


def get_session_factory():
    return SessionLocal
