import os

# Must be set before mediatrack.core.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("TMDB_API_KEY", "")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from mediatrack.models import Base, User
from mediatrack.services.tmdb_client import CatalogNotConfigured, CatalogUnavailable, MOVIE_GENRES, SERIES_GENRES


@pytest.fixture
def session_factory():
    """Every session shares one in-memory SQLite connection."""
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    with factory() as db:
        db.add_all([User(id=1, email="one@example.com"), User(id=2, email="two@example.com")])
        db.commit()
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    with session_factory() as session:
        yield session


def raw_item(tmdb_id, genre_ids=(28,), title=None, collection=None, **extra):
    item = {
        "id": tmdb_id,
        "title": title or f"Title {tmdb_id}",
        "genre_ids": list(genre_ids),
        "popularity": 100.0 - tmdb_id / 1000,
        "vote_average": 7.1,
        "release_date": "2020-05-01",
        "poster_path": f"/p{tmdb_id}.jpg",
    }
    if collection:
        item["belongs_to_collection"] = collection
    item.update(extra)
    return item


def list_payload(results, page=1, total_pages=1):
    return {"page": page, "results": results, "total_pages": total_pages, "total_results": len(results)}


class FakeCatalog:
    """In-memory catalog. `pages[(phase, page)]` is the list of three slice payloads."""

    resolve_collections = False

    def __init__(self, pages=None, trending=None, key="test-key", fail_with=None):
        self.pages = pages or {}
        self.trending = trending or {}
        self.key = key
        self.fail_with = fail_with
        self.calls = []

    async def api_key(self):
        if not self.key:
            raise CatalogNotConfigured("TMDB API key not configured")
        return self.key

    async def fetch_phase_page(self, phase, page):
        self.calls.append((phase, page))
        if self.fail_with is not None:
            raise self.fail_with
        return self.pages.get((phase, page), [list_payload([], page, 0)] * 3)

    async def genre_map(self, phase):
        return dict(MOVIE_GENRES if phase == "movies" else SERIES_GENRES)

    async def fetch_trending(self, media_type="movie", time_window="week", page=1):
        if self.fail_with is not None:
            raise self.fail_with
        return self.trending.get(media_type, list_payload([]))

    async def fetch_movie_collection(self, tmdb_id):
        return None


@pytest.fixture
def catalog_unavailable():
    return CatalogUnavailable("TMDB API error: 500 on /movie/popular", status_code=500)
