"""
tmdb_client.py

Async TMDB catalog client for the bulk import and the trending sync.
- httpx.AsyncClient per request, bounded by catalog_timeout_seconds.
- 429 handled with exponential backoff via rate_limit.with_backoff; a quota still
  exhausted after the retries surfaces as CatalogUnavailable(status_code=429).
- API key from Redis-backed settings (settings:global:tmdb_api_key), then the environment.
- Results are normalized into CatalogItem; no caching beyond the genre tables.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

import httpx

from mediatrack.core.config import settings
from mediatrack.core.redis_client import get_global_setting
from mediatrack.services.rate_limit import RateLimitExceeded, SlidingWindowLimiter, with_backoff
from mediatrack.utils.timezone import parse_release_date

logger = logging.getLogger(__name__)

class CatalogError(Exception):
    """Base exception for TMDB catalog errors."""
    retryable = False

class CatalogNotConfigured(CatalogError):
    """Raised when no TMDB API key is available. Not retried automatically."""
    pass

class CatalogUnavailable(CatalogError):
    """Raised when TMDB is unreachable, times out or answers with a non-2xx status."""
    retryable = True

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code

# TMDB genre ids; names are only used when the genre endpoint cannot be reached
MOVIE_GENRES: Dict[int, str] = {
    28: 'Action', 12: 'Adventure', 16: 'Animation', 35: 'Comedy',
    80: 'Crime', 99: 'Documentary', 18: 'Drama', 10751: 'Family',
    14: 'Fantasy', 36: 'History', 27: 'Horror', 10402: 'Music',
    9648: 'Mystery', 10749: 'Romance', 878: 'Science Fiction',
    10770: 'TV Movie', 53: 'Thriller', 10752: 'War', 37: 'Western'
}

SERIES_GENRES: Dict[int, str] = {
    10759: 'Action & Adventure', 16: 'Animation', 35: 'Comedy',
    80: 'Crime', 99: 'Documentary', 18: 'Drama', 10751: 'Family',
    10762: 'Kids', 9648: 'Mystery', 10763: 'News', 10764: 'Reality',
    10765: 'Sci-Fi & Fantasy', 10766: 'Soap', 10767: 'Talk',
    10768: 'War & Politics', 37: 'Western'
}

GENRE_DOCUMENTARY = 99
GENRE_ANIMATION = 16

# Three orderings per phase with overlapping content; merging them raises recall per page
PHASE_SLICES: Dict[str, List[str]] = {
    'movies': ['/movie/popular', '/movie/top_rated', '/movie/now_playing'],
    'series': ['/tv/popular', '/tv/top_rated', '/tv/on_the_air'],
}

PHASE_DEFAULT_TYPE = {'movies': 'movie', 'series': 'series'}


@dataclass
class CatalogItem:
    tmdb_id: int
    title: str
    poster_path: Optional[str] = None
    backdrop_path: Optional[str] = None
    overview: Optional[str] = None
    genre_ids: List[int] = field(default_factory=list)
    genres: List[str] = field(default_factory=list)
    popularity: float = 0.0
    vote_average: Optional[float] = None
    release_date: Optional[date] = None
    collection: Optional[Dict] = None  # {'id', 'name', 'poster_path', 'backdrop_path'}


def classify_media_type(genre_ids: List[int], phase: str) -> str:
    """Documentary wins over animation; anything else keeps the phase default."""
    if GENRE_DOCUMENTARY in genre_ids:
        return 'documentary'
    if GENRE_ANIMATION in genre_ids:
        return 'anime'
    return PHASE_DEFAULT_TYPE[phase]


def image_url(path: Optional[str], image_base: str = None) -> Optional[str]:
    if not path:
        return None
    return f"{image_base or settings.tmdb_image_base}{path}"


def normalize_item(raw: Dict, phase: str, genre_map: Dict[int, str], image_base: str = None) -> Optional[CatalogItem]:
    """Turn a raw TMDB list entry into a CatalogItem. Entries without id or title are dropped."""
    tmdb_id = raw.get('id')
    title = raw.get('title') or raw.get('name')
    if not tmdb_id or not title:
        return None
    genre_ids = [g for g in (raw.get('genre_ids') or []) if isinstance(g, int)]
    collection = None
    btc = raw.get('belongs_to_collection')
    if isinstance(btc, dict) and btc.get('id'):
        collection = {
            'id': btc['id'],
            'name': btc.get('name') or '',
            'poster_path': image_url(btc.get('poster_path'), image_base),
            'backdrop_path': image_url(btc.get('backdrop_path'), image_base),
        }
    return CatalogItem(
        tmdb_id=int(tmdb_id),
        title=title,
        poster_path=image_url(raw.get('poster_path'), image_base),
        backdrop_path=image_url(raw.get('backdrop_path'), image_base),
        overview=raw.get('overview'),
        genre_ids=genre_ids,
        genres=[genre_map[g] for g in genre_ids if g in genre_map],
        popularity=float(raw.get('popularity') or 0.0),
        vote_average=raw.get('vote_average'),
        release_date=parse_release_date(raw.get('release_date') or raw.get('first_air_date')),
        collection=collection,
    )


def merge_unique(pages: List[Dict]) -> List[Dict]:
    """Concatenate the results of several list payloads, first occurrence of an id wins."""
    seen = set()
    merged = []
    for payload in pages:
        for raw in (payload or {}).get('results') or []:
            tmdb_id = raw.get('id')
            if tmdb_id is None or tmdb_id in seen:
                continue
            seen.add(tmdb_id)
            merged.append(raw)
    return merged


async def get_tmdb_api_key() -> Optional[str]:
    """Read TMDB API key from Redis-backed settings, falling back to the environment."""
    try:
        key = await get_global_setting("tmdb_api_key")
        if key:
            return key
    except Exception as e:
        logger.debug(f"Redis settings unavailable for TMDB key lookup: {e}")
    return settings.tmdb_api_key or None


class TMDBClient:
    """Catalog client. `transport` lets tests plug an httpx.MockTransport in."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        language: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rate_limited: bool = True,
        resolve_collections: Optional[bool] = None,
        max_retries: int = 4,
    ):
        self._api_key = api_key
        self.base_url = (base_url or settings.tmdb_base_url).rstrip('/')
        self.language = language or settings.tmdb_language
        self.timeout = timeout if timeout is not None else settings.catalog_timeout_seconds
        self.resolve_collections = settings.catalog_resolve_collections if resolve_collections is None else resolve_collections
        self._transport = transport
        self._limiter = SlidingWindowLimiter("tmdb") if rate_limited else None
        self.max_retries = max_retries
        self._genre_maps: Dict[str, Dict[int, str]] = {}

    async def api_key(self) -> str:
        if not self._api_key:
            self._api_key = await get_tmdb_api_key()
        if not self._api_key:
            logger.error("TMDB API key not configured")
            raise CatalogNotConfigured("TMDB API key not configured")
        return self._api_key

    async def _get(self, endpoint: str, **params) -> Dict:
        api_key = await self.api_key()
        url = f"{self.base_url}{endpoint}"
        query = {"api_key": api_key, "language": self.language}
        query.update({k: v for k, v in params.items() if v is not None})

        async def make_request():
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    resp = await client.get(url, params=query)
                    resp.raise_for_status()
                    return resp.json()
            except httpx.TimeoutException:
                raise CatalogUnavailable(f"TMDB timeout on {endpoint}")
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                raise CatalogUnavailable(f"TMDB API error: {status} on {endpoint}", status_code=status)
            except httpx.RequestError as e:
                raise CatalogUnavailable(f"TMDB unreachable on {endpoint}: {e}")
            except ValueError as e:
                raise CatalogUnavailable(f"TMDB returned invalid JSON on {endpoint}: {e}")

        try:
            return await with_backoff(make_request, max_retries=self.max_retries, limiter=self._limiter)
        except RateLimitExceeded as e:
            raise CatalogUnavailable(f"TMDB quota exhausted on {endpoint}: {e}", status_code=429)

    async def fetch_list(self, endpoint: str, page: int) -> Dict:
        """One page of a TMDB list endpoint: {'page', 'results', 'total_pages', 'total_results'}."""
        return await self._get(endpoint, page=page)

    async def fetch_phase_page(self, phase: str, page: int) -> List[Dict]:
        """Fetch every slice of a phase at `page` concurrently. Any failure fails the whole page."""
        endpoints = PHASE_SLICES[phase]
        return list(await asyncio.gather(*(self.fetch_list(ep, page) for ep in endpoints)))

    async def fetch_trending(self, media_type: str = 'movie', time_window: str = 'week', page: int = 1) -> Dict:
        """TMDB trending payload for 'movie' or 'tv'."""
        return await self._get(f"/trending/{media_type}/{time_window}", page=page)

    async def genre_map(self, phase: str) -> Dict[int, str]:
        """Genre id -> localized name, fetched once per client; static table when TMDB refuses."""
        if phase in self._genre_maps:
            return self._genre_maps[phase]
        fallback = MOVIE_GENRES if phase == 'movies' else SERIES_GENRES
        kind = 'movie' if phase == 'movies' else 'tv'
        try:
            data = await self._get(f"/genre/{kind}/list")
            mapping = {g['id']: g['name'] for g in data.get('genres', []) if g.get('id') and g.get('name')}
        except CatalogUnavailable as e:
            logger.warning(f"TMDB genre list unavailable for {kind}, using built-in names: {e}")
            mapping = {}
        self._genre_maps[phase] = mapping or dict(fallback)
        return self._genre_maps[phase]

    async def fetch_movie_collection(self, tmdb_id: int) -> Optional[Dict]:
        """Collection descriptor of a movie from its details endpoint, None when it has none."""
        try:
            details = await self._get(f"/movie/{tmdb_id}")
        except CatalogUnavailable as e:
            logger.debug(f"TMDB details failed for movie/{tmdb_id}: {e}")
            return None
        btc = details.get('belongs_to_collection')
        if not isinstance(btc, dict) or not btc.get('id'):
            return None
        return {
            'id': btc['id'],
            'name': btc.get('name') or '',
            'poster_path': image_url(btc.get('poster_path')),
            'backdrop_path': image_url(btc.get('backdrop_path')),
        }
