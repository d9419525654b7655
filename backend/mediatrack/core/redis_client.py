from redis import asyncio as aioredis
import redis as redis_sync
import asyncio
import weakref
from typing import Optional

from mediatrack.core.config import settings

# Runtime settings written by the UI live under this prefix, e.g. settings:global:tmdb_api_key
GLOBAL_SETTINGS_PREFIX = "settings:global:"

# One async client per event loop object; a connection opened on one loop cannot be awaited from another.
_async_clients: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, aioredis.Redis]" = weakref.WeakKeyDictionary()
_sync_client: Optional[redis_sync.Redis] = None


def _client_options() -> dict:
	return {
		"decode_responses": True,
		"max_connections": 20,
		"socket_connect_timeout": 5,
		"socket_timeout": 5,
		"retry_on_timeout": True,
	}


def get_redis() -> aioredis.Redis:
	"""Async client for the running event loop (an unbound one outside any loop)."""
	try:
		loop = asyncio.get_running_loop()
	except RuntimeError:
		return aioredis.Redis.from_url(settings.redis_url, **_client_options())

	client = _async_clients.get(loop)
	if client is None:
		client = aioredis.Redis.from_url(settings.redis_url, **_client_options())
		_async_clients[loop] = client
	return client


def get_redis_sync() -> redis_sync.Redis:
	"""Process-wide sync client, used from Celery workers."""
	global _sync_client
	if _sync_client is None:
		_sync_client = redis_sync.Redis.from_url(settings.redis_url, **_client_options())
	return _sync_client


async def get_global_setting(name: str) -> Optional[str]:
	"""Read a runtime setting; None when unset. Redis errors propagate."""
	value = await get_redis().get(f"{GLOBAL_SETTINGS_PREFIX}{name}")
	return value or None
