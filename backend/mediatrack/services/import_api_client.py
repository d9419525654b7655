"""
import_api_client.py

Loop backend that talks to a running MediaTrack API instead of the database, so the
continuation loop can drive an import from any machine.
"""
import logging
from typing import Optional

import httpx

from mediatrack.core.config import settings
from mediatrack.schemas import ImportProgressState, ImportStepResult
from mediatrack.services.tmdb_client import CatalogNotConfigured, CatalogUnavailable

logger = logging.getLogger(__name__)


def _progress_state(data: dict) -> ImportProgressState:
    """Drop the derived snapshot fields and keep the stored ones."""
    return ImportProgressState(**{k: v for k, v in data.items() if k in ImportProgressState.model_fields})


class ImportApiClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        user_id: int = 1,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.api_base_url).rstrip('/')
        self.user_id = user_id
        self.timeout = timeout if timeout is not None else settings.import_step_timeout_seconds
        self._transport = transport

    async def _request(self, method: str, path: str, params: Optional[dict] = None, json: Optional[dict] = None) -> dict:
        query = {"user_id": self.user_id}
        query.update(params or {})
        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport) as client:
                resp = await client.request(method, f"/api/import{path}", params=query, json=json)
        except httpx.TimeoutException:
            raise CatalogUnavailable(f"API timeout on {path}")
        except httpx.RequestError as e:
            raise CatalogUnavailable(f"API unreachable on {path}: {e}")

        if resp.status_code >= 400:
            try:
                body = resp.json()
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {}
            if resp.status_code == 503 and body.get("error") == "unconfigured":
                raise CatalogNotConfigured(body.get("detail") or "TMDB API key not configured")
            raise CatalogUnavailable(
                f"API error {resp.status_code} on {path}: {body.get('detail') or body.get('error') or resp.text[:200]}",
                status_code=resp.status_code,
            )
        return resp.json()

    async def run_step(self, phase: str, page: int) -> ImportStepResult:
        data = await self._request("GET", "/step", params={"phase": phase, "page": page})
        return ImportStepResult(**data)

    async def read_progress(self) -> ImportProgressState:
        data = await self._request("GET", "/progress")
        return _progress_state(data)

    async def set_importing(self, is_importing: bool) -> None:
        await self._request("POST", "/importing", json={"is_importing": is_importing})

    async def reset_progress(self) -> ImportProgressState:
        return _progress_state(await self._request("POST", "/reset"))
