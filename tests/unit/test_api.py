import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import FakeCatalog, list_payload, raw_item
from mediatrack.api.deps import get_catalog, get_session_factory
from mediatrack.core.database import get_db
from mediatrack.main import app
from mediatrack.services.import_api_client import ImportApiClient
from mediatrack.services.import_loop import ImportLoop, LoopState
from mediatrack.services.tmdb_client import CatalogNotConfigured, CatalogUnavailable


def _pages():
    return {
        ("movies", 1): [list_payload([raw_item(1), raw_item(2, genre_ids=(16,))], 1, 2)] * 3,
        ("movies", 2): [list_payload([raw_item(3)], 2, 2)] * 3,
        ("series", 1): [list_payload([raw_item(4, genre_ids=(18,))], 1, 1)] * 3,
    }


@pytest.fixture
def catalog():
    return FakeCatalog(pages=_pages(), trending={"movie": list_payload([raw_item(50)])})


@pytest.fixture
def client(session_factory, catalog):
    def override_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_catalog] = lambda: catalog
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_step_imports_a_page(client):
    resp = client.get("/api/import/step", params={"phase": "movies", "page": 1})
    assert resp.status_code == 200
    body = resp.json()
    assert body["imported"] == 2
    assert body["has_more"] is True
    assert body["next_page"] == 2

    progress = client.get("/api/import/progress").json()
    assert progress["movies_page"] == 2
    assert progress["movies_imported"] == 2
    assert progress["movies_total_pages"] == 2
    assert progress["movies_percent"] == 100.0


def test_step_without_cursor_resumes_from_progress(client):
    client.get("/api/import/step", params={"phase": "movies", "page": 1})
    body = client.get("/api/import/step").json()
    assert (body["phase"], body["page"]) == ("movies", 2)
    assert body["next_phase"] == "series"


def test_catalog_errors_map_to_status_codes(client, catalog):
    catalog.fail_with = CatalogUnavailable("TMDB timeout on /movie/popular")
    resp = client.get("/api/import/step", params={"phase": "movies", "page": 1})
    assert resp.status_code == 502
    assert resp.json()["error"] == "catalog_unavailable"

    catalog.fail_with = CatalogUnavailable("TMDB quota exhausted on /movie/popular", status_code=429)
    resp = client.get("/api/import/step", params={"phase": "movies", "page": 1})
    assert resp.status_code == 502
    assert resp.json()["error"] == "catalog_unavailable"

    catalog.key = ""
    resp = client.get("/api/import/step", params={"phase": "movies", "page": 1})
    assert resp.status_code == 503
    assert resp.json()["error"] == "unconfigured"


def test_bad_parameters_are_rejected(client):
    assert client.get("/api/import/step", params={"phase": "episodes", "page": 1}).status_code == 422
    assert client.get("/api/import/step", params={"phase": "movies", "page": 0}).status_code == 400
    assert client.get("/api/import/step", params={"page": 0}).status_code == 400


def test_importing_flag_and_lock_projection(client):
    resp = client.post("/api/import/importing", json={"is_importing": True})
    assert resp.status_code == 200
    assert resp.json()["is_importing"] is True

    assert client.get("/api/import/progress").json()["is_locked"] is True
    assert client.get("/api/import/progress", params={"loop_started": True}).json()["is_locked"] is False

    client.post("/api/import/importing", json={"is_importing": False})
    assert client.get("/api/import/progress").json()["is_locked"] is False


def test_reset_zeroes_progress(client):
    client.get("/api/import/step", params={"phase": "movies", "page": 1})
    snap = client.post("/api/import/reset").json()
    assert snap["movies_page"] == 1
    assert snap["total_imported"] == 0
    assert snap["completed_at"] is None


def test_manual_trending_sync(client):
    body = client.post("/api/import/sync", params={"user_id": 2}).json()
    assert body == {"imported": 1, "skipped": 0, "users_processed": 1, "users_failed": 0}


def test_media_listing_and_upload_marks(client):
    client.get("/api/import/step", params={"phase": "movies", "page": 1})

    items = client.get("/api/media").json()
    assert {i["media_id"] for i in items} == {"1-movie", "2-anime"}
    assert all(i["is_uploaded"] is False for i in items)

    toggled = client.post("/api/media/uploads/2-anime/toggle").json()
    assert toggled == {"media_id": "2-anime", "uploaded": True}
    assert client.get("/api/media/uploads").json() == ["2-anime"]

    uploaded = client.get("/api/media", params={"uploaded": True}).json()
    assert [i["media_id"] for i in uploaded] == ["2-anime"]
    assert uploaded[0]["is_uploaded"] is True
    assert [i["media_id"] for i in client.get("/api/media", params={"media_type": "movie"}).json()] == ["1-movie"]
    assert client.get("/api/media", params={"media_type": "podcast"}).status_code == 400


def test_loop_drives_the_api_to_completion(client, session_factory):
    api = ImportApiClient("http://testserver", user_id=1, transport=httpx.ASGITransport(app=app))

    async def scenario():
        loop = ImportLoop(api, interval=0.01, step_timeout=5.0)
        await loop.load()
        await loop.start()
        deadline = asyncio.get_running_loop().time() + 5
        while loop.state == LoopState.RUNNING and asyncio.get_running_loop().time() < deadline:
            await asyncio.sleep(0.01)
        await loop.drain()
        return loop

    loop = asyncio.run(scenario())

    assert loop.state == LoopState.COMPLETED
    assert loop.snapshot().total_imported == 4
    stored = client.get("/api/import/progress").json()
    assert stored["completed_at"] is not None
    assert stored["is_importing"] is False
    assert stored["series_imported"] == 1


def test_api_client_maps_error_responses():
    def handler(request):
        if request.url.path.endswith("/step"):
            return httpx.Response(503, json={"error": "unconfigured", "detail": "TMDB API key not configured"})
        return httpx.Response(502, json={"error": "catalog_unavailable"})

    api = ImportApiClient("http://api.test", transport=httpx.MockTransport(handler))
    with pytest.raises(CatalogNotConfigured):
        asyncio.run(api.run_step("movies", 1))
    with pytest.raises(CatalogUnavailable) as exc:
        asyncio.run(api.read_progress())
    assert exc.value.status_code == 502
