from fastapi import FastAPI
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request
import logging

from mediatrack.api import imports, media
from mediatrack.core.database import init_db
from mediatrack.services.tmdb_client import CatalogNotConfigured, CatalogUnavailable

logger = logging.getLogger(__name__)

app = FastAPI(title="MediaTrack API", version="1.0.0")

# Add GZip compression middleware for better transfer performance
app.add_middleware(GZipMiddleware, minimum_size=1000)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(imports.router, prefix="/api/import", tags=["Import"])
app.include_router(media.router, prefix="/api/media", tags=["Media"])


@app.exception_handler(CatalogUnavailable)
async def catalog_unavailable_handler(request: Request, exc: CatalogUnavailable):
    logger.warning(f"{request.url.path}: catalog unavailable: {exc}")
    return JSONResponse(status_code=502, content={"error": "catalog_unavailable", "detail": str(exc)})


@app.exception_handler(CatalogNotConfigured)
async def catalog_unconfigured_handler(request: Request, exc: CatalogNotConfigured):
    return JSONResponse(status_code=503, content={"error": "unconfigured", "detail": str(exc)})


@app.on_event("startup")
async def startup_event():
    await init_db()


@app.get("/")
def root():
    return {"status": "MediaTrack API Running"}

@app.get("/health")
async def health_check():
    """Simple health check endpoint for load balancers/monitoring"""
    from sqlalchemy import text
    from mediatrack.core.database import SessionLocal
    checks = {"database": "ok", "redis": "ok"}
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Health check: database unavailable: {e}")
        checks["database"] = "error"
    try:
        from mediatrack.core.redis_client import get_redis
        await get_redis().ping()
    except Exception as e:
        logger.warning(f"Health check: redis unavailable: {e}")
        checks["redis"] = "error"
    status = "healthy" if checks["database"] == "ok" else "unhealthy"
    return JSONResponse(status_code=200 if status == "healthy" else 503, content={"status": status, **checks})
