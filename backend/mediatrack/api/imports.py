"""
imports.py

Bulk import endpoints driven by the client-side continuation loop, plus the manual
trending sync. Catalog errors are turned into 502/503 by the handlers in main.py.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from mediatrack import crud
from mediatrack.api.deps import get_catalog, get_session_factory
from mediatrack.core.database import get_db
from mediatrack.schemas import ImportingFlag, ImportStepResult, Phase, ProgressSnapshot, SyncSummary
from mediatrack.services.import_step import run_import_step
from mediatrack.services.progress import build_snapshot, current_page
from mediatrack.services.trending_sync import sync_trending

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/step", response_model=ImportStepResult)
async def import_step(
    phase: Optional[Phase] = None,
    page: Optional[int] = None,
    user_id: int = 1,
    db: Session = Depends(get_db),
    catalog=Depends(get_catalog),
):
    """Import one page of one phase. Missing phase/page resume from the stored cursor."""
    if phase is None or page is None:
        progress = crud.read_progress(db, user_id)
        if phase is None:
            phase = progress.phase
        if page is None:
            page = current_page(progress, phase)
    try:
        return await run_import_step(db, catalog, user_id, phase, page)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/progress", response_model=ProgressSnapshot)
def get_progress(user_id: int = 1, loop_started: bool = False, db: Session = Depends(get_db)):
    return build_snapshot(crud.read_progress(db, user_id), loop_started=loop_started)


@router.post("/importing", response_model=ProgressSnapshot)
def set_importing(payload: ImportingFlag, user_id: int = 1, db: Session = Depends(get_db)):
    progress = crud.write_progress(db, user_id, is_importing=payload.is_importing)
    logger.info(f"User {user_id} import flag set to {payload.is_importing}")
    return build_snapshot(progress, loop_started=payload.is_importing)


@router.post("/reset", response_model=ProgressSnapshot)
def reset(user_id: int = 1, db: Session = Depends(get_db)):
    logger.info(f"User {user_id} reset import progress")
    return build_snapshot(crud.reset_progress(db, user_id))


@router.post("/sync", response_model=SyncSummary)
async def trigger_sync(
    user_id: int = 1,
    session_factory=Depends(get_session_factory),
    catalog=Depends(get_catalog),
):
    """Run the trending sync for one user right away."""
    summary = await sync_trending(session_factory, catalog, user_ids=[user_id])
    summary.pop("per_user", None)
    return summary
