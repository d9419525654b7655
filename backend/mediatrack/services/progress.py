"""
progress.py

Read-side projection of import progress plus the fold that applies one step result.

The fold is shared by the server (persisting the checkpoint after a step) and the
continuation loop (updating its local copy), so both sides agree on what a step means:
counters add, this phase's cursor and total pages are overwritten, the phase only moves
movies -> series, and completed_at is stamped once.
"""
from typing import Optional, Union

from mediatrack.core.config import settings
from mediatrack.schemas import ImportProgressState, ImportStepResult, ProgressSnapshot
from mediatrack.utils.timezone import utc_now


def default_progress(total_pages: Optional[int] = None) -> ImportProgressState:
    total = total_pages or settings.import_max_pages
    return ImportProgressState(movies_total_pages=total, series_total_pages=total)


def to_state(progress) -> ImportProgressState:
    """Accept an ORM row, a state or a snapshot and return a plain ImportProgressState."""
    return ImportProgressState(**{name: getattr(progress, name) for name in ImportProgressState.model_fields})


def current_page(progress, phase: Optional[str] = None) -> int:
    phase = phase or progress.phase
    return progress.movies_page if phase == 'movies' else progress.series_page


def progress_percent(progress, phase: str) -> float:
    if phase == 'movies':
        page, total = progress.movies_page, progress.movies_total_pages
    else:
        page, total = progress.series_page, progress.series_total_pages
    return min(page / max(total or 0, 1) * 100, 100.0)


def total_imported(progress) -> int:
    return progress.movies_imported + progress.series_imported


def total_skipped(progress) -> int:
    return progress.movies_skipped + progress.series_skipped


def is_locked(progress, loop_started: bool) -> bool:
    """Another session holds the advisory lock: the flag is set but we did not set it."""
    return bool(progress.is_importing) and not loop_started


def build_snapshot(progress, loop_started: bool = False) -> ProgressSnapshot:
    state = to_state(progress)
    return ProgressSnapshot(
        **state.model_dump(),
        movies_percent=progress_percent(state, 'movies'),
        series_percent=progress_percent(state, 'series'),
        total_imported=total_imported(state),
        total_skipped=total_skipped(state),
        is_locked=is_locked(state, loop_started),
    )


def apply_step_result(progress: Union[ImportProgressState, object], result: ImportStepResult) -> ImportProgressState:
    """Fold a step result into progress and return the new state (input is not mutated)."""
    state = to_state(progress)
    phase = result.phase
    setattr(state, f"{phase}_imported", getattr(state, f"{phase}_imported") + result.imported)
    setattr(state, f"{phase}_skipped", getattr(state, f"{phase}_skipped") + result.skipped)
    state.collections_discovered += result.collections_added
    setattr(state, f"{phase}_total_pages", result.total_pages)

    if result.next_phase == phase:
        setattr(state, f"{phase}_page", max(1, min(result.next_page, result.total_pages + 1)))
    else:
        # Phase exhausted: park its cursor one past the last page and hand over
        setattr(state, f"{phase}_page", max(1, min(result.page + 1, result.total_pages + 1)))
        setattr(state, f"{result.next_phase}_page", result.next_page)
    if not (state.phase == 'series' and result.next_phase == 'movies'):
        state.phase = result.next_phase

    state.is_importing = not result.is_complete
    if result.is_complete and state.completed_at is None:
        state.completed_at = utc_now()
    return state
