from mediatrack.schemas import ImportStepResult
from mediatrack.services.progress import (
    apply_step_result,
    build_snapshot,
    current_page,
    default_progress,
    is_locked,
    progress_percent,
    total_imported,
    total_skipped,
)


def _step(phase="movies", page=1, total=10, imported=5, skipped=1, next_phase=None, next_page=None,
          has_more=None, complete=False, collections=0):
    has_more = page < total if has_more is None else has_more
    return ImportStepResult(
        phase=phase, page=page, imported=imported, skipped=skipped, collections_added=collections,
        total_pages=total, has_more=has_more,
        next_phase=next_phase or phase, next_page=next_page or page + 1, is_complete=complete,
    )


def test_default_progress_starts_at_movies_page_one():
    progress = default_progress()
    assert progress.phase == "movies"
    assert (progress.movies_page, progress.series_page) == (1, 1)
    assert progress.movies_total_pages == 500
    assert default_progress(total_pages=20).series_total_pages == 20
    assert progress.completed_at is None


def test_percent_is_capped_and_safe_for_zero_totals():
    progress = default_progress(total_pages=10)
    progress.movies_page = 5
    assert progress_percent(progress, "movies") == 50.0
    progress.movies_page = 11
    assert progress_percent(progress, "movies") == 100.0
    progress.series_total_pages = 0
    assert progress_percent(progress, "series") == 100.0


def test_totals_and_lock():
    progress = default_progress()
    progress.movies_imported, progress.series_imported = 120, 30
    progress.movies_skipped, progress.series_skipped = 4, 6
    assert total_imported(progress) == 150
    assert total_skipped(progress) == 10

    progress.is_importing = True
    assert is_locked(progress, loop_started=False) is True
    assert is_locked(progress, loop_started=True) is False
    progress.is_importing = False
    assert is_locked(progress, loop_started=False) is False


def test_snapshot_carries_stored_and_derived_fields():
    progress = default_progress(total_pages=4)
    progress.movies_page = 2
    progress.movies_imported = 30
    progress.is_importing = True

    snap = build_snapshot(progress)

    assert snap.movies_page == 2
    assert snap.movies_percent == 50.0
    assert snap.series_percent == 25.0
    assert snap.total_imported == 30
    assert snap.is_locked is True
    assert build_snapshot(snap, loop_started=True).is_locked is False


def test_fold_adds_counters_and_advances_cursor():
    progress = default_progress()
    state = apply_step_result(progress, _step(imported=45, skipped=5, collections=2))
    state = apply_step_result(state, _step(page=2, imported=40, skipped=10))

    assert state.movies_imported == 85
    assert state.movies_skipped == 15
    assert state.collections_discovered == 2
    assert state.movies_page == 3
    assert state.movies_total_pages == 10
    assert progress.movies_imported == 0


def test_fold_never_moves_backwards_in_phase():
    state = default_progress()
    state.phase = "series"
    state = apply_step_result(state, _step(phase="movies", page=3, total=3, next_phase="movies", next_page=4, has_more=False))
    assert state.phase == "series"


def test_fold_hands_over_and_parks_finished_phase():
    state = apply_step_result(
        default_progress(),
        _step(page=3, total=3, has_more=False, next_phase="series", next_page=1),
    )
    assert state.phase == "series"
    assert current_page(state) == 1
    assert state.movies_page == 4
    assert state.is_importing is True


def test_fold_clamps_cursor_past_total():
    state = apply_step_result(default_progress(), _step(page=3, total=4, next_page=9))
    assert state.movies_page == 5


def test_completion_timestamp_is_set_once():
    state = default_progress()
    state.phase = "series"
    done = _step(phase="series", page=2, total=2, has_more=False, next_page=3, complete=True)

    first = apply_step_result(state, done)
    assert first.completed_at is not None
    assert first.is_importing is False

    second = apply_step_result(first, done)
    assert second.completed_at == first.completed_at
