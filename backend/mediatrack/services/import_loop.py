"""
import_loop.py

Client-side continuation loop for the bulk import.

One ImportLoop drives one user's import: a fixed-period ticker asks the backend for the
next page until both phases are exhausted, the user pauses, or a step fails. At most one
step is in flight at a time; ticks that fire while a step is still running are dropped,
so a slow network never stacks requests on a stale cursor.

`is_importing` in the stored progress is an advisory lock shared by every session of the
user. A loop that sees it raised without having raised it itself refuses to start. Two
sessions racing past that check can both write; the unique index on media_items keeps
the data consistent, the progress row is last-writer-wins.
"""
import asyncio
import inspect
import logging
from enum import Enum
from typing import Callable, Optional, Set

from mediatrack.core.config import settings
from mediatrack.schemas import ImportProgressState, ImportStepResult, ProgressSnapshot
from mediatrack.services.progress import (
    apply_step_result,
    build_snapshot,
    current_page,
    default_progress,
    is_locked,
    to_state,
)

logger = logging.getLogger(__name__)


class ImportLockHeld(Exception):
    """Raised when another session is already driving this user's import."""
    pass


class LoopState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


class IntervalTicker:
    """Calls `callback` every `interval` seconds on the running event loop until stopped."""

    def __init__(self, interval: float, callback: Callable[[], None]):
        self.interval = interval
        self._callback = callback
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        """Cancel future ticks. Synchronous: nothing fires after this returns."""
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self._callback()


class LocalImportBackend:
    """Runs steps in-process against the database and a catalog client."""

    def __init__(self, user_id: int, catalog, session_factory=None):
        if session_factory is None:
            from mediatrack.core.database import SessionLocal
            session_factory = SessionLocal
        self.user_id = user_id
        self.catalog = catalog
        self.session_factory = session_factory

    async def run_step(self, phase: str, page: int) -> ImportStepResult:
        from mediatrack.services.import_step import run_import_step
        with self.session_factory() as db:
            return await run_import_step(db, self.catalog, self.user_id, phase, page)

    async def read_progress(self) -> ImportProgressState:
        from mediatrack import crud
        with self.session_factory() as db:
            return to_state(crud.read_progress(db, self.user_id))

    async def set_importing(self, is_importing: bool) -> None:
        from mediatrack import crud
        with self.session_factory() as db:
            crud.write_progress(db, self.user_id, is_importing=is_importing)

    async def reset_progress(self) -> ImportProgressState:
        from mediatrack import crud
        with self.session_factory() as db:
            return to_state(crud.reset_progress(db, self.user_id))


async def _notify(callback, *args) -> None:
    if callback is None:
        return
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.warning(f"Import loop callback failed: {e}")


class ImportLoop:
    def __init__(
        self,
        backend,
        interval: Optional[float] = None,
        step_timeout: Optional[float] = None,
        on_complete=None,
        on_error=None,
    ):
        self.backend = backend
        self.interval = interval if interval is not None else settings.import_tick_seconds
        self.step_timeout = step_timeout if step_timeout is not None else settings.import_step_timeout_seconds
        self.on_complete = on_complete
        self.on_error = on_error

        self.state = LoopState.IDLE
        self.progress: ImportProgressState = default_progress()
        self.last_error: Optional[str] = None
        self.steps_run = 0

        self._started = False  # this loop raised is_importing
        self._in_flight = False
        self._generation = 0  # bumped by reset(); results of older steps are dropped
        self._ticker = IntervalTicker(self.interval, self._spawn_tick)
        self._tick_tasks: Set[asyncio.Task] = set()

    @property
    def is_locked(self) -> bool:
        return is_locked(self.progress, self._started)

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def snapshot(self) -> ProgressSnapshot:
        return build_snapshot(self.progress, loop_started=self._started)

    async def load(self) -> ProgressSnapshot:
        """Pick up the stored checkpoint; a fresh loop never starts running by itself."""
        self.progress = to_state(await self.backend.read_progress())
        self.state = self._resting_state(self.progress)
        return self.snapshot()

    @staticmethod
    def _resting_state(progress: ImportProgressState) -> LoopState:
        if progress.completed_at is not None:
            return LoopState.COMPLETED
        touched = (
            progress.phase != 'movies'
            or progress.movies_page > 1
            or progress.series_page > 1
            or progress.movies_imported or progress.series_imported
            or progress.movies_skipped or progress.series_skipped
        )
        return LoopState.PAUSED if touched else LoopState.IDLE

    async def start(self) -> None:
        if self.state == LoopState.RUNNING:
            return
        latest = to_state(await self.backend.read_progress())
        if is_locked(latest, self._started):
            self.progress = latest
            raise ImportLockHeld("Import already running in another session")
        self.progress = latest
        if latest.completed_at is not None:
            self.state = LoopState.COMPLETED
            logger.info("Import already complete; reset to start over")
            return

        await self.backend.set_importing(True)
        self.progress.is_importing = True
        self._started = True
        self.last_error = None
        self.state = LoopState.RUNNING
        logger.info(f"Import loop running from {self.progress.phase} page {current_page(self.progress)}")
        self._ticker.start()
        self._spawn_tick()

    async def resume(self) -> None:
        await self.start()

    async def pause(self) -> None:
        """Stop ticking. A step already in flight still completes and is folded in."""
        self._ticker.stop()
        if self.state != LoopState.RUNNING:
            return
        self.state = LoopState.PAUSED
        self.progress.is_importing = False
        self._started = False
        await self.backend.set_importing(False)
        logger.info(f"Import loop paused at {self.progress.phase} page {current_page(self.progress)}")

    async def reset(self) -> ProgressSnapshot:
        """Zero the stored checkpoint once any step already sent has written its own."""
        self._ticker.stop()
        self._generation += 1
        self.state = LoopState.IDLE
        await self.drain()
        self.progress = to_state(await self.backend.reset_progress())
        self._started = False
        self.last_error = None
        logger.info("Import progress reset")
        return self.snapshot()

    def _spawn_tick(self) -> None:
        task = asyncio.get_running_loop().create_task(self.tick())
        self._tick_tasks.add(task)
        task.add_done_callback(self._tick_tasks.discard)

    async def drain(self) -> None:
        """Wait for ticks already fired to finish (other than the caller's own)."""
        current = asyncio.current_task()
        while True:
            pending = [task for task in self._tick_tasks if task is not current]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def tick(self) -> None:
        if self._in_flight or self.state != LoopState.RUNNING:
            return
        self._in_flight = True
        generation = self._generation
        phase = self.progress.phase
        page = current_page(self.progress, phase)
        failure = None
        try:
            result = await asyncio.wait_for(self.backend.run_step(phase, page), timeout=self.step_timeout)
        except Exception as exc:
            failure = exc
        finally:
            self._in_flight = False

        if failure is not None:
            if generation == self._generation:
                await self._fail(failure, phase, page)
            return
        if generation != self._generation:
            logger.info(f"Dropping result of {phase} page {page}: progress was reset meanwhile")
            return
        self.steps_run += 1
        running = self.state == LoopState.RUNNING
        self.progress = apply_step_result(self.progress, result)
        self.progress.is_importing = running and not result.is_complete

        if result.is_complete:
            self._ticker.stop()
            self._started = False
            self.state = LoopState.COMPLETED
            logger.info(f"Import complete: {self.progress.movies_imported + self.progress.series_imported} items imported")
            await _notify(self.on_complete, self.snapshot())

    async def _fail(self, exc: Exception, phase: str, page: int) -> None:
        self._ticker.stop()
        if isinstance(exc, asyncio.TimeoutError):
            message = f"Import step timed out after {self.step_timeout}s ({phase} page {page})"
        else:
            message = str(exc) or type(exc).__name__
        logger.warning(f"Import step failed on {phase} page {page}, pausing: {message}")
        self.last_error = message
        if self.state == LoopState.RUNNING:
            self.state = LoopState.PAUSED
        self.progress.is_importing = False
        if self._started:
            self._started = False
            try:
                await self.backend.set_importing(False)
            except Exception as e:
                logger.warning(f"Could not release import flag after failure: {e}")
        await _notify(self.on_error, exc)
