"""
run_import.py

Drive a user's bulk import from the command line.

    python -m mediatrack.scripts.run_import run [--api-url URL] [--user-id N]
    python -m mediatrack.scripts.run_import status|reset|sync

Without --api-url the steps run in-process against DATABASE_URL; with it, the loop
talks to a running API. Ctrl-C pauses the import so `run` picks it up later.
"""
import argparse
import asyncio
import sys

from mediatrack.utils.logger import logger
from mediatrack.utils.timezone import format_iso_utc


def _backend(args):
    if args.api_url:
        from mediatrack.services.import_api_client import ImportApiClient
        return ImportApiClient(args.api_url, user_id=args.user_id)
    from mediatrack.services.import_loop import LocalImportBackend
    from mediatrack.services.tmdb_client import TMDBClient
    return LocalImportBackend(args.user_id, TMDBClient())


def _print_snapshot(snap) -> None:
    print(
        f"phase={snap.phase} movies {snap.movies_page}/{snap.movies_total_pages} ({snap.movies_percent:.1f}%) "
        f"series {snap.series_page}/{snap.series_total_pages} ({snap.series_percent:.1f}%) "
        f"imported={snap.total_imported} skipped={snap.total_skipped} "
        f"collections={snap.collections_discovered}"
        + (" [running elsewhere]" if snap.is_locked else "")
        + (f" [complete {format_iso_utc(snap.completed_at)}]" if snap.completed_at else "")
    )


async def _run(args) -> int:
    from mediatrack.services.import_loop import ImportLoop, ImportLockHeld, LoopState

    loop = ImportLoop(
        _backend(args),
        interval=args.interval,
        on_complete=lambda snap: print("✅ Import complete"),
        on_error=lambda exc: print(f"❌ Import paused: {exc}"),
    )
    _print_snapshot(await loop.load())
    try:
        await loop.start()
    except ImportLockHeld as e:
        print(f"{e}; use `reset` or wait for it to finish")
        return 1

    reported = -1
    try:
        while loop.state == LoopState.RUNNING:
            await asyncio.sleep(loop.interval)
            if loop.steps_run != reported:
                reported = loop.steps_run
                _print_snapshot(loop.snapshot())
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Interrupted, pausing import")
        await loop.pause()
        await loop.drain()
        _print_snapshot(loop.snapshot())
        raise
    await loop.drain()
    _print_snapshot(loop.snapshot())
    return 0 if loop.state == LoopState.COMPLETED else 1


async def _status(args) -> int:
    from mediatrack.services.progress import build_snapshot
    _print_snapshot(build_snapshot(await _backend(args).read_progress()))
    return 0


async def _reset(args) -> int:
    from mediatrack.services.progress import build_snapshot
    _print_snapshot(build_snapshot(await _backend(args).reset_progress()))
    return 0


async def _sync(args) -> int:
    from mediatrack.core.database import SessionLocal
    from mediatrack.services.tmdb_client import TMDBClient
    from mediatrack.services.trending_sync import sync_trending
    user_ids = None if args.all_users else [args.user_id]
    summary = await sync_trending(SessionLocal, TMDBClient(), user_ids=user_ids)
    summary.pop("per_user", None)
    print(summary)
    return 0 if not summary["users_failed"] else 1


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Bulk-import the TMDB catalog into a user's library")
    p.add_argument("--user-id", type=int, default=1, help="User to import for (default 1)")
    p.add_argument("--api-url", default=None, help="Drive a running API instead of the local database")
    sub = p.add_subparsers(dest="cmd", required=True)

    pr = sub.add_parser("run", help="Start or resume the import until done, paused or failed")
    pr.add_argument("--interval", type=float, default=None, help="Seconds between steps")
    pr.set_defaults(func=_run)

    sub.add_parser("status", help="Print stored progress").set_defaults(func=_status)
    sub.add_parser("reset", help="Zero progress and counters").set_defaults(func=_reset)
    ps = sub.add_parser("sync", help="Run the trending sync now (local database only)")
    ps.add_argument("--all-users", action="store_true", help="Sync every user instead of --user-id")
    ps.set_defaults(func=_sync)
    return p


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.cmd == "sync" and args.api_url:
        parser.error("sync runs against the local database; drop --api-url")
    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
