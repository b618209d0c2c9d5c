"""
Main entrypoint: runs the background sync scheduler, or one sync pass.

FastAPI runs separately under uvicorn.

Usage:
    python -m splitsync             # starts the scheduler
    python -m splitsync sync        # one sync run, exits non-zero on failure
    python -m splitsync sync force  # same, ignoring staleness and throttling
    uvicorn splitsync.api.main:app --host 0.0.0.0 --port 8000  # starts API
"""
import asyncio
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


async def _run_once(force: bool) -> int:
    from splitsync.errors import SyncRunError
    from splitsync.sync.provider import get_orchestrator, get_remote

    try:
        state = await get_orchestrator().perform_sync(force_sync=force)
        logger.info("Sync finished: %s", state)
        return 0
    except SyncRunError as exc:
        logger.error("Sync failed: %s", exc)
        return 1
    finally:
        await get_remote().aclose()


async def _run_scheduler() -> None:
    from splitsync.config import get_settings
    from splitsync.db.engine import get_engine
    from splitsync.scheduler.jobs import build_scheduler
    from splitsync.sync.provider import get_remote

    settings = get_settings()
    scheduler = build_scheduler(get_engine())
    scheduler.start()
    logger.info(
        "Scheduler started (sync every %d min, feed check every %d min)",
        settings.sync_interval_minutes,
        settings.feed_refresh_minutes,
    )

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()
        await get_remote().aclose()
        logger.info("Goodbye.")


if __name__ == "__main__":
    # Dispatch on first argument: `python -m splitsync sync [force]` or just `python -m splitsync`
    if len(sys.argv) > 1 and sys.argv[1] == "sync":
        sys.exit(asyncio.run(_run_once(force="force" in sys.argv[2:])))
    else:
        asyncio.run(_run_scheduler())
