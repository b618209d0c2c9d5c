"""
APScheduler jobs for background sync.

  periodic_sync     every SYNC_INTERVAL_MINUTES: one orchestrator run
  transaction_feed  every FEED_REFRESH_MINUTES: ask the refresh policy
                    whether to call the bank feed, and do so if admitted
  cache_cleanup     nightly: drop expired cached feed transactions

Every job body catches and logs its own errors so the scheduler stays alive.
"""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from splitsync.config import get_settings
from splitsync.timeutils import utcnow

logger = logging.getLogger(__name__)


def build_scheduler(engine) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        engine: SQLAlchemy engine passed to the job bodies.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _periodic_sync,
        trigger="interval",
        minutes=settings.sync_interval_minutes,
        id="periodic_sync",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        _refresh_transactions,
        trigger="interval",
        minutes=settings.feed_refresh_minutes,
        id="transaction_feed",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        kwargs={"engine": engine},
    )
    scheduler.add_job(
        _cleanup_cache,
        trigger="cron",
        hour=settings.cache_cleanup_hour,
        minute=0,
        id="cache_cleanup",
        replace_existing=True,
        kwargs={"engine": engine},
    )

    return scheduler


async def _periodic_sync() -> None:
    """Run the orchestrator unforced; managers that are up to date skip themselves."""
    from splitsync.errors import SyncRunError
    from splitsync.sync.provider import get_orchestrator

    logger.info("Periodic sync starting at %s", utcnow().isoformat())
    try:
        state = await get_orchestrator().perform_sync(force_sync=False)
        logger.info("Periodic sync finished: %s", state)
    except SyncRunError as exc:
        if exc.offline:
            logger.warning("Periodic sync skipped, server unreachable: %s", exc)
        else:
            logger.error("Periodic sync failed: %s", exc)
    except Exception as exc:
        logger.error("Periodic sync failed: %s", exc)


async def _refresh_transactions(engine) -> None:
    from splitsync.feed.service import build_feed_service
    from splitsync.storage.kv import SqlKeyValueStore
    from splitsync.sync.provider import build_remote

    settings = get_settings()
    remote = build_remote(settings)
    try:
        service = build_feed_service(engine, remote, SqlKeyValueStore(engine), settings=settings)
        transactions = await service.fetch_and_cache(settings.user_id)
        logger.info("Transaction feed job: %d transactions available", len(transactions))
    except Exception as exc:
        logger.error("Transaction feed job failed: %s", exc)
    finally:
        await remote.aclose()


async def _cleanup_cache(engine) -> None:
    from splitsync.feed.cache import TransactionCache

    try:
        removed = TransactionCache(engine).clear_expired()
        logger.info("Cache cleanup removed %d expired transactions", removed)
    except Exception as exc:
        logger.error("Cache cleanup failed: %s", exc)
