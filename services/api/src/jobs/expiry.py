"""APScheduler job that expires listings whose pickup window ended before today."""

from datetime import datetime, tzinfo
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from marketplace.store import MarketStore
from models.entities.couchbase.listings import ListingData
from models.rules.listings import is_stale
from utils import log
from utils.clock import Clock

logger = log.get_logger(__name__)

JOB_ID = "expiry_sweep"


class ExpirySweeper:
    """
    Daily safety net behind read-time status derivation.

    Runs once at start-up to catch up on days missed while the service was
    down, then every day at ``hour:minute`` in ``tz``. A listing is expired
    when its window ended before the start of the current day in ``tz``.
    """

    def __init__(
        self,
        store: MarketStore,
        clock: Clock,
        tz: tzinfo,
        scheduler: Optional[AsyncIOScheduler] = None,
        hour: int = 0,
        minute: int = 0,
    ):
        self._store = store
        self._clock = clock
        self._tz = tz
        self._scheduler = scheduler or AsyncIOScheduler()
        self._hour = hour
        self._minute = minute

    @property
    def scheduler(self) -> AsyncIOScheduler:
        return self._scheduler

    def start_of_day(self) -> datetime:
        local = self._clock.now().astimezone(self._tz)
        return local.replace(hour=0, minute=0, second=0, microsecond=0)

    async def run_once(self) -> int:
        """Expire every stale listing. Returns how many were expired."""
        cutoff = self.start_of_day()
        listing_ids = await self._store.stale_listing_ids(cutoff)
        logger.info(f"Expiry sweep starting: {len(listing_ids)} candidate(s) before {cutoff.isoformat()}")

        expired = 0
        for listing_id in listing_ids:
            changed = []

            def _expire(data: ListingData) -> None:
                # Re-checked under serialization; the listing may have moved on
                if is_stale(data, cutoff):
                    data.status = "expired"
                    changed.append(listing_id)

            try:
                await self._store.mutate_listing(listing_id, _expire)
            except Exception as e:
                logger.error(f"Expiry sweep failed for listing {listing_id}: {e}", exc_info=True)
                continue
            expired += len(changed)

        logger.info(f"Expiry sweep completed: {expired} listing(s) expired")
        return expired

    async def sweep_job(self) -> None:
        """Scheduled entry point. Failures are logged and retried on the next run."""
        try:
            await self.run_once()
        except Exception as e:
            logger.error(f"Expiry sweep failed: {e}", exc_info=True)

    async def start(self) -> None:
        await self.sweep_job()

        self._scheduler.add_job(
            self.sweep_job,
            trigger=CronTrigger(hour=self._hour, minute=self._minute, timezone=self._tz),
            id=JOB_ID,
            name="Daily Listing Expiry Sweep",
            replace_existing=True,
            max_instances=1,
        )
        if not self._scheduler.running:
            self._scheduler.start()
        logger.info(f"APScheduler started with expiry sweep ({self._hour:02d}:{self._minute:02d} {self._tz})")

    def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("APScheduler shut down")
