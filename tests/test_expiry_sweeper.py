from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from jobs.expiry import JOB_ID, ExpirySweeper
from marketplace.memory_store import InMemoryMarketStore
from marketplace.queries import ListingQuery

from conftest import NOW


class FailingStore(InMemoryMarketStore):

    async def stale_listing_ids(self, cutoff):
        raise RuntimeError("store unavailable")


@pytest.fixture
def sweeper(store, clock):
    return ExpirySweeper(store, clock, timezone.utc)


class TestRunOnce:

    @pytest.mark.asyncio
    async def test_yesterdays_listing_expires(self, sweeper, make_listing, listing_service, store, clock):
        listing = await make_listing()
        clock.advance(days=1)

        # Hidden from buyers before the sweep has run
        assert await listing_service.search(ListingQuery()) == []
        assert (await store.get_listing(listing.id)).data.status == "active"

        assert await sweeper.run_once() == 1
        assert (await store.get_listing(listing.id)).data.status == "expired"

        assert await sweeper.run_once() == 0

    @pytest.mark.asyncio
    async def test_todays_listings_are_left_alone(self, sweeper, make_listing, store, clock):
        listing = await make_listing()
        clock.advance(hours=5)

        assert await sweeper.run_once() == 0
        assert (await store.get_listing(listing.id)).data.status == "active"

    @pytest.mark.asyncio
    async def test_sold_out_expires_and_cancelled_stays(
        self, sweeper, make_listing, listing_service, seller, store, clock
    ):
        sold_out = await make_listing()
        cancelled = await make_listing()
        await listing_service.update_listing(seller, sold_out.id, {"available_units": 0})
        await listing_service.cancel_listing(seller, cancelled.id)
        clock.advance(days=2)

        assert await sweeper.run_once() == 1
        assert (await store.get_listing(sold_out.id)).data.status == "expired"
        assert (await store.get_listing(cancelled.id)).data.status == "cancelled"

    @pytest.mark.asyncio
    async def test_cutoff_is_local_midnight(self, store, clock, make_listing):
        # 2026-03-10 00:00 in Chicago (CDT) is 05:00 UTC
        clock.set(datetime(2026, 3, 10, 2, 0, tzinfo=timezone.utc))
        before = await make_listing(
            pickup_window_start=datetime(2026, 3, 10, 2, 30, tzinfo=timezone.utc),
            pickup_window_end=datetime(2026, 3, 10, 4, 0, tzinfo=timezone.utc),
        )
        after = await make_listing(
            pickup_window_start=datetime(2026, 3, 10, 3, 0, tzinfo=timezone.utc),
            pickup_window_end=datetime(2026, 3, 10, 6, 0, tzinfo=timezone.utc),
        )
        clock.set(NOW)

        sweeper = ExpirySweeper(store, clock, ZoneInfo("America/Chicago"))
        assert sweeper.start_of_day() == datetime(2026, 3, 10, 5, 0, tzinfo=timezone.utc)
        assert await sweeper.run_once() == 1
        assert (await store.get_listing(before.id)).data.status == "expired"
        assert (await store.get_listing(after.id)).data.status == "active"


class TestScheduling:

    @pytest.mark.asyncio
    async def test_failed_sweep_is_logged_not_raised(self, clock, caplog):
        sweeper = ExpirySweeper(FailingStore(), clock, timezone.utc)

        await sweeper.sweep_job()

        assert "Expiry sweep failed: store unavailable" in caplog.text

    @pytest.mark.asyncio
    async def test_start_catches_up_and_schedules(self, store, clock, make_listing):
        listing = await make_listing()
        clock.advance(days=1)
        scheduler = AsyncIOScheduler()
        sweeper = ExpirySweeper(store, clock, timezone.utc, scheduler=scheduler, hour=0, minute=5)

        await sweeper.start()
        try:
            assert (await store.get_listing(listing.id)).data.status == "expired"
            job = scheduler.get_job(JOB_ID)
            assert job is not None
            assert job.next_run_time is not None
        finally:
            sweeper.stop()

        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_start_survives_failing_catch_up(self, clock):
        scheduler = AsyncIOScheduler()
        sweeper = ExpirySweeper(FailingStore(), clock, timezone.utc, scheduler=scheduler)

        await sweeper.start()
        try:
            assert scheduler.get_job(JOB_ID) is not None
        finally:
            sweeper.stop()
