"""
Shared fixtures.

Everything runs against the in-memory store with a manual clock, so no
Couchbase cluster is needed and time only moves when a test moves it.
"""
import asyncio
import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

# Must be set before main is imported anywhere
os.environ["STORE_BACKEND"] = "memory"
os.environ["AUTH_JWT_SECRET"] = "test-secret-for-hs256-tokens-0123456789"
os.environ["EXPIRY_SWEEP_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "test"

from marketplace.access import Principal
from marketplace.engine import ReservationEngine
from marketplace.listings import ListingDraft, ListingService
from marketplace.memory_store import InMemoryMarketStore
from utils.clock import ManualClock

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return ManualClock(NOW)


@pytest.fixture
def store():
    return InMemoryMarketStore()


class YieldingMarketStore(InMemoryMarketStore):
    """Suspends on every read so concurrent callers interleave."""

    async def get_listing(self, listing_id):
        await asyncio.sleep(0)
        return await super().get_listing(listing_id)

    async def get_order(self, order_id):
        await asyncio.sleep(0)
        return await super().get_order(order_id)


@pytest.fixture
def yielding_store():
    return YieldingMarketStore()


@pytest.fixture
def listing_service(store, clock):
    return ListingService(store, clock)


@pytest.fixture
def engine(store, clock):
    return ReservationEngine(store, clock)


@pytest.fixture
def seller():
    return Principal(
        user_id="seller-1",
        role="seller",
        name="Hollis Dining",
        email="dining@campus.edu",
        phone="555-0100",
    )


@pytest.fixture
def other_seller():
    return Principal(user_id="seller-2", role="seller", name="Pizza Place")


@pytest.fixture
def buyer():
    return Principal(
        user_id="buyer-1",
        role="buyer",
        name="Sam Student",
        email="Sam@Campus.edu",
        phone="555-0199",
    )


@pytest.fixture
def other_buyer():
    return Principal(user_id="buyer-2", role="buyer", name="Alex")


def make_draft(**overrides) -> ListingDraft:
    fields = dict(
        title="Leftover pasta trays",
        description="Penne with marinara, still warm",
        quantity=5,
        unit_label="trays",
        price=Decimal("2.50"),
        location="Hollis Hall, back entrance",
        pickup_window_start=NOW + timedelta(hours=1),
        pickup_window_end=NOW + timedelta(hours=3),
        seller_type="dining_hall",
        dining_hall="Hollis",
        contact_name="Jordan",
        contact_email="Dining@Campus.edu ",
        contact_phone="555-0100",
        dietary_tags=["vegetarian"],
    )
    fields.update(overrides)
    return ListingDraft(**fields)


@pytest.fixture
def draft_factory():
    return make_draft


@pytest.fixture
def make_listing(listing_service, seller):
    async def _make(owner=None, **overrides):
        return await listing_service.create_listing(owner or seller, make_draft(**overrides))
    return _make


@pytest.fixture
def concurrent_engine(yielding_store, clock):
    return ReservationEngine(yielding_store, clock)


@pytest.fixture
def make_concurrent_listing(yielding_store, clock, seller):
    service = ListingService(yielding_store, clock)

    async def _make(**overrides):
        return await service.create_listing(seller, make_draft(**overrides))
    return _make
