import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from marketplace.access import SYSTEM
from marketplace.errors import (
    InsufficientInventory,
    InvalidQuantity,
    InvalidTransition,
    NotCancellable,
    NotFound,
    PermissionDenied,
    SelfReservationForbidden,
    Unavailable,
)


class TestReserve:

    @pytest.mark.asyncio
    async def test_reserve_snapshots_listing_and_buyer(self, engine, make_listing, buyer, store):
        listing = await make_listing()

        order = await engine.reserve(listing.id, buyer, 2, notes="  after class  ")

        assert order.data.status == "pending"
        assert order.data.quantity == 2
        assert order.data.unit_price == Decimal("2.50")
        assert order.data.total_price == Decimal("5.00")
        assert order.data.seller_id == "seller-1"
        assert order.data.buyer_email == "sam@campus.edu"
        assert order.data.listing_title == "Leftover pasta trays"
        assert order.data.pickup_location == listing.data.location
        assert order.data.pickup_window_end == listing.data.pickup_window_end
        assert order.data.notes == "after class"

        stored = await store.get_listing(listing.id)
        assert stored.data.available_units == 3

    @pytest.mark.asyncio
    async def test_sell_out_then_reject(self, engine, make_listing, buyer, other_buyer, store):
        listing = await make_listing(quantity=5)

        await engine.reserve(listing.id, buyer, 2)
        await engine.reserve(listing.id, other_buyer, 3)

        stored = await store.get_listing(listing.id)
        assert stored.data.available_units == 0
        assert stored.data.status == "sold_out"

        with pytest.raises(InsufficientInventory) as exc:
            await engine.reserve(listing.id, buyer, 1)
        assert exc.value.remaining == 0

    @pytest.mark.asyncio
    async def test_insufficient_reports_remaining(self, engine, make_listing, buyer):
        listing = await make_listing(quantity=3)
        with pytest.raises(InsufficientInventory) as exc:
            await engine.reserve(listing.id, buyer, 4)
        assert exc.value.remaining == 3
        assert "Only 3 unit(s) available" in exc.value.message

    @pytest.mark.asyncio
    async def test_missing_listing(self, engine, buyer):
        with pytest.raises(NotFound):
            await engine.reserve("missing", buyer, 1)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quantity", [0, -1, 1.5, "2", True])
    async def test_quantity_must_be_positive_integer(self, engine, make_listing, buyer, quantity):
        listing = await make_listing()
        with pytest.raises(InvalidQuantity):
            await engine.reserve(listing.id, buyer, quantity)

    @pytest.mark.asyncio
    async def test_not_found_checked_before_quantity(self, engine, buyer):
        with pytest.raises(NotFound):
            await engine.reserve("missing", buyer, 0)

    @pytest.mark.asyncio
    async def test_self_reservation_forbidden_regardless_of_inventory(self, engine, make_listing, seller):
        listing = await make_listing(quantity=1)
        with pytest.raises(SelfReservationForbidden):
            await engine.reserve(listing.id, seller, 50)

    @pytest.mark.asyncio
    async def test_cancelled_listing_unavailable(self, engine, make_listing, listing_service, seller, buyer):
        listing = await make_listing()
        await listing_service.cancel_listing(seller, listing.id)

        with pytest.raises(Unavailable) as exc:
            await engine.reserve(listing.id, buyer, 1)
        assert exc.value.remaining == 5

    @pytest.mark.asyncio
    async def test_lapsed_window_unavailable(self, engine, make_listing, buyer, clock, store):
        listing = await make_listing()
        clock.advance(hours=5)

        with pytest.raises(Unavailable):
            await engine.reserve(listing.id, buyer, 1)
        stored = await store.get_listing(listing.id)
        assert stored.data.available_units == 5

    @pytest.mark.asyncio
    async def test_rejected_reservation_writes_nothing(self, engine, make_listing, buyer, store):
        listing = await make_listing(quantity=2)
        with pytest.raises(InsufficientInventory):
            await engine.reserve(listing.id, buyer, 3)

        assert await engine.list_orders(buyer) == []
        stored = await store.get_listing(listing.id)
        assert stored.data.available_units == 2

    @pytest.mark.asyncio
    async def test_concurrent_reservations_never_overcommit(
        self, concurrent_engine, make_concurrent_listing, buyer, yielding_store
    ):
        listing = await make_concurrent_listing(quantity=5)

        results = await asyncio.gather(
            *(concurrent_engine.reserve(listing.id, buyer, 2) for _ in range(6)),
            return_exceptions=True,
        )

        accepted = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, Exception)]
        assert len(accepted) == 2
        assert all(isinstance(r, InsufficientInventory) for r in rejected)

        stored = await yielding_store.get_listing(listing.id)
        assert stored.data.available_units == 1
        assert sum(order.data.quantity for order in accepted) + stored.data.available_units == 5


class TestCancel:

    @pytest.mark.asyncio
    async def test_buyer_cancel_restores_exact_units(self, engine, make_listing, buyer, store):
        listing = await make_listing(quantity=5)
        order = await engine.reserve(listing.id, buyer, 3)

        cancelled = await engine.cancel(order.id, buyer)

        assert cancelled.data.status == "cancelled"
        assert cancelled.data.cancelled_by == "buyer"
        assert cancelled.data.cancellation_reason == "Cancelled by user"
        stored = await store.get_listing(listing.id)
        assert stored.data.available_units == 5

    @pytest.mark.asyncio
    async def test_cancel_reopens_sold_out_listing(self, engine, make_listing, buyer, store):
        listing = await make_listing(quantity=2)
        order = await engine.reserve(listing.id, buyer, 2)
        assert (await store.get_listing(listing.id)).data.status == "sold_out"

        await engine.cancel(order.id, buyer)

        stored = await store.get_listing(listing.id)
        assert stored.data.status == "active"
        assert stored.data.available_units == 2

    @pytest.mark.asyncio
    async def test_seller_cancel_with_reason(self, engine, make_listing, buyer, seller):
        listing = await make_listing()
        order = await engine.reserve(listing.id, buyer, 1)

        cancelled = await engine.cancel(order.id, seller, reason="Ran out early")
        assert cancelled.data.cancelled_by == "seller"
        assert cancelled.data.cancellation_reason == "Ran out early"

    @pytest.mark.asyncio
    async def test_system_cancel(self, engine, make_listing, buyer):
        listing = await make_listing()
        order = await engine.reserve(listing.id, buyer, 1)

        cancelled = await engine.cancel(order.id, SYSTEM)
        assert cancelled.data.cancelled_by == "system"
        assert cancelled.data.cancellation_reason == "Cancelled by system"

    @pytest.mark.asyncio
    async def test_stranger_cannot_cancel(self, engine, make_listing, buyer, other_buyer):
        listing = await make_listing()
        order = await engine.reserve(listing.id, buyer, 1)
        with pytest.raises(PermissionDenied):
            await engine.cancel(order.id, other_buyer)

    @pytest.mark.asyncio
    async def test_cancel_twice_rejected_without_double_restore(self, engine, make_listing, buyer, store):
        listing = await make_listing(quantity=5)
        order = await engine.reserve(listing.id, buyer, 2)
        await engine.cancel(order.id, buyer)

        with pytest.raises(NotCancellable):
            await engine.cancel(order.id, buyer)
        stored = await store.get_listing(listing.id)
        assert stored.data.available_units == 5

    @pytest.mark.asyncio
    async def test_concurrent_cancels_restore_once(
        self, concurrent_engine, make_concurrent_listing, buyer, seller, yielding_store
    ):
        listing = await make_concurrent_listing(quantity=5)
        order = await concurrent_engine.reserve(listing.id, buyer, 2)

        results = await asyncio.gather(
            concurrent_engine.cancel(order.id, buyer),
            concurrent_engine.cancel(order.id, seller),
            return_exceptions=True,
        )

        rejected = [r for r in results if isinstance(r, Exception)]
        assert len(rejected) == 1
        assert isinstance(rejected[0], NotCancellable)
        stored = await yielding_store.get_listing(listing.id)
        assert stored.data.available_units == 5
        assert stored.data.status == "active"

    @pytest.mark.asyncio
    async def test_cannot_cancel_after_window(self, engine, make_listing, buyer, clock, store):
        listing = await make_listing()
        order = await engine.reserve(listing.id, buyer, 2)
        clock.advance(hours=4)

        with pytest.raises(NotCancellable):
            await engine.cancel(order.id, buyer)

        expired = await store.get_order(order.id)
        assert expired.data.status == "expired"
        assert expired.data.cancelled_by == "system"
        stored = await store.get_listing(listing.id)
        assert stored.data.available_units == 3

    @pytest.mark.asyncio
    async def test_picked_up_order_not_cancellable(self, engine, make_listing, buyer, seller):
        listing = await make_listing()
        order = await engine.reserve(listing.id, buyer, 1)
        await engine.confirm(order.id, seller)
        await engine.mark_picked_up(order.id, seller)

        with pytest.raises(NotCancellable):
            await engine.cancel(order.id, buyer)

    @pytest.mark.asyncio
    async def test_cancel_when_listing_missing(self, engine, make_listing, buyer, store, caplog):
        listing = await make_listing()
        order = await engine.reserve(listing.id, buyer, 1)
        del store._listings[listing.id]

        cancelled = await engine.cancel(order.id, buyer)

        assert cancelled.data.status == "cancelled"
        assert "not restored" in caplog.text


class TestOrderStateMachine:

    @pytest.mark.asyncio
    async def test_happy_path(self, engine, make_listing, buyer, seller, clock):
        listing = await make_listing()
        order = await engine.reserve(listing.id, buyer, 1)

        clock.advance(minutes=10)
        confirmed = await engine.confirm(order.id, seller)
        assert confirmed.data.status == "confirmed"
        assert confirmed.data.confirmed_at == clock.now()

        clock.advance(hours=1)
        picked = await engine.mark_picked_up(order.id, seller)
        assert picked.data.status == "picked_up"
        assert picked.data.picked_up_at == clock.now()

    @pytest.mark.asyncio
    async def test_buyer_cannot_confirm(self, engine, make_listing, buyer):
        listing = await make_listing()
        order = await engine.reserve(listing.id, buyer, 1)
        with pytest.raises(PermissionDenied):
            await engine.confirm(order.id, buyer)

    @pytest.mark.asyncio
    async def test_pickup_requires_confirmation(self, engine, make_listing, buyer, seller):
        listing = await make_listing()
        order = await engine.reserve(listing.id, buyer, 1)
        with pytest.raises(InvalidTransition):
            await engine.mark_picked_up(order.id, seller)

    @pytest.mark.asyncio
    async def test_confirm_twice_rejected(self, engine, make_listing, buyer, seller):
        listing = await make_listing()
        order = await engine.reserve(listing.id, buyer, 1)
        await engine.confirm(order.id, seller)
        with pytest.raises(InvalidTransition):
            await engine.confirm(order.id, seller)

    @pytest.mark.asyncio
    async def test_cancelled_order_cannot_be_confirmed(self, engine, make_listing, buyer, seller):
        listing = await make_listing()
        order = await engine.reserve(listing.id, buyer, 1)
        await engine.cancel(order.id, buyer)
        with pytest.raises(InvalidTransition):
            await engine.confirm(order.id, seller)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["confirmed", "picked_up", "cancelled", "expired"])
    async def test_confirm_only_from_pending(self, engine, make_listing, buyer, seller, store, status):
        listing = await make_listing()
        order = await engine.reserve(listing.id, buyer, 1)
        order.data.status = status
        await store.save_order(order)

        with pytest.raises(InvalidTransition):
            await engine.confirm(order.id, seller)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["pending", "picked_up", "cancelled", "expired"])
    async def test_pickup_only_from_confirmed(self, engine, make_listing, buyer, seller, store, status):
        listing = await make_listing()
        order = await engine.reserve(listing.id, buyer, 1)
        order.data.status = status
        await store.save_order(order)

        with pytest.raises(InvalidTransition):
            await engine.mark_picked_up(order.id, seller)


class TestOrderQueries:

    @pytest.mark.asyncio
    async def test_get_order_visible_to_parties_only(self, engine, make_listing, buyer, seller, other_buyer):
        listing = await make_listing()
        order = await engine.reserve(listing.id, buyer, 1)

        assert (await engine.get_order(order.id, buyer)).id == order.id
        assert (await engine.get_order(order.id, seller)).id == order.id
        with pytest.raises(PermissionDenied):
            await engine.get_order(order.id, other_buyer)

    @pytest.mark.asyncio
    async def test_get_missing_order(self, engine, buyer):
        with pytest.raises(NotFound):
            await engine.get_order("missing", buyer)

    @pytest.mark.asyncio
    async def test_buying_and_selling_views(self, engine, make_listing, buyer, other_buyer, seller):
        listing = await make_listing()
        first = await engine.reserve(listing.id, buyer, 1)
        second = await engine.reserve(listing.id, other_buyer, 1)
        third = await engine.reserve(listing.id, buyer, 1)

        buying = await engine.list_orders(buyer, "buying")
        assert [order.id for order in buying] == [third.id, first.id]

        selling = await engine.list_orders(seller, "selling")
        assert [order.id for order in selling] == [third.id, second.id, first.id]

    @pytest.mark.asyncio
    async def test_status_filter(self, engine, make_listing, buyer, seller):
        listing = await make_listing()
        kept = await engine.reserve(listing.id, buyer, 1)
        dropped = await engine.reserve(listing.id, buyer, 1)
        await engine.cancel(dropped.id, buyer)

        pending = await engine.list_orders(buyer, "buying", "pending")
        assert [order.id for order in pending] == [kept.id]

        everything = await engine.list_orders(buyer, "buying", "all")
        assert len(everything) == 2

    @pytest.mark.asyncio
    async def test_listing_applies_lazy_expiry(self, engine, make_listing, buyer, clock, store):
        listing = await make_listing()
        order = await engine.reserve(listing.id, buyer, 1)
        clock.advance(days=1)

        assert await engine.list_orders(buyer, "buying", "pending") == []
        orders = await engine.list_orders(buyer, "buying")
        assert orders[0].data.status == "expired"
        assert orders[0].data.cancellation_reason == "Pickup window expired"
        assert (await store.get_order(order.id)).data.status == "expired"
