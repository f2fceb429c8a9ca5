"""
Reservation engine: the only place that moves inventory between listings and
orders.

A reservation decrements the listing and creates the order as one write; a
cancellation restores exactly the reserved units and cancels the order as one
write. Both go through the store's per-listing serialization, so concurrent
reservations can never take more units than a listing holds. Order status
moves pending -> confirmed -> picked_up, with cancelled and expired as the
other terminal exits.
"""

from datetime import datetime
from typing import List, Optional

from models.entities.couchbase.listings import TERMINAL_LISTING_STATUSES, ListingData
from models.entities.couchbase.orders import CancelledBy, Order, OrderData
from models.rules.listings import apply_listing_status
from models.rules.orders import can_cancel, expire_if_elapsed
from utils import log
from utils.clock import Clock

from .access import Principal, is_listing_owner, is_order_buyer, is_order_seller
from .errors import (
    InsufficientInventory,
    InvalidQuantity,
    InvalidTransition,
    NotCancellable,
    NotFound,
    PermissionDenied,
    SelfReservationForbidden,
    Unavailable,
    ValidationError,
)
from .queries import OrderView
from .store import MarketStore

logger = log.get_logger(__name__)

ORDER_STATUS_FILTERS = ("pending", "confirmed", "picked_up", "cancelled", "expired")


def _check_cancellable(data: OrderData, now: datetime) -> None:
    if not can_cancel(data, now):
        raise NotCancellable(
            f"Order cannot be cancelled (status: {data.status})",
            {"status": data.status},
        )


class ReservationEngine:

    def __init__(self, store: MarketStore, clock: Clock):
        self._store = store
        self._clock = clock

    # ── reads ────────────────────────────────────────────────────────────────

    async def _current(self, order: Order) -> Order:
        """Apply lazy expiry and persist it when the status moved."""
        if expire_if_elapsed(order.data, self._clock.now()):
            logger.info(f"Order {order.id} expired: pickup window ended {order.data.pickup_window_end.isoformat()}")
            order = await self._store.save_order(order)
        return order

    async def _load(self, order_id: str) -> Order:
        order = await self._store.get_order(order_id)
        if not order:
            raise NotFound(f"Order {order_id} not found")
        return await self._current(order)

    async def get_order(self, order_id: str, caller: Principal) -> Order:
        order = await self._load(order_id)
        if not (caller.is_system or is_order_buyer(caller, order) or is_order_seller(caller, order)):
            raise PermissionDenied("You do not have permission to view this order")
        return order

    async def list_orders(
        self,
        caller: Principal,
        view: OrderView = "buying",
        status: Optional[str] = None,
    ) -> List[Order]:
        """Orders the caller placed (``buying``) or received (``selling``), newest first."""
        if status == "all":
            status = None
        if status is not None and status not in ORDER_STATUS_FILTERS:
            raise ValidationError(f"Unknown order status {status!r}", {"fields": ["status"]})

        if view == "selling":
            orders = await self._store.orders_by_seller(caller.user_id, status)
        else:
            orders = await self._store.orders_by_buyer(caller.user_id, status)

        current = [await self._current(order) for order in orders]
        # Lazy expiry may have moved an order out of the requested status
        if status is not None:
            current = [order for order in current if order.data.status == status]
        return current

    # ── writes ───────────────────────────────────────────────────────────────

    async def reserve(
        self,
        listing_id: str,
        buyer: Principal,
        quantity: int,
        notes: Optional[str] = None,
    ) -> Order:
        listing = await self._store.get_listing(listing_id)
        if not listing:
            raise NotFound(f"Listing {listing_id} not found")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise InvalidQuantity("Quantity must be a positive integer")
        if is_listing_owner(buyer, listing):
            raise SelfReservationForbidden("You cannot reserve your own listing")

        now = self._clock.now()

        def _apply(data: ListingData) -> OrderData:
            apply_listing_status(data, now)
            if data.status in TERMINAL_LISTING_STATUSES or data.pickup_window_end <= now:
                raise Unavailable(
                    f"Listing is no longer available ({data.status})",
                    remaining=data.available_units,
                )
            if data.available_units < quantity:
                raise InsufficientInventory(
                    f"Only {data.available_units} unit(s) available",
                    remaining=data.available_units,
                )

            data.available_units -= quantity
            apply_listing_status(data, now)
            return OrderData(
                listing_id=listing_id,
                buyer_id=buyer.user_id,
                seller_id=data.seller_id,
                quantity=quantity,
                unit_price=data.price,
                status="pending",
                buyer_name=buyer.name,
                buyer_email=buyer.email.lower() if buyer.email else None,
                buyer_phone=buyer.phone,
                listing_title=data.title,
                pickup_location=data.location,
                pickup_window_start=data.pickup_window_start,
                pickup_window_end=data.pickup_window_end,
                notes=notes.strip() if notes and notes.strip() else None,
            )

        result = await self._store.reserve(listing_id, _apply)
        if result is None:
            raise NotFound(f"Listing {listing_id} not found")

        listing, order = result
        logger.info(
            f"Order {order.id} reserved {quantity} unit(s) of listing {listing_id} for buyer {buyer.user_id}; "
            f"{listing.data.available_units} left ({listing.data.status})"
        )
        return order

    def _cancelled_by(self, caller: Principal, order: Order) -> CancelledBy:
        if caller.is_system:
            return "system"
        if is_order_buyer(caller, order):
            return "buyer"
        if is_order_seller(caller, order):
            return "seller"
        raise PermissionDenied("You do not have permission to cancel this order")

    async def cancel(
        self,
        order_id: str,
        caller: Principal,
        reason: Optional[str] = None,
    ) -> Order:
        order = await self._load(order_id)
        now = self._clock.now()
        _check_cancellable(order.data, now)
        cancelled_by = self._cancelled_by(caller, order)
        default_reason = "Cancelled by system" if cancelled_by == "system" else "Cancelled by user"
        cancellation_reason = (reason or "").strip() or default_reason
        units = order.data.quantity

        def _cancel(data: OrderData) -> None:
            # Re-checked on the stored order; a concurrent cancel may have won
            _check_cancellable(data, now)
            data.status = "cancelled"
            data.cancelled_at = now
            data.cancelled_by = cancelled_by
            data.cancellation_reason = cancellation_reason

        def _restore(data: ListingData) -> None:
            data.available_units += units
            apply_listing_status(data, now)

        result = await self._store.release(order.id, order.data.listing_id, _cancel, _restore)
        if result is None:
            raise NotFound(f"Order {order_id} not found")

        order, listing = result
        if listing is None:
            logger.warning(
                f"Order {order.id} cancelled but listing {order.data.listing_id} is missing; "
                f"{units} unit(s) not restored"
            )
        else:
            logger.info(
                f"Order {order.id} cancelled by {cancelled_by}; restored {units} unit(s) to listing "
                f"{listing.id} ({listing.data.available_units} available, {listing.data.status})"
            )
        return order

    async def _seller_transition(self, order_id: str, caller: Principal, action: str) -> Order:
        order = await self._load(order_id)
        if not is_order_seller(caller, order):
            raise PermissionDenied(f"Only the seller can {action} this order")
        return order

    async def confirm(self, order_id: str, caller: Principal) -> Order:
        order = await self._seller_transition(order_id, caller, "confirm")
        if order.data.status != "pending":
            raise InvalidTransition(
                f"Cannot confirm order with status: {order.data.status}",
                {"status": order.data.status},
            )
        order.data.status = "confirmed"
        order.data.confirmed_at = self._clock.now()
        order = await self._store.save_order(order)
        logger.info(f"Order {order.id} confirmed by seller {caller.user_id}")
        return order

    async def mark_picked_up(self, order_id: str, caller: Principal) -> Order:
        order = await self._seller_transition(order_id, caller, "mark as picked up")
        if order.data.status != "confirmed":
            raise InvalidTransition(
                "Order must be confirmed before marking as picked up",
                {"status": order.data.status},
            )
        order.data.status = "picked_up"
        order.data.picked_up_at = self._clock.now()
        order = await self._store.save_order(order)
        logger.info(f"Order {order.id} picked up")
        return order
