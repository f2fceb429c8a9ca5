"""
Process-local store used for development and tests.

A per-listing ``asyncio.Lock`` gives the same per-listing serialization the
Couchbase backend gets from CAS and transactions. Records are copied in and
out so callers never hold a live reference to stored state.
"""

import asyncio
import itertools
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from models.entities.couchbase.listings import Listing, ListingData
from models.entities.couchbase.orders import Order
from models.rules.listings import is_stale

from .queries import ListingQuery, matches
from .store import ListingMutator, MarketStore, OrderMutator, ReservationApply


class InMemoryMarketStore(MarketStore):

    def __init__(self):
        self._listings: Dict[str, Listing] = {}
        self._orders: Dict[str, Order] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._sequence = itertools.count()
        self._inserted: Dict[str, int] = {}
        self._cas = itertools.count(1)

    # ── helpers ──────────────────────────────────────────────────────────────

    def _newest_first(self, items):
        return sorted(
            items,
            key=lambda item: (item.data.created_at, self._inserted[item.id]),
            reverse=True,
        )

    def _store_listing(self, listing: Listing) -> Listing:
        listing.cas = next(self._cas)
        self._listings[listing.id] = listing.model_copy(deep=True)
        return listing

    def _store_order(self, order: Order) -> Order:
        order.cas = next(self._cas)
        self._orders[order.id] = order.model_copy(deep=True)
        return order

    def _insert(self, key: str) -> None:
        self._inserted[key] = next(self._sequence)

    # ── listings ─────────────────────────────────────────────────────────────

    async def create_listing(self, data: ListingData) -> Listing:
        data.stamp_created(data.seller_id)
        listing = Listing(id=Listing.new_key(), data=data)
        self._insert(listing.id)
        return self._store_listing(listing)

    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        listing = self._listings.get(listing_id)
        return listing.model_copy(deep=True) if listing else None

    async def mutate_listing(self, listing_id: str, mutator: ListingMutator) -> Optional[Listing]:
        async with self._locks[listing_id]:
            listing = await self.get_listing(listing_id)
            if not listing:
                return None
            mutator(listing.data)
            listing.data.stamp_updated()
            return self._store_listing(listing)

    async def search_listings(self, query: ListingQuery, now: datetime) -> List[Listing]:
        found = [
            listing.model_copy(deep=True)
            for listing in self._listings.values()
            if matches(listing.data, query, now)
        ]
        return self._newest_first(found)[query.skip:query.skip + query.limit]

    async def listings_by_seller(self, seller_id: str) -> List[Listing]:
        return self._newest_first(
            listing.model_copy(deep=True)
            for listing in self._listings.values()
            if listing.data.seller_id == seller_id
        )

    async def stale_listing_ids(self, cutoff: datetime) -> List[str]:
        return [
            listing_id
            for listing_id, listing in self._listings.items()
            if is_stale(listing.data, cutoff)
        ]

    # ── orders ───────────────────────────────────────────────────────────────

    async def get_order(self, order_id: str) -> Optional[Order]:
        order = self._orders.get(order_id)
        return order.model_copy(deep=True) if order else None

    async def save_order(self, order: Order) -> Order:
        order.data.stamp_updated()
        return self._store_order(order)

    async def orders_by_buyer(self, buyer_id: str, status: Optional[str] = None) -> List[Order]:
        return self._orders_where("buyer_id", buyer_id, status)

    async def orders_by_seller(self, seller_id: str, status: Optional[str] = None) -> List[Order]:
        return self._orders_where("seller_id", seller_id, status)

    def _orders_where(self, field: str, value: str, status: Optional[str]) -> List[Order]:
        return self._newest_first(
            order.model_copy(deep=True)
            for order in self._orders.values()
            if getattr(order.data, field) == value
            and (status is None or order.data.status == status)
        )

    # ── cross-record ─────────────────────────────────────────────────────────

    async def reserve(
        self, listing_id: str, apply: ReservationApply
    ) -> Optional[Tuple[Listing, Order]]:
        async with self._locks[listing_id]:
            listing = await self.get_listing(listing_id)
            if not listing:
                return None
            order_data = apply(listing.data)
            listing.data.stamp_updated()
            order_data.stamp_created(order_data.buyer_id)
            order = Order(id=Order.new_key(), data=order_data)
            self._insert(order.id)
            self._store_listing(listing)
            self._store_order(order)
            return listing, order

    async def release(
        self,
        order_id: str,
        listing_id: str,
        cancel: OrderMutator,
        restore: ListingMutator,
    ) -> Optional[Tuple[Order, Optional[Listing]]]:
        async with self._locks[listing_id]:
            order = await self.get_order(order_id)
            if not order:
                return None
            cancel(order.data)
            listing = await self.get_listing(listing_id)
            if listing:
                restore(listing.data)
                listing.data.stamp_updated()
                self._store_listing(listing)
            order.data.stamp_updated()
            self._store_order(order)
            return order, listing
