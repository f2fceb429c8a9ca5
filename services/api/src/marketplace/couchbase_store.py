from datetime import datetime
from typing import List, Optional, Tuple

from clients.couchbase import CASMismatchException, check_connection
from models.entities.couchbase.listings import Listing, ListingData
from models.entities.couchbase.orders import Order
from models.operations.listings import (
    ListingConflictError,
    listing_create,
    listing_get,
    listing_get_by_seller,
    listing_get_stale_ids,
    listing_mutate,
    listing_search,
)
from models.operations.orders import (
    order_get,
    order_get_by_buyer,
    order_get_by_seller,
    order_update,
)
from models.operations.reservations import reservation_create, reservation_release
from utils import log

from .errors import ConcurrentUpdateConflict
from .queries import ListingQuery, is_visible
from .store import ListingMutator, MarketStore, OrderMutator, ReservationApply

logger = log.get_logger(__name__)


class CouchbaseMarketStore(MarketStore):

    async def connect(self) -> None:
        logger.info("Verifying Couchbase connection...")
        await check_connection()
        logger.info("Couchbase connection verified.")

    async def create_listing(self, data: ListingData) -> Listing:
        return await listing_create(data.seller_id, data)

    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        return await listing_get(listing_id)

    async def mutate_listing(self, listing_id: str, mutator: ListingMutator) -> Optional[Listing]:
        try:
            return await listing_mutate(listing_id, mutator)
        except ListingConflictError as e:
            raise ConcurrentUpdateConflict(str(e)) from e

    async def search_listings(self, query: ListingQuery, now: datetime) -> List[Listing]:
        listings = await listing_search(
            now,
            search=query.search,
            diet=query.diet,
            hall=query.hall,
            seller_type=query.seller_type,
            max_price=float(query.max_price) if query.max_price is not None else None,
            only_available=query.only_available,
            limit=query.limit,
            offset=query.skip,
        )
        # Status, units and window are filtered in N1QL. Only a window that
        # ended while the query ran can slip through.
        return [listing for listing in listings if is_visible(listing.data, now)]

    async def listings_by_seller(self, seller_id: str) -> List[Listing]:
        return await listing_get_by_seller(seller_id)

    async def stale_listing_ids(self, cutoff: datetime) -> List[str]:
        return await listing_get_stale_ids(cutoff)

    async def get_order(self, order_id: str) -> Optional[Order]:
        return await order_get(order_id)

    async def save_order(self, order: Order) -> Order:
        return await order_update(order)

    async def orders_by_buyer(self, buyer_id: str, status: Optional[str] = None) -> List[Order]:
        return await order_get_by_buyer(buyer_id, status)

    async def orders_by_seller(self, seller_id: str, status: Optional[str] = None) -> List[Order]:
        return await order_get_by_seller(seller_id, status)

    async def reserve(
        self, listing_id: str, apply: ReservationApply
    ) -> Optional[Tuple[Listing, Order]]:
        return await reservation_create(listing_id, apply)

    async def release(
        self,
        order_id: str,
        listing_id: str,
        cancel: OrderMutator,
        restore: ListingMutator,
    ) -> Optional[Tuple[Order, Optional[Listing]]]:
        try:
            return await reservation_release(order_id, listing_id, cancel, restore)
        except CASMismatchException as e:
            raise ConcurrentUpdateConflict(f"Concurrent update conflict on order {order_id}") from e
