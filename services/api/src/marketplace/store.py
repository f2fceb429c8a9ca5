"""
Durable-store seam used by the listing service, the reservation engine and
the expiry sweeper.

Every listing mutation goes through ``mutate_listing``, ``reserve`` or
``release``; implementations must serialize those per listing. Orders are
written with ``save_order`` and have no such requirement.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from models.entities.couchbase.listings import Listing, ListingData
from models.entities.couchbase.orders import Order, OrderData

from .queries import ListingQuery

ListingMutator = Callable[[ListingData], None]
OrderMutator = Callable[[OrderData], None]
ReservationApply = Callable[[ListingData], OrderData]


class MarketStore(ABC):

    async def connect(self) -> None:
        """Verify the backing store is reachable. Raises if it is not."""

    @abstractmethod
    async def create_listing(self, data: ListingData) -> Listing:
        ...

    @abstractmethod
    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        ...

    @abstractmethod
    async def mutate_listing(self, listing_id: str, mutator: ListingMutator) -> Optional[Listing]:
        """Serialized read-modify-write. Exceptions from *mutator* abort the write."""

    @abstractmethod
    async def search_listings(self, query: ListingQuery, now: datetime) -> List[Listing]:
        ...

    @abstractmethod
    async def listings_by_seller(self, seller_id: str) -> List[Listing]:
        ...

    @abstractmethod
    async def stale_listing_ids(self, cutoff: datetime) -> List[str]:
        """Listings whose window ended before *cutoff* and are not terminal."""

    @abstractmethod
    async def get_order(self, order_id: str) -> Optional[Order]:
        ...

    @abstractmethod
    async def save_order(self, order: Order) -> Order:
        ...

    @abstractmethod
    async def orders_by_buyer(self, buyer_id: str, status: Optional[str] = None) -> List[Order]:
        ...

    @abstractmethod
    async def orders_by_seller(self, seller_id: str, status: Optional[str] = None) -> List[Order]:
        ...

    @abstractmethod
    async def reserve(
        self, listing_id: str, apply: ReservationApply
    ) -> Optional[Tuple[Listing, Order]]:
        """Atomically run *apply* on the listing and insert the order it returns.

        Returns None when the listing does not exist.
        """

    @abstractmethod
    async def release(
        self,
        order_id: str,
        listing_id: str,
        cancel: OrderMutator,
        restore: ListingMutator,
    ) -> Optional[Tuple[Order, Optional[Listing]]]:
        """Atomically run *cancel* on the stored order and *restore* on its listing.

        The order is re-read inside the serialized section, so *cancel* sees
        the latest status; an exception from either callable aborts both
        writes. If the listing is gone only the order is written and None is
        returned in its place. Returns None when the order does not exist.
        """
