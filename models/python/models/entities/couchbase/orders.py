from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import Field, computed_field
from clients.couchbase import BaseModelCouchbase, BaseCouchbaseEntityData


OrderStatus = Literal["pending", "confirmed", "picked_up", "cancelled", "expired"]
CancelledBy = Literal["buyer", "seller", "system"]

OPEN_ORDER_STATUSES = ("pending", "confirmed")


class OrderData(BaseCouchbaseEntityData):
    listing_id: str
    buyer_id: str
    # Owner of the listing at reservation time. Listings never change hands.
    seller_id: str
    quantity: int = Field(ge=1)
    unit_price: Decimal = Field(ge=0)
    status: OrderStatus = "pending"

    # Buyer contact snapshot
    buyer_name: Optional[str] = None
    buyer_email: Optional[str] = None
    buyer_phone: Optional[str] = None

    # Pickup snapshot, copied from the listing when the reservation was made
    listing_title: str
    pickup_location: str
    pickup_window_start: datetime
    pickup_window_end: datetime

    notes: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[CancelledBy] = None
    cancellation_reason: Optional[str] = None

    @computed_field
    @property
    def total_price(self) -> Decimal:
        return self.quantity * self.unit_price


class Order(BaseModelCouchbase[OrderData]):
    _collection_name = "orders"
