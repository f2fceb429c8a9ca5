"""
Identity as seen by the core.

The identity collaborator authenticates callers; the core only needs an
opaque id, a role, and the contact details it snapshots onto orders.
"""

from typing import Literal, Optional

from pydantic import BaseModel

from models.entities.couchbase.listings import Listing
from models.entities.couchbase.orders import Order

Role = Literal["buyer", "seller", "system"]

SELLER_ROLE_CLAIMS = {"seller", "dining_hall_staff", "nonprofit_coordinator"}


class Principal(BaseModel):
    user_id: str
    role: Role = "buyer"
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    is_admin: bool = False

    @property
    def is_system(self) -> bool:
        return self.role == "system"

    @property
    def is_seller(self) -> bool:
        return self.role == "seller"


SYSTEM = Principal(user_id="system", role="system", name="system")


def role_from_claim(claim: Optional[str]) -> Role:
    if claim and claim.lower() in SELLER_ROLE_CLAIMS:
        return "seller"
    return "buyer"


def is_listing_owner(principal: Principal, listing: Listing) -> bool:
    return listing.data.seller_id == principal.user_id


def is_order_buyer(principal: Principal, order: Order) -> bool:
    return order.data.buyer_id == principal.user_id


def is_order_seller(principal: Principal, order: Order) -> bool:
    return order.data.seller_id == principal.user_id
