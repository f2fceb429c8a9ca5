from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field

from models.entities.couchbase.listings import ListingData, SellerType

MAX_PAGE_SIZE = 200

OrderView = Literal["buying", "selling"]


class ListingQuery(BaseModel):
    search: Optional[str] = None
    diet: Optional[str] = None
    hall: Optional[str] = None
    seller_type: Optional[SellerType] = None
    max_price: Optional[Decimal] = Field(default=None, ge=0)
    only_available: bool = False
    limit: int = Field(default=50, ge=1, le=MAX_PAGE_SIZE)
    skip: int = Field(default=0, ge=0)

    def normalized(self) -> "ListingQuery":
        """Blank strings and the UI's ``All`` choice mean no filter."""
        def clean(value: Optional[str]) -> Optional[str]:
            if value is None:
                return None
            value = value.strip()
            if not value or value.lower() == "all":
                return None
            return value

        return self.model_copy(update={
            "search": clean(self.search),
            "diet": clean(self.diet),
            "hall": clean(self.hall),
        })


def is_visible(data: ListingData, now: datetime) -> bool:
    """Buy-page freshness guarantee, independent of the sweeper's cadence."""
    return (
        data.status == "active"
        and data.available_units > 0
        and data.pickup_window_end > now
    )


def _contains(haystack: Optional[str], needle: str) -> bool:
    return haystack is not None and needle in haystack.lower()


def matches(data: ListingData, query: ListingQuery, now: datetime) -> bool:
    """In-process equivalent of the N1QL buy-page filter."""
    if not is_visible(data, now):
        return False
    if query.only_available and data.available_units <= 0:
        return False
    if query.seller_type and data.seller_type != query.seller_type:
        return False
    if query.max_price is not None and data.price > query.max_price:
        return False
    if query.hall:
        if data.seller_type != "dining_hall":
            return False
        if not _contains(data.seller_profile.name, query.hall.lower()):
            return False
    if query.diet:
        diet = query.diet.lower()
        if not any(_contains(tag, diet) for tag in data.dietary_tags):
            return False
    if query.search:
        term = query.search.lower()
        fields = (data.title, data.description, data.location, *data.dietary_tags)
        if not any(_contains(field, term) for field in fields):
            return False
    return True
