from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field
from clients.couchbase import BaseModelCouchbase, BaseCouchbaseEntityData


UnitLabel = Literal["meals", "lbs", "trays", "slices", "boxes"]
ListingStatus = Literal["active", "sold_out", "expired", "cancelled"]
SellerType = Literal["dining_hall", "restaurant", "rso", "student_private"]

TERMINAL_LISTING_STATUSES = ("expired", "cancelled")


class DiningHall(BaseModel):
    seller_type: Literal["dining_hall"] = "dining_hall"
    name: str


class Restaurant(BaseModel):
    seller_type: Literal["restaurant"] = "restaurant"
    name: str


class RSO(BaseModel):
    seller_type: Literal["rso"] = "rso"
    name: str


class StudentPrivate(BaseModel):
    seller_type: Literal["student_private"] = "student_private"


SellerProfile = Annotated[
    Union[DiningHall, Restaurant, RSO, StudentPrivate],
    Field(discriminator="seller_type"),
]


class Nutrition(BaseModel):
    calories: Optional[int] = None
    protein: Optional[str] = None
    carbs: Optional[str] = None
    fat: Optional[str] = None


class ListingData(BaseCouchbaseEntityData):
    seller_id: str
    title: str
    description: str
    available_units: int = Field(ge=0)
    unit_label: UnitLabel = "meals"
    price: Decimal = Field(ge=0)
    location: str
    pickup_window_start: datetime
    pickup_window_end: datetime
    seller_profile: SellerProfile
    contact_name: str
    contact_email: str
    contact_phone: str
    dietary_tags: List[str] = []
    dietary_other: Optional[str] = None
    allergens: List[str] = []
    allergen_other_details: Optional[str] = None
    image: Optional[str] = None
    full_description: Optional[str] = None
    ingredients: Optional[str] = None
    nutrition: Optional[Nutrition] = None
    pickup_instructions: Optional[str] = None
    status: ListingStatus = "active"

    @property
    def seller_type(self) -> SellerType:
        return self.seller_profile.seller_type


class Listing(BaseModelCouchbase[ListingData]):
    _collection_name = "listings"
