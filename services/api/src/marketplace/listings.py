from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pydantic
from pydantic import BaseModel, field_validator

from models.entities.couchbase.listings import (
    RSO,
    TERMINAL_LISTING_STATUSES,
    DiningHall,
    Listing,
    ListingData,
    Nutrition,
    Restaurant,
    SellerProfile,
    SellerType,
    StudentPrivate,
    UnitLabel,
)
from models.rules.listings import apply_listing_status, fresh_minutes
from utils import log
from utils.clock import Clock

from .access import Principal, is_listing_owner
from .errors import (
    InvalidQuantity,
    InvalidTransition,
    InvalidWindow,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from .queries import ListingQuery
from .store import MarketStore

logger = log.get_logger(__name__)

# Fields a seller may change after creation. Anything else is ignored.
LISTING_UPDATABLE_FIELDS = (
    "title",
    "description",
    "available_units",
    "price",
    "location",
    "pickup_window_start",
    "pickup_window_end",
    "contact_name",
    "contact_email",
    "contact_phone",
    "dietary_tags",
    "dietary_other",
    "allergens",
    "allergen_other_details",
    "status",
    "image",
    "full_description",
    "ingredients",
    "nutrition",
    "pickup_instructions",
)

_REQUIRED_DRAFT_FIELDS = (
    "title",
    "description",
    "quantity",
    "price",
    "location",
    "pickup_window_start",
    "pickup_window_end",
    "seller_type",
    "contact_name",
    "contact_email",
    "contact_phone",
)

# Labels used by the sell form
_SELLER_TYPE_LABELS = {
    "dining hall": "dining_hall",
    "restaurant": "restaurant",
    "rso": "rso",
    "student/private": "student_private",
}


class ListingDraft(BaseModel):
    """Seller input for a new listing. Completeness is checked by the service."""

    title: Optional[str] = None
    description: Optional[str] = None
    quantity: Optional[int] = None
    unit_label: UnitLabel = "meals"
    price: Optional[Decimal] = None
    location: Optional[str] = None
    pickup_window_start: Optional[datetime] = None
    pickup_window_end: Optional[datetime] = None
    seller_type: Optional[SellerType] = None
    dining_hall: Optional[str] = None
    restaurant_name: Optional[str] = None
    rso_name: Optional[str] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    dietary_tags: List[str] = []
    dietary_other: Optional[str] = None
    allergens: List[str] = []
    allergen_other_details: Optional[str] = None
    image: Optional[str] = None
    full_description: Optional[str] = None
    ingredients: Optional[str] = None
    nutrition: Optional[Nutrition] = None
    pickup_instructions: Optional[str] = None

    @field_validator("seller_type", mode="before")
    @classmethod
    def _seller_type_from_label(cls, value: Any) -> Any:
        if isinstance(value, str):
            return _SELLER_TYPE_LABELS.get(value.strip().lower(), value)
        return value


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _as_utc(moment: datetime) -> datetime:
    # Naive timestamps are taken to be UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def check_pickup_window(start: datetime, end: datetime) -> None:
    if end <= start:
        raise InvalidWindow(
            "Pickup window end must be after start",
            {"pickup_window_start": start.isoformat(), "pickup_window_end": end.isoformat()},
        )


def build_seller_profile(draft: ListingDraft) -> SellerProfile:
    """Pick the seller-profile variant and its identifying name."""
    seller_type = draft.seller_type
    if seller_type == "dining_hall":
        name = _clean(draft.dining_hall)
        if not name:
            raise ValidationError(
                "Dining hall is required for Dining Hall seller type", {"fields": ["dining_hall"]}
            )
        return DiningHall(name=name)
    if seller_type == "restaurant":
        name = _clean(draft.restaurant_name)
        if not name:
            raise ValidationError(
                "Restaurant name is required for Restaurant seller type",
                {"fields": ["restaurant_name"]},
            )
        return Restaurant(name=name)
    if seller_type == "rso":
        name = _clean(draft.rso_name)
        if not name:
            raise ValidationError(
                "RSO name is required for RSO seller type", {"fields": ["rso_name"]}
            )
        return RSO(name=name)
    if seller_type == "student_private":
        return StudentPrivate()
    raise ValidationError(f"Unknown seller type {seller_type!r}", {"fields": ["seller_type"]})


class ListingService:

    def __init__(self, store: MarketStore, clock: Clock):
        self._store = store
        self._clock = clock

    @property
    def clock(self) -> Clock:
        return self._clock

    def _derived(self, listing: Listing, now: datetime) -> Listing:
        # Read-time derivation; the stored record catches up on its next write.
        apply_listing_status(listing.data, now)
        return listing

    def to_view(self, listing: Listing) -> Dict[str, Any]:
        now = self._clock.now()
        return {
            "id": listing.id,
            **listing.data.model_dump(mode="json"),
            "seller_type": listing.data.seller_type,
            "fresh_minutes": fresh_minutes(listing.data.pickup_window_end, now),
        }

    async def create_listing(self, seller: Principal, draft: ListingDraft) -> Listing:
        if not seller.is_seller:
            raise PermissionDenied("Only sellers can create listings")

        missing = []
        for field in _REQUIRED_DRAFT_FIELDS:
            value = getattr(draft, field)
            if value is None or (isinstance(value, str) and not value.strip()):
                missing.append(field)
        if missing:
            raise ValidationError("Missing required fields", {"fields": missing})

        if draft.quantity <= 0:
            raise InvalidQuantity("Available units must be a positive integer")
        if draft.price < 0:
            raise ValidationError("Price must be a valid non-negative number", {"fields": ["price"]})

        start = _as_utc(draft.pickup_window_start)
        end = _as_utc(draft.pickup_window_end)
        check_pickup_window(start, end)

        data = ListingData(
            seller_id=seller.user_id,
            title=draft.title.strip(),
            description=draft.description.strip(),
            available_units=draft.quantity,
            unit_label=draft.unit_label,
            price=draft.price,
            location=draft.location.strip(),
            pickup_window_start=start,
            pickup_window_end=end,
            seller_profile=build_seller_profile(draft),
            contact_name=draft.contact_name.strip(),
            contact_email=draft.contact_email.strip().lower(),
            contact_phone=draft.contact_phone.strip(),
            dietary_tags=draft.dietary_tags,
            dietary_other=_clean(draft.dietary_other),
            allergens=draft.allergens,
            allergen_other_details=_clean(draft.allergen_other_details),
            image=draft.image,
            full_description=_clean(draft.full_description),
            ingredients=_clean(draft.ingredients),
            nutrition=draft.nutrition,
            pickup_instructions=_clean(draft.pickup_instructions),
            status="active",
        )
        apply_listing_status(data, self._clock.now())

        listing = await self._store.create_listing(data)
        logger.info(
            f"Listing {listing.id} created by seller {seller.user_id}: "
            f"{data.available_units} {data.unit_label} until {end.isoformat()}"
        )
        return listing

    async def _owned_listing(self, caller: Principal, listing_id: str) -> Listing:
        listing = await self._store.get_listing(listing_id)
        if not listing:
            raise NotFound(f"Listing {listing_id} not found")
        if not is_listing_owner(caller, listing):
            raise PermissionDenied("You do not have permission to modify this listing")
        return listing

    async def update_listing(
        self, caller: Principal, listing_id: str, changes: Dict[str, Any]
    ) -> Listing:
        await self._owned_listing(caller, listing_id)

        updates = {
            field: value for field, value in changes.items()
            if field in LISTING_UPDATABLE_FIELDS
        }
        if "status" in updates and updates["status"] != "cancelled":
            raise ValidationError(
                "Listing status is derived; only 'cancelled' can be set", {"fields": ["status"]}
            )
        for field in ("title", "description", "location", "contact_name", "contact_phone"):
            if field in updates and not _clean(updates[field]):
                raise ValidationError(f"{field} cannot be empty", {"fields": [field]})
        if "contact_email" in updates and updates["contact_email"]:
            updates["contact_email"] = updates["contact_email"].strip().lower()

        now = self._clock.now()

        def _mutate(data: ListingData) -> None:
            apply_listing_status(data, now)
            if "status" in updates and data.status in TERMINAL_LISTING_STATUSES \
                    and data.status != updates["status"]:
                raise InvalidTransition(
                    f"Listing is already {data.status}", {"status": data.status}
                )
            try:
                candidate = ListingData.model_validate({**data.model_dump(), **updates})
            except pydantic.ValidationError as e:
                fields = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
                raise ValidationError("Invalid listing update", {"fields": fields}) from e

            candidate.pickup_window_start = _as_utc(candidate.pickup_window_start)
            candidate.pickup_window_end = _as_utc(candidate.pickup_window_end)
            check_pickup_window(candidate.pickup_window_start, candidate.pickup_window_end)

            for field in updates:
                value = getattr(candidate, field)
                if isinstance(value, str) and field != "status":
                    value = value.strip()
                setattr(data, field, value)
            apply_listing_status(data, now)

        listing = await self._store.mutate_listing(listing_id, _mutate)
        if not listing:
            raise NotFound(f"Listing {listing_id} not found")
        logger.info(f"Listing {listing_id} updated by seller {caller.user_id}: {sorted(updates)}")
        return listing

    async def cancel_listing(self, caller: Principal, listing_id: str) -> Listing:
        """Soft delete. The record stays for profile and order history."""
        await self._owned_listing(caller, listing_id)

        now = self._clock.now()

        def _mutate(data: ListingData) -> None:
            apply_listing_status(data, now)
            if data.status == "cancelled":
                return
            if data.status in TERMINAL_LISTING_STATUSES:
                raise InvalidTransition(f"Listing is already {data.status}")
            data.status = "cancelled"

        listing = await self._store.mutate_listing(listing_id, _mutate)
        if not listing:
            raise NotFound(f"Listing {listing_id} not found")
        logger.info(f"Listing {listing_id} cancelled by seller {caller.user_id}")
        return listing

    async def get_listing(self, listing_id: str) -> Listing:
        listing = await self._store.get_listing(listing_id)
        if not listing:
            raise NotFound(f"Listing {listing_id} not found")
        return self._derived(listing, self._clock.now())

    async def listings_for_seller(self, seller_id: str) -> List[Listing]:
        now = self._clock.now()
        listings = await self._store.listings_by_seller(seller_id)
        return [self._derived(listing, now) for listing in listings]

    async def search(self, query: ListingQuery) -> List[Listing]:
        now = self._clock.now()
        listings = await self._store.search_listings(query.normalized(), now)
        return [self._derived(listing, now) for listing in listings]
