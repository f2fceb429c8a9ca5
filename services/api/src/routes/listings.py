from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from marketplace.access import Principal
from marketplace.listings import ListingDraft, ListingService
from marketplace.queries import MAX_PAGE_SIZE, ListingQuery
from models.entities.couchbase.listings import Nutrition, SellerType
from utils import log

from .dependencies import current_principal, get_listing_service, require_seller

logger = log.get_logger(__name__)

router = APIRouter(prefix="/listings", tags=["listings"])


# ── Request models ────────────────────────────────────────────────────────────

class ListingUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    available_units: Optional[int] = None
    price: Optional[Decimal] = None
    location: Optional[str] = None
    pickup_window_start: Optional[datetime] = None
    pickup_window_end: Optional[datetime] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    dietary_tags: Optional[List[str]] = None
    dietary_other: Optional[str] = None
    allergens: Optional[List[str]] = None
    allergen_other_details: Optional[str] = None
    status: Optional[str] = None
    image: Optional[str] = None
    full_description: Optional[str] = None
    ingredients: Optional[str] = None
    nutrition: Optional[Nutrition] = None
    pickup_instructions: Optional[str] = None


# ── Routes ────────────────────────────────────────────────────────────────────

@router.post("", status_code=201)
async def route_listing_create(
    body: ListingDraft,
    seller: Principal = Depends(require_seller),
    service: ListingService = Depends(get_listing_service),
) -> Dict[str, Any]:
    listing = await service.create_listing(seller, body)
    return service.to_view(listing)


@router.get("")
async def route_listing_search(
    search: Optional[str] = None,
    diet: Optional[str] = None,
    hall: Optional[str] = None,
    seller_type: Optional[SellerType] = None,
    max_price: Optional[Decimal] = Query(default=None, ge=0),
    only_available: bool = False,
    limit: int = Query(default=50, ge=1, le=MAX_PAGE_SIZE),
    skip: int = Query(default=0, ge=0),
    service: ListingService = Depends(get_listing_service),
) -> List[Dict[str, Any]]:
    """Buy page: active listings whose pickup window is still open, newest first."""
    query = ListingQuery(
        search=search,
        diet=diet,
        hall=hall,
        seller_type=seller_type,
        max_price=max_price,
        only_available=only_available,
        limit=limit,
        skip=skip,
    )
    listings = await service.search(query)
    return [service.to_view(listing) for listing in listings]


@router.get("/mine")
async def route_listing_mine(
    principal: Principal = Depends(current_principal),
    service: ListingService = Depends(get_listing_service),
) -> List[Dict[str, Any]]:
    listings = await service.listings_for_seller(principal.user_id)
    return [service.to_view(listing) for listing in listings]


@router.get("/{listing_id}")
async def route_listing_get(
    listing_id: str,
    service: ListingService = Depends(get_listing_service),
) -> Dict[str, Any]:
    listing = await service.get_listing(listing_id)
    return service.to_view(listing)


@router.patch("/{listing_id}")
async def route_listing_update(
    listing_id: str,
    body: ListingUpdateRequest,
    principal: Principal = Depends(current_principal),
    service: ListingService = Depends(get_listing_service),
) -> Dict[str, Any]:
    changes = body.model_dump(exclude_unset=True)
    listing = await service.update_listing(principal, listing_id, changes)
    return service.to_view(listing)


@router.delete("/{listing_id}")
async def route_listing_cancel(
    listing_id: str,
    principal: Principal = Depends(current_principal),
    service: ListingService = Depends(get_listing_service),
) -> Dict[str, Any]:
    listing = await service.cancel_listing(principal, listing_id)
    return service.to_view(listing)
