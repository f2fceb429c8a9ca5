from decimal import Decimal
from typing import Any, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from marketplace.access import Principal
from marketplace.engine import ReservationEngine
from marketplace.queries import OrderView
from models.entities.couchbase.orders import Order
from utils import log

from .dependencies import current_principal, get_reservation_engine

logger = log.get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------

class CreateOrderRequest(BaseModel):
    listing_id: str
    # Loosely typed so the engine reports bad quantities as InvalidQuantity
    quantity: Any
    notes: Optional[str] = None


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = None


class OrderResponse(BaseModel):
    id: str
    listing_id: str
    buyer_id: str
    seller_id: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    status: str
    buyer_name: Optional[str] = None
    buyer_email: Optional[str] = None
    buyer_phone: Optional[str] = None
    listing_title: str
    pickup_location: str
    pickup_window_start: str
    pickup_window_end: str
    notes: Optional[str] = None
    confirmed_at: Optional[str] = None
    picked_up_at: Optional[str] = None
    cancelled_at: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[str] = None


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _order_to_response(order: Order) -> OrderResponse:
    d = order.data
    return OrderResponse(
        id=order.id,
        listing_id=d.listing_id,
        buyer_id=d.buyer_id,
        seller_id=d.seller_id,
        quantity=d.quantity,
        unit_price=d.unit_price,
        total_price=d.total_price,
        status=d.status,
        buyer_name=d.buyer_name,
        buyer_email=d.buyer_email,
        buyer_phone=d.buyer_phone,
        listing_title=d.listing_title,
        pickup_location=d.pickup_location,
        pickup_window_start=d.pickup_window_start.isoformat(),
        pickup_window_end=d.pickup_window_end.isoformat(),
        notes=d.notes,
        confirmed_at=_iso(d.confirmed_at),
        picked_up_at=_iso(d.picked_up_at),
        cancelled_at=_iso(d.cancelled_at),
        cancelled_by=d.cancelled_by,
        cancellation_reason=d.cancellation_reason,
        created_at=_iso(d.created_at),
    )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.post("", response_model=OrderResponse, status_code=201)
async def route_order_create(
    body: CreateOrderRequest,
    principal: Principal = Depends(current_principal),
    engine: ReservationEngine = Depends(get_reservation_engine),
):
    order = await engine.reserve(body.listing_id, principal, body.quantity, body.notes)
    return _order_to_response(order)


@router.get("", response_model=List[OrderResponse])
async def route_orders_list(
    type: OrderView = "buying",
    status: Optional[str] = None,
    principal: Principal = Depends(current_principal),
    engine: ReservationEngine = Depends(get_reservation_engine),
):
    orders = await engine.list_orders(principal, type, status)
    return [_order_to_response(order) for order in orders]


@router.get("/{order_id}", response_model=OrderResponse)
async def route_order_get(
    order_id: str,
    principal: Principal = Depends(current_principal),
    engine: ReservationEngine = Depends(get_reservation_engine),
):
    order = await engine.get_order(order_id, principal)
    return _order_to_response(order)


@router.patch("/{order_id}/confirm", response_model=OrderResponse)
async def route_order_confirm(
    order_id: str,
    principal: Principal = Depends(current_principal),
    engine: ReservationEngine = Depends(get_reservation_engine),
):
    order = await engine.confirm(order_id, principal)
    return _order_to_response(order)


@router.patch("/{order_id}/picked-up", response_model=OrderResponse)
async def route_order_picked_up(
    order_id: str,
    principal: Principal = Depends(current_principal),
    engine: ReservationEngine = Depends(get_reservation_engine),
):
    order = await engine.mark_picked_up(order_id, principal)
    return _order_to_response(order)


@router.patch("/{order_id}/cancel", response_model=OrderResponse)
async def route_order_cancel(
    order_id: str,
    body: Optional[CancelOrderRequest] = None,
    principal: Principal = Depends(current_principal),
    engine: ReservationEngine = Depends(get_reservation_engine),
):
    reason = body.reason if body else None
    order = await engine.cancel(order_id, principal, reason)
    return _order_to_response(order)
