from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from jobs.expiry import ExpirySweeper
from marketplace.access import Principal, role_from_claim
from marketplace.engine import ReservationEngine
from marketplace.listings import ListingService
from utils import log

logger = log.get_logger(__name__)

security = HTTPBearer()


def _claim_email(payload: Dict[str, Any]) -> Optional[str]:
    email = payload.get("email")
    # Some providers send a list of addresses
    if isinstance(email, list):
        if not email:
            return None
        item = email[0]
        email = item.get("value") if isinstance(item, dict) else str(item)
    return str(email).lower() if email else None


def _claim_roles(payload: Dict[str, Any]) -> list:
    roles = payload.get("roles", [])
    if isinstance(roles, str):
        roles = [roles]
    return roles


def principal_from_claims(payload: Dict[str, Any]) -> Principal:
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has no subject")
    roles = _claim_roles(payload)
    return Principal(
        user_id=user_id,
        role=role_from_claim(payload.get("role")),
        name=payload.get("name"),
        email=_claim_email(payload),
        phone=payload.get("phone"),
        is_admin=bool(payload.get("is_admin")) or "admin" in roles,
    )


def _decode(request: Request, token: HTTPAuthorizationCredentials) -> Principal:
    auth_client = getattr(request.app.state, "auth_client", None)
    if auth_client is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No auth_client")
    payload = auth_client.decode_jwt(token.credentials)
    if not payload:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return principal_from_claims(payload)


async def current_principal(
    request: Request, token: HTTPAuthorizationCredentials = Depends(security)
) -> Principal:
    return _decode(request, token)


async def require_seller(principal: Principal = Depends(current_principal)) -> Principal:
    if not principal.is_seller:
        logger.warning(f"User {principal.user_id} attempted seller access with role {principal.role}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Seller privileges required")
    return principal


async def require_admin(principal: Principal = Depends(current_principal)) -> Principal:
    if not principal.is_admin:
        logger.warning(f"User {principal.user_id} attempted admin access without 'admin' role")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin privileges required")
    return principal


def get_listing_service(request: Request) -> ListingService:
    return request.app.state.listing_service


def get_reservation_engine(request: Request) -> ReservationEngine:
    return request.app.state.reservation_engine


def get_expiry_sweeper(request: Request) -> ExpirySweeper:
    return request.app.state.expiry_sweeper
