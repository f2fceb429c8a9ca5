from fastapi import Request
from fastapi.responses import JSONResponse

from marketplace.errors import (
    ConcurrentUpdateConflict,
    InvalidTransition,
    MarketplaceError,
    NotFound,
    PermissionDenied,
    ReservationRejected,
    SelfReservationForbidden,
    ValidationError,
)
from utils import log

logger = log.get_logger(__name__)

# Most specific first; the first match wins.
ERROR_STATUS_CODES = (
    (SelfReservationForbidden, 400),
    (ValidationError, 400),
    (NotFound, 404),
    (PermissionDenied, 403),
    (ReservationRejected, 409),
    (InvalidTransition, 409),
    (ConcurrentUpdateConflict, 409),
)


def status_code_for(error: MarketplaceError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 400


async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    status_code = status_code_for(exc)
    logger.info(f"{request.method} {request.url.path} -> {status_code} {type(exc).__name__}: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "error": type(exc).__name__, **exc.details},
    )
