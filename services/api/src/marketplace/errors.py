from typing import Any, Dict, Optional


class MarketplaceError(Exception):
    """Base class for expected, user-facing marketplace outcomes."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(MarketplaceError):
    """Malformed or missing input."""


class InvalidWindow(ValidationError):
    """Pickup window end is not after its start."""


class InvalidQuantity(ValidationError):
    """Requested quantity is not a positive integer."""


class NotFound(MarketplaceError):
    pass


class PermissionDenied(MarketplaceError):
    pass


class InvalidTransition(MarketplaceError):
    """The order or listing is not in a state that allows this action."""


class NotCancellable(InvalidTransition):
    pass


class ReservationRejected(MarketplaceError):
    """A reservation was refused on business grounds. Carries the units left."""

    def __init__(self, message: str, remaining: int):
        super().__init__(message, {"remaining": remaining})
        self.remaining = remaining


class Unavailable(ReservationRejected):
    pass


class InsufficientInventory(ReservationRejected):
    pass


class SelfReservationForbidden(MarketplaceError):
    pass


class ConcurrentUpdateConflict(MarketplaceError):
    """Optimistic retries on a contended record were exhausted."""
