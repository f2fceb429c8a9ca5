from datetime import datetime

from models.entities.couchbase.orders import OPEN_ORDER_STATUSES, OrderData

EXPIRED_REASON = "Pickup window expired"


def can_cancel(data: OrderData, now: datetime) -> bool:
    return data.status in OPEN_ORDER_STATUSES and data.pickup_window_end > now


def expire_if_elapsed(data: OrderData, now: datetime) -> bool:
    """Lazily move an open order whose pickup window has passed to ``expired``.

    Mutates ``data`` in place and returns True when a transition happened, so
    the caller knows the order has to be written back.
    """
    if data.status not in OPEN_ORDER_STATUSES or data.pickup_window_end >= now:
        return False
    data.status = "expired"
    data.cancelled_at = now
    data.cancelled_by = "system"
    data.cancellation_reason = EXPIRED_REASON
    return True
