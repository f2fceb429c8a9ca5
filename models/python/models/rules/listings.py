"""
Pure lifecycle rules for listings.

Nothing here touches storage: callers pass the current time in and persist
whatever comes out. The same functions run at every mutation site and when a
listing is read, so the derived status is identical in both places.
"""

from datetime import datetime

from models.entities.couchbase.listings import (
    TERMINAL_LISTING_STATUSES,
    ListingData,
    ListingStatus,
)


def derive_listing_status(
    available_units: int,
    pickup_window_end: datetime,
    previous: ListingStatus,
    now: datetime,
) -> ListingStatus:
    """Compute a listing's status from its inventory, window and prior status.

    ``expired`` and ``cancelled`` are terminal and always returned unchanged.
    Otherwise an empty listing is ``sold_out``, a lapsed window is ``expired``,
    and a ``sold_out`` listing that regained units inside its window re-opens.
    Applying the rule twice with the same inputs gives the same answer.
    """
    if previous in TERMINAL_LISTING_STATUSES:
        return previous
    if available_units <= 0:
        return "sold_out"
    if pickup_window_end < now:
        return "expired"
    if previous == "sold_out" and pickup_window_end > now:
        return "active"
    return previous


def apply_listing_status(data: ListingData, now: datetime) -> bool:
    """Re-derive ``data.status`` in place. Returns True if it changed."""
    status = derive_listing_status(
        data.available_units, data.pickup_window_end, data.status, now
    )
    changed = status != data.status
    data.status = status
    return changed


def is_listing_available(data: ListingData, now: datetime) -> bool:
    return (
        data.status == "active"
        and data.available_units > 0
        and data.pickup_window_end > now
    )


def fresh_minutes(pickup_window_end: datetime, now: datetime) -> int:
    """Minutes left in the pickup window, never negative."""
    if pickup_window_end < now:
        return 0
    return round((pickup_window_end - now).total_seconds() / 60)


def is_stale(data: ListingData, cutoff: datetime) -> bool:
    """True when the sweeper should force this listing to ``expired``."""
    return (
        data.pickup_window_end < cutoff
        and data.status not in TERMINAL_LISTING_STATUSES
    )
