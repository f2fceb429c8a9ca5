import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from couchbase.exceptions import CASMismatchException

from models.entities.couchbase.listings import Listing, ListingData

logger = logging.getLogger(__name__)


class ListingConflictError(Exception):
    """Raised when CAS retries are exhausted on a contended listing."""


async def listing_create(seller_id: str, data: ListingData) -> Listing:
    data.seller_id = seller_id
    return await Listing.create(data, user_id=seller_id)


async def listing_get(listing_id: str) -> Optional[Listing]:
    return await Listing.get(listing_id)


async def listing_mutate(
    listing_id: str,
    mutator: Callable[[ListingData], None],
    max_retries: int = 5,
) -> Optional[Listing]:
    """Read-modify-write a listing with CAS-guarded retry.

    *mutator* receives ``ListingData`` and mutates it in place; raising aborts
    the write and the exception propagates unchanged. On
    ``CASMismatchException`` the helper re-reads and retries with exponential
    backoff (10 ms, 20 ms, 40 ms, …). Returns None if the listing is missing.
    """
    backoff_ms = 10
    for attempt in range(max_retries + 1):
        listing = await Listing.get(listing_id)
        if not listing:
            return None

        mutator(listing.data)

        try:
            return await Listing.update(listing)
        except CASMismatchException:
            if attempt == max_retries:
                break
            logger.warning(
                f"CAS conflict on listing {listing_id} (attempt {attempt + 1}), retrying"
            )
            await asyncio.sleep(backoff_ms / 1000)
            backoff_ms *= 2

    raise ListingConflictError(f"Concurrent update conflict on listing {listing_id}")


async def listing_search(
    now: datetime,
    search: Optional[str] = None,
    diet: Optional[str] = None,
    hall: Optional[str] = None,
    seller_type: Optional[str] = None,
    max_price: Optional[float] = None,
    only_available: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> List[Listing]:
    """Buy-page query. Expired windows are excluded by time, not by status.

    Sold-out rows are always excluded; `only_available` adds nothing beyond that.
    """
    keyspace = Listing.get_keyspace()
    conditions = [
        "status = 'active'",
        "STR_TO_MILLIS(pickup_window_end) > $now_ms",
        "available_units > 0",
    ]
    params: Dict[str, Any] = {"now_ms": int(now.timestamp() * 1000)}

    if seller_type:
        conditions.append("seller_profile.seller_type = $seller_type")
        params["seller_type"] = seller_type
    if hall:
        conditions.append(
            "seller_profile.seller_type = 'dining_hall' "
            "AND CONTAINS(LOWER(seller_profile.name), $hall)"
        )
        params["hall"] = hall.lower()
    if max_price is not None:
        conditions.append("TONUMBER(price) <= $max_price")
        params["max_price"] = max_price
    if diet:
        conditions.append(
            "ANY tag IN dietary_tags SATISFIES CONTAINS(LOWER(tag), $diet) END"
        )
        params["diet"] = diet.lower()
    if search:
        conditions.append(
            "(CONTAINS(LOWER(title), $search) "
            "OR CONTAINS(LOWER(description), $search) "
            "OR CONTAINS(LOWER(location), $search) "
            "OR ANY tag IN dietary_tags SATISFIES CONTAINS(LOWER(tag), $search) END)"
        )
        params["search"] = search.lower()

    where = " AND ".join(conditions)
    query = (
        f"SELECT META().id, * FROM {keyspace} "
        f"WHERE {where} "
        f"ORDER BY created_at DESC "
        f"LIMIT {int(limit)} OFFSET {int(offset)}"
    )
    rows = await keyspace.query(query, **params)
    return [listing for listing in map(Listing.from_row, rows) if listing]


async def listing_get_by_seller(seller_id: str) -> List[Listing]:
    keyspace = Listing.get_keyspace()
    query = (
        f"SELECT META().id, * FROM {keyspace} "
        f"WHERE seller_id = $seller_id ORDER BY created_at DESC"
    )
    rows = await keyspace.query(query, seller_id=seller_id)
    return [listing for listing in map(Listing.from_row, rows) if listing]


async def listing_get_stale_ids(cutoff: datetime) -> List[str]:
    """Ids of listings whose window ended before *cutoff* and are not terminal."""
    keyspace = Listing.get_keyspace()
    query = (
        f"SELECT RAW META().id FROM {keyspace} "
        f"WHERE STR_TO_MILLIS(pickup_window_end) < $cutoff_ms "
        f"AND status NOT IN ['expired', 'cancelled']"
    )
    return await keyspace.query(query, cutoff_ms=int(cutoff.timestamp() * 1000))
