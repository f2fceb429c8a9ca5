"""
Cross-document reservation writes.

A reservation touches two documents: the listing (inventory decrement) and
the new order. Both writes run inside one Couchbase transaction so no reader
ever sees an order without its decrement or the other way round. Business
rules live with the caller and are passed in as plain callables; an exception
raised by a callable is captured, the transaction is left without staged
writes, and the exception is re-raised once the transaction has finished.
"""

import logging
from typing import Any, Callable, Dict, Optional, Tuple

from clients.couchbase import get_cluster
from models.entities.couchbase.listings import Listing, ListingData
from models.entities.couchbase.orders import Order, OrderData

logger = logging.getLogger(__name__)


async def reservation_create(
    listing_id: str,
    apply: Callable[[ListingData], OrderData],
) -> Optional[Tuple[Listing, Order]]:
    """Decrement a listing and insert the order produced by *apply*, atomically.

    *apply* mutates the listing data in place and returns the order to insert.
    Returns None if the listing does not exist.
    """
    if not await Listing.get(listing_id):
        return None

    cluster = await get_cluster()
    listing_collection = await Listing.get_keyspace().get_collection()
    order_collection = await Order.get_keyspace().get_collection()
    order_key = Order.new_key()
    outcome: Dict[str, Any] = {}

    async def txn_logic(ctx):
        outcome.clear()
        doc = await ctx.get(listing_collection, listing_id)
        listing_data = ListingData.model_validate(doc.content_as[dict])
        try:
            order_data = apply(listing_data)
        except Exception as e:
            outcome["error"] = e
            return

        listing_data.stamp_updated()
        order_data.stamp_created(order_data.buyer_id)
        await ctx.replace(doc, Listing.to_document(listing_data))
        await ctx.insert(order_collection, order_key, Order.to_document(order_data))
        outcome["listing"] = Listing(id=listing_id, data=listing_data)
        outcome["order"] = Order(id=order_key, data=order_data)

    await cluster.transactions.run(txn_logic)

    if "error" in outcome:
        raise outcome["error"]
    logger.debug(f"Reservation {order_key} committed against listing {listing_id}")
    return outcome["listing"], outcome["order"]


async def reservation_release(
    order_id: str,
    listing_id: str,
    cancel: Callable[[OrderData], None],
    restore: Callable[[ListingData], None],
) -> Optional[Tuple[Order, Optional[Listing]]]:
    """Cancel the stored order via *cancel* and give its units back via *restore*.

    Both callables see the documents as read inside the transaction, so a
    second concurrent release finds the order already cancelled. If the
    listing no longer exists only the order is written (CAS-guarded) and the
    returned listing is None. Returns None if the order does not exist.
    """
    order = await Order.get(order_id)
    if not order:
        return None

    if not await Listing.get(listing_id):
        cancel(order.data)
        return await Order.update(order), None

    cluster = await get_cluster()
    listing_collection = await Listing.get_keyspace().get_collection()
    order_collection = await Order.get_keyspace().get_collection()
    outcome: Dict[str, Any] = {}

    async def txn_logic(ctx):
        outcome.clear()
        order_doc = await ctx.get(order_collection, order_id)
        listing_doc = await ctx.get(listing_collection, listing_id)
        order_data = OrderData.model_validate(order_doc.content_as[dict])
        listing_data = ListingData.model_validate(listing_doc.content_as[dict])
        try:
            cancel(order_data)
            restore(listing_data)
        except Exception as e:
            outcome["error"] = e
            return

        listing_data.stamp_updated()
        order_data.stamp_updated()
        await ctx.replace(listing_doc, Listing.to_document(listing_data))
        await ctx.replace(order_doc, Order.to_document(order_data))
        outcome["order"] = Order(id=order_id, data=order_data)
        outcome["listing"] = Listing(id=listing_id, data=listing_data)

    await cluster.transactions.run(txn_logic)

    if "error" in outcome:
        raise outcome["error"]
    logger.debug(f"Order {order_id} released back to listing {listing_id}")
    return outcome["order"], outcome["listing"]
