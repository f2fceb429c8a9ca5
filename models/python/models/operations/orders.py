import logging
from typing import List, Optional

from models.entities.couchbase.orders import Order

logger = logging.getLogger(__name__)


async def order_get(order_id: str) -> Optional[Order]:
    return await Order.get(order_id)


async def order_update(order: Order) -> Order:
    # Orders have a single writer in steady state; last write wins.
    order.cas = None
    return await Order.update(order)


async def _order_query(field: str, value: str, status: Optional[str]) -> List[Order]:
    keyspace = Order.get_keyspace()
    params = {"value": value}
    where = f"{field} = $value"
    if status:
        where += " AND status = $status"
        params["status"] = status
    query = (
        f"SELECT META().id, * FROM {keyspace} "
        f"WHERE {where} ORDER BY created_at DESC"
    )
    rows = await keyspace.query(query, **params)
    return [order for order in map(Order.from_row, rows) if order]


async def order_get_by_buyer(buyer_id: str, status: Optional[str] = None) -> List[Order]:
    return await _order_query("buyer_id", buyer_id, status)


async def order_get_by_seller(seller_id: str, status: Optional[str] = None) -> List[Order]:
    return await _order_query("seller_id", seller_id, status)
