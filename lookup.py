"""
Resolve a human-supplied order identifier to exactly one order.

Purchase orders are addressed by their generated order number, service
orders by the "PK..."/"SV..." id stored on the document, and admin tooling by
the raw document key. Interpretations are tried in that fixed order:

    1. document key
    2. order_number field
    3. id field

The identifier's shape is never used to guess the order kind; the type tag
written at creation is authoritative. When two orders share a value the
store's first match wins.
"""

from __future__ import annotations
from typing import Any, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from database import ORDERS, epoch_millis, object_id, to_client
from errors import NotFound, TransientIOFailure, ValidationFailure, store_errors
from schemas import Order, OrderType, order_adapter
from session import ShopSession

REFERENCE_ATTEMPTS = 5


def parse_order(doc: dict[str, Any]) -> Order:
    return order_adapter.validate_python(to_client(doc, key="key"))


async def new_reference(db: AsyncIOMotorDatabase, field: str, prefix: str) -> str:
    """
    Build a public order reference from prefix + epoch millis.

    The clock alone is not unique, so a taken value is bumped by one
    millisecond until a free one is found.
    """
    millis = epoch_millis()
    for _ in range(REFERENCE_ATTEMPTS):
        candidate = f"{prefix}{millis}"
        if await db[ORDERS].count_documents({field: candidate}) == 0:
            return candidate
        millis += 1
    raise TransientIOFailure("Could not allocate an order number. Please try again.")


async def _find(db: AsyncIOMotorDatabase, token: str) -> Optional[dict[str, Any]]:
    orders = db[ORDERS]
    oid = object_id(token)
    if oid is not None:
        doc = await orders.find_one({"_id": oid})
        if doc is not None:
            return doc
    doc = await orders.find_one({"order_number": token})
    if doc is not None:
        return doc
    return await orders.find_one({"id": token})


async def find_order(db: AsyncIOMotorDatabase, identifier: str) -> Order:
    token = (identifier or "").strip()
    if not token:
        raise ValidationFailure("Please enter an order number")
    with store_errors("look up order"):
        doc = await _find(db, token)
    if doc is None:
        raise NotFound("Order not found. Please check your order number and try again.")
    return parse_order(doc)


async def list_user_orders(session: ShopSession, order_type: Optional[OrderType] = None) -> list[Order]:
    """Purchases and service bookings of the signed-in shopper, newest first.

    order_type narrows the list to one kind (purchase, pickup or store).
    """
    user = session.require_user()
    query: dict[str, Any] = {"user_id": user.uid}
    if order_type:
        query["type"] = order_type
    with store_errors("load your orders"):
        cursor = session.db[ORDERS].find(query, sort=[("timestamp", -1)])
        docs = [doc async for doc in cursor]
    return [parse_order(doc) for doc in docs]
