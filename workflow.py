"""
Order status workflow.

Each order kind walks a fixed five-step list. Advancing moves one step
forward and wraps from the last state back to the first; an unrecognised
status restarts at the first state. No transition is ever rejected.
"""

from __future__ import annotations
import logging

from motor.motor_asyncio import AsyncIOMotorDatabase

from database import ORDERS, update_document
from errors import store_errors
from lookup import find_order
from schemas import Order

logger = logging.getLogger(__name__)

PURCHASE_STATUSES = (
    ("pending", "Order Placed"),
    ("confirmed", "Confirmed"),
    ("processing", "Processing"),
    ("shipped", "Shipped"),
    ("delivered", "Delivered"),
)

SERVICE_STATUSES = (
    ("order_placed", "Order Placed"),
    ("pickup_scheduled", "Pickup/Visit Scheduled"),
    ("in_service", "In Service"),
    ("completed", "Completed"),
    ("delivered", "Delivered"),
)

WORKFLOWS = {
    "purchase": PURCHASE_STATUSES,
    "pickup": SERVICE_STATUSES,
    "store": SERVICE_STATUSES,
}


def statuses_for(order_type: str) -> tuple[tuple[str, str], ...]:
    try:
        return WORKFLOWS[order_type]
    except KeyError:
        raise ValueError(f"unknown order type: {order_type!r}")


def initial_status(order_type: str) -> str:
    return statuses_for(order_type)[0][0]


def next_status(current: str | None, order_type: str) -> str:
    keys = [key for key, _ in statuses_for(order_type)]
    if current not in keys:
        return keys[0]
    return keys[(keys.index(current) + 1) % len(keys)]


def status_label(status: str | None, order_type: str) -> str:
    steps = statuses_for(order_type)
    return dict(steps).get(status, steps[0][1])


async def advance_order(db: AsyncIOMotorDatabase, identifier: str) -> Order:
    order = await find_order(db, identifier)
    new_status = next_status(order.status, order.type)
    with store_errors("update order status"):
        await update_document(db, ORDERS, order.key, {"status": new_status})
    logger.info("Order %s moved %s -> %s", order.key, order.status, new_status)
    return await find_order(db, order.key)
