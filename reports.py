"""Admin dashboard: order listings and sales figures."""

from __future__ import annotations
from collections import Counter, defaultdict
from datetime import date, timedelta
from typing import Any, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from database import ORDERS, WATCHES, get_documents
from errors import ValidationFailure, store_errors
from lookup import parse_order
from schemas import DashboardStats, FixedPrice, Order, PurchaseOrder


def date_range_query(start: Optional[date], end: Optional[date]) -> dict[str, Any]:
    """Inclusive on both ends; the end date covers the whole day."""
    if start and end and start > end:
        raise ValidationFailure("Start date cannot be later than end date")
    bounds: dict[str, str] = {}
    if start:
        bounds["$gte"] = start.isoformat()
    if end:
        bounds["$lt"] = (end + timedelta(days=1)).isoformat()
    return {"timestamp": bounds} if bounds else {}


def order_total(order: Order) -> float:
    if isinstance(order, PurchaseOrder):
        return order.total_amount
    if isinstance(order.price, FixedPrice):
        return order.price.amount
    return 0.0


async def list_orders(db: AsyncIOMotorDatabase, start: Optional[date] = None, end: Optional[date] = None) -> list[Order]:
    query = date_range_query(start, end)
    with store_errors("load orders"):
        docs = [doc async for doc in db[ORDERS].find(query, sort=[("timestamp", -1)])]
    return [parse_order(doc) for doc in docs]


async def dashboard_stats(db: AsyncIOMotorDatabase, start: Optional[date] = None, end: Optional[date] = None) -> DashboardStats:
    orders = await list_orders(db, start, end)
    with store_errors("load products"):
        products = await get_documents(db, WATCHES)

    stats = DashboardStats(total_products=len(products))
    monthly: defaultdict[str, float] = defaultdict(float)
    for order in orders:
        amount = order_total(order)
        stats.total_sales += amount
        if order.type == "purchase":
            stats.watch_sales += amount
            stats.watch_orders += 1
        else:
            stats.service_sales += amount
            if order.type == "pickup":
                stats.pickup_orders += 1
            else:
                stats.store_orders += 1
        monthly[order.timestamp.strftime("%Y-%m")] += amount

    stats.monthly_sales = dict(sorted(monthly.items()))
    stats.products_by_category = dict(Counter(p.get("category") or "uncategorized" for p in products))
    return stats
