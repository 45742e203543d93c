"""
Inventory records and the admin catalogue.

Stock is only ever changed by admin edits and by decrement_stock() at order
commit. Visibility toggles cascade into every shopper's cart so the change
shows up on their next cart load.
"""

from __future__ import annotations
import asyncio
import logging
from typing import Any

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from database import (
    CART,
    WATCHES,
    create_document,
    delete_document,
    get_document,
    get_documents,
    object_id,
    update_document,
    utcnow,
)
from errors import NotFound, TransientIOFailure, ValidationFailure, store_errors
from schemas import (
    Availability,
    CatalogFilter,
    DeleteResult,
    VisibilityResult,
    Watch,
    WatchIn,
    WatchUpdate,
)

logger = logging.getLogger(__name__)

MAX_BRAND_FILTER = 10

SORTS: dict[str, list[tuple[str, int]] | None] = {
    "featured": None,
    "price_asc": [("price", 1)],
    "price_desc": [("price", -1)],
    "newest": [("created_at", -1)],
}


async def get_availability(db: AsyncIOMotorDatabase, watch_id: str) -> Availability:
    doc = await get_document(db, WATCHES, watch_id)
    if doc is None:
        return Availability(exists=False)
    return Availability(
        exists=True,
        stock=max(0, int(doc.get("stock") or 0)),
        hidden=bool(doc.get("hidden", False)),
    )


async def get_watch(db: AsyncIOMotorDatabase, watch_id: str) -> Watch:
    with store_errors("load product"):
        doc = await get_document(db, WATCHES, watch_id)
    if doc is None:
        raise NotFound("Product not found")
    return Watch(**doc)


def _format_brand(brand: str) -> str:
    brand = brand.strip()
    return brand[:1].upper() + brand[1:].lower()


def catalog_query(filters: CatalogFilter) -> dict[str, Any]:
    query: dict[str, Any] = {"hidden": {"$ne": True}}
    if filters.category:
        query["category"] = filters.category
    if filters.q:
        query["name"] = {"$regex": filters.q, "$options": "i"}
    price: dict[str, float] = {}
    if filters.min_price is not None:
        price["$gte"] = filters.min_price
    if filters.max_price is not None:
        price["$lte"] = filters.max_price
    if price:
        query["price"] = price
    if filters.brands:
        if len(filters.brands) > MAX_BRAND_FILTER:
            raise ValidationFailure(f"Select at most {MAX_BRAND_FILTER} brands")
        query["brand"] = {"$in": [_format_brand(b) for b in filters.brands]}
    return query


async def list_watches(db: AsyncIOMotorDatabase, filters: CatalogFilter) -> list[Watch]:
    if (
        filters.min_price is not None
        and filters.max_price is not None
        and filters.min_price > filters.max_price
    ):
        raise ValidationFailure("Minimum price cannot be greater than maximum price")
    query = catalog_query(filters)
    with store_errors("load watches"):
        docs = await get_documents(db, WATCHES, query, sort=SORTS[filters.sort])
    return [Watch(**d) for d in docs]


async def list_all_watches(db: AsyncIOMotorDatabase) -> list[Watch]:
    with store_errors("load products"):
        docs = await get_documents(db, WATCHES, sort=[("created_at", -1)])
    return [Watch(**d) for d in docs]


async def create_watch(db: AsyncIOMotorDatabase, watch: WatchIn) -> Watch:
    with store_errors("save product"):
        doc = await create_document(db, WATCHES, watch.model_dump())
    logger.info("Created product %s (%s)", doc["id"], watch.name)
    return Watch(**doc)


async def update_watch(db: AsyncIOMotorDatabase, watch_id: str, changes: WatchUpdate) -> Watch:
    current = await get_watch(db, watch_id)
    fields = changes.model_dump(exclude_unset=True, exclude_none=True)
    hidden = fields.pop("hidden", None)
    if fields:
        with store_errors("save product"):
            await update_document(db, WATCHES, watch_id, fields)
    if hidden is not None and hidden != current.hidden:
        await set_visibility(db, watch_id, hidden)
    return await get_watch(db, watch_id)


async def _apply_to_lines(lines: list[dict[str, Any]], update) -> int:
    results = await asyncio.gather(*(update(line) for line in lines), return_exceptions=True)
    failed = 0
    for line, result in zip(lines, results):
        if isinstance(result, Exception):
            failed += 1
            logger.warning("Cart line %s was not updated: %s", line.get("id"), result)
    return failed


async def _hide_cart_lines(db: AsyncIOMotorDatabase, watch_id: str) -> tuple[int, int]:
    lines = await get_documents(db, CART, {"watch_id": watch_id})
    # lines the shopper already zeroed stay theirs; only hidden lines are restored later
    lines = [line for line in lines if line.get("hidden") or int(line.get("quantity") or 0) > 0]

    async def hide(line: dict[str, Any]) -> None:
        quantity = int(line.get("quantity") or 0)
        original = line.get("original_quantity") if quantity == 0 else quantity
        await update_document(db, CART, line["id"], {
            "out_of_stock": True,
            "hidden": True,
            "original_quantity": original,
            "quantity": 0,
        })

    return len(lines), await _apply_to_lines(lines, hide)


async def _restore_cart_lines(db: AsyncIOMotorDatabase, watch_id: str) -> tuple[int, int]:
    lines = await get_documents(db, CART, {"watch_id": watch_id, "hidden": True})

    async def restore(line: dict[str, Any]) -> None:
        await update_document(db, CART, line["id"], {
            "out_of_stock": False,
            "hidden": False,
            "quantity": line.get("original_quantity") or 1,
            "original_quantity": None,
        })

    return len(lines), await _apply_to_lines(lines, restore)


async def set_visibility(db: AsyncIOMotorDatabase, watch_id: str, hidden: bool) -> VisibilityResult:
    watch = await get_watch(db, watch_id)
    with store_errors("update product visibility"):
        await update_document(db, WATCHES, watch_id, {"hidden": hidden})

    result = VisibilityResult(watch_id=watch_id, hidden=hidden)
    try:
        if hidden:
            result.cart_lines, result.failed = await _hide_cart_lines(db, watch_id)
        else:
            result.cart_lines, result.failed = await _restore_cart_lines(db, watch_id)
    except PyMongoError:
        # the toggle itself stands; carts catch up on their next reconcile
        logger.exception("Failed to update cart lines for product %s", watch_id)
        result.complete = False
    if result.failed:
        result.complete = False
    logger.info(
        "Product %s (%s) %s, %d cart lines touched, %d failed",
        watch_id, watch.name, "hidden" if hidden else "shown", result.cart_lines, result.failed,
    )
    return result


async def delete_watch(db: AsyncIOMotorDatabase, watch_id: str) -> DeleteResult:
    watch = await get_watch(db, watch_id)
    with store_errors("delete product"):
        await delete_document(db, WATCHES, watch_id)

    result = DeleteResult(watch_id=watch_id)
    try:
        lines = await get_documents(db, CART, {"watch_id": watch_id})
        result.cart_lines = len(lines)

        async def drop(line: dict[str, Any]) -> None:
            await delete_document(db, CART, line["id"])

        result.failed = await _apply_to_lines(lines, drop)
    except PyMongoError:
        logger.exception("Failed to clean up cart lines for product %s", watch_id)
        result.complete = False
    if result.failed:
        result.complete = False
    logger.info("Deleted product %s (%s), removed %d cart lines", watch_id, watch.name, result.cart_lines - result.failed)
    return result


async def decrement_stock(db: AsyncIOMotorDatabase, watch_id: str, quantity: int, attempts: int = 3) -> int:
    """
    Take quantity units out of stock, flooring at zero.

    Both branches are single conditional writes, so concurrent checkouts can
    never drive stock negative. When neither predicate matches (stock changed
    between the two writes) the pair is retried.
    """
    oid = object_id(watch_id)
    if oid is None:
        raise NotFound("Product not found")
    watches = db[WATCHES]
    for _ in range(attempts):
        doc = await watches.find_one_and_update(
            {"_id": oid, "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is not None:
            return int(doc["stock"])
        doc = await watches.find_one_and_update(
            {"_id": oid, "stock": {"$lt": quantity}},
            {"$set": {"stock": 0, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is not None:
            logger.warning("Stock for product %s floored at 0 while taking %d", watch_id, quantity)
            return 0
        if await watches.count_documents({"_id": oid}) == 0:
            raise NotFound("Product not found")
    raise TransientIOFailure("Could not update stock. Please try again.")
