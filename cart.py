"""
Shopping cart and the cart reconciler.

A stored cart line is a snapshot taken when the watch was added. Inventory is
authoritative, so every cart load (and checkout, once more right before the
order is written) re-validates each line against live stock and visibility
before any totals are computed.

Reconciliation per line:
    missing product   -> unavailable, quantity 0
    hidden product    -> unavailable + hidden, quantity 0, original kept
    stock == 0        -> unavailable, quantity 0, original kept
    quantity == 0     -> unavailable (set to zero by the shopper)
    quantity > stock  -> clamped to stock and persisted, reported as updated
    otherwise         -> available, stale flags cleared

Only the clamp is written back; the other outcomes are a derived view, so
running the reconciler twice without outside changes gives the same cart.
"""

from __future__ import annotations
import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from config import settings
from database import CART, create_document, delete_document, get_document, get_documents, update_document, utcnow
from errors import NotFound, Unavailable, ValidationFailure, store_errors
from inventory import get_availability, get_watch
from schemas import Availability, Cart, CartLine, CartSummary, LineUpdate, ReconcileResult
from session import ShopSession

logger = logging.getLogger(__name__)


def compute_totals(subtotal: float) -> tuple[float, float, float]:
    """Return (subtotal, tax, total) with tax rounded to paise."""
    subtotal = round(subtotal, 2)
    tax = round(subtotal * settings.TAX_RATE, 2)
    return subtotal, tax, subtotal + tax


def summarize(lines: list[CartLine]) -> CartSummary:
    available = [line for line in lines if line.available]
    subtotal, tax, total = compute_totals(sum(line.price * line.quantity for line in available))
    return CartSummary(
        subtotal=subtotal,
        tax=tax,
        total=total,
        item_count=len(lines),
        available_quantity=sum(line.quantity for line in available),
        checkout_ready=bool(available),
    )


def _mark_unavailable(line: CartLine, hidden: bool) -> CartLine:
    original = line.original_quantity if line.quantity == 0 else line.quantity
    return line.model_copy(update={
        "out_of_stock": True,
        "hidden": hidden,
        "original_quantity": original,
        "quantity": 0,
    })


async def _availability(db: AsyncIOMotorDatabase, line: CartLine) -> Optional[Availability]:
    try:
        return await get_availability(db, line.watch_id)
    except PyMongoError:
        logger.exception("Failed to check availability for cart line %s", line.id)
        return None


async def reconcile(db: AsyncIOMotorDatabase, lines: list[CartLine]) -> ReconcileResult:
    result = ReconcileResult(lines=[])
    for line in lines:
        availability = await _availability(db, line)
        if availability is None or not availability.exists:
            line = _mark_unavailable(line, hidden=False)
            result.out_of_stock.append(line.name)
        elif availability.hidden:
            line = _mark_unavailable(line, hidden=True)
            result.hidden.append(line.name)
        elif availability.stock == 0:
            line = _mark_unavailable(line, hidden=False)
            result.out_of_stock.append(line.name)
        elif line.quantity == 0:
            line = line.model_copy(update={"out_of_stock": True, "hidden": False})
            result.out_of_stock.append(line.name)
        elif line.quantity > availability.stock:
            stock = availability.stock
            try:
                await update_document(db, CART, line.id, {
                    "quantity": stock,
                    "out_of_stock": False,
                    "hidden": False,
                })
            except PyMongoError:
                logger.exception("Failed to persist clamped quantity for cart line %s", line.id)
            line = line.model_copy(update={"quantity": stock, "out_of_stock": False, "hidden": False})
            result.updated.append(LineUpdate(line_id=line.id, name=line.name, new_quantity=stock))
        else:
            line = line.model_copy(update={"out_of_stock": False, "hidden": False})
        result.lines.append(line)
    return result


async def user_lines(db: AsyncIOMotorDatabase, user_id: str) -> list[CartLine]:
    docs = await get_documents(db, CART, {"user_id": user_id}, sort=[("added_at", -1)])
    return [CartLine(**d) for d in docs]


async def load_cart(session: ShopSession) -> Cart:
    user = session.require_user()
    with store_errors("load your cart"):
        lines = await user_lines(session.db, user.uid)
    checked = await reconcile(session.db, lines)
    return Cart(
        lines=checked.lines,
        summary=summarize(checked.lines),
        updated=checked.updated,
        hidden=checked.hidden,
        out_of_stock=checked.out_of_stock,
    )


async def _own_line(session: ShopSession, line_id: str) -> CartLine:
    user = session.require_user()
    with store_errors("load cart item"):
        doc = await get_document(session.db, CART, line_id)
    if doc is None or doc.get("user_id") != user.uid:
        raise NotFound("Cart item not found")
    return CartLine(**doc)


async def update_quantity(session: ShopSession, line_id: str, quantity: int) -> CartLine:
    if quantity < 0:
        raise ValidationFailure("Quantity cannot be negative")
    line = await _own_line(session, line_id)

    if quantity == 0:
        # keep the row; the shopper can bring it back later
        changes = {
            "quantity": 0,
            "out_of_stock": True,
            "original_quantity": line.quantity or line.original_quantity,
        }
    else:
        with store_errors("check stock"):
            availability = await get_availability(session.db, line.watch_id)
        if not availability.exists:
            raise NotFound("Product not found")
        if availability.hidden:
            raise Unavailable("Product is currently unavailable")
        if quantity > availability.stock:
            raise Unavailable(f"Only {availability.stock} items available in stock")
        if quantity > settings.MAX_QUANTITY_PER_ITEM:
            raise Unavailable(f"Maximum {settings.MAX_QUANTITY_PER_ITEM} items allowed per product")
        changes = {
            "quantity": quantity,
            "out_of_stock": False,
            "hidden": False,
            "original_quantity": None,
        }

    with store_errors("update quantity"):
        await update_document(session.db, CART, line_id, changes)
    return line.model_copy(update=changes)


async def remove_line(session: ShopSession, line_id: str) -> None:
    await _own_line(session, line_id)
    with store_errors("remove item"):
        await delete_document(session.db, CART, line_id)


async def clear_cart(session: ShopSession) -> int:
    user = session.require_user()
    with store_errors("clear your cart"):
        result = await session.db[CART].delete_many({"user_id": user.uid})
    return result.deleted_count


async def add_to_cart(session: ShopSession, watch_id: str, quantity: int = 1) -> CartLine:
    user = session.require_user()
    if quantity < 1:
        raise ValidationFailure("Quantity must be at least 1")
    watch = await get_watch(session.db, watch_id)
    if watch.hidden:
        raise Unavailable("Product is currently unavailable")
    if watch.stock <= 0:
        raise Unavailable("Product is out of stock")

    cap = settings.MAX_QUANTITY_PER_ITEM
    with store_errors("add item to cart"):
        existing = await session.db[CART].find_one({"user_id": user.uid, "watch_id": watch_id})
    current = int(existing.get("quantity") or 0) if existing else 0
    if current >= watch.stock:
        raise Unavailable(f"Maximum available quantity ({watch.stock}) already in cart")
    if current >= cap:
        raise Unavailable(f"Maximum {cap} items per product allowed")
    new_quantity = min(current + quantity, watch.stock, cap)

    with store_errors("add item to cart"):
        if existing:
            line_id = str(existing["_id"])
            await update_document(session.db, CART, line_id, {
                "quantity": new_quantity,
                "out_of_stock": False,
                "hidden": False,
                "original_quantity": None,
            })
            doc = await get_document(session.db, CART, line_id)
        else:
            doc = await create_document(session.db, CART, {
                "user_id": user.uid,
                "watch_id": watch_id,
                "name": watch.name,
                "brand": watch.brand,
                "price": watch.price,
                "image": watch.image,
                "quantity": new_quantity,
                "added_at": utcnow(),
                "out_of_stock": False,
                "hidden": False,
            })
    return CartLine(**doc)


async def cart_count(session: ShopSession) -> int:
    user = session.require_user()
    with store_errors("count cart items"):
        docs = await get_documents(session.db, CART, {"user_id": user.uid})
    return sum(int(d.get("quantity") or 0) for d in docs)
