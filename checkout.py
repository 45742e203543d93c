"""
Checkout: addresses and the purchase order builder.

place_order() turns the shopper's reconciled cart into a committed purchase
order. There is no cross-document transaction: the order is written first,
then stock is drained item by item, then the cart is emptied. Once the order
exists the shopper has a confirmed purchase, so a failed stock update or cart
cleanup is logged and skipped instead of undoing the order. Two shoppers
racing for the last unit can both be accepted; stock floors at zero.
"""

from __future__ import annotations
import logging
from typing import Optional

from pymongo.errors import DuplicateKeyError, PyMongoError

from cart import compute_totals, reconcile, user_lines
from database import ADDRESSES, CART, ORDERS, create_document, get_document, get_documents, utcnow
from errors import NotFound, ShopError, TransientIOFailure, Unavailable, ValidationFailure, store_errors
from inventory import decrement_stock
from lookup import new_reference, parse_order
from schemas import Address, AddressIn, CheckoutRequest, OrderItem, PurchaseOrder
from session import ShopSession
from workflow import initial_status

logger = logging.getLogger(__name__)

PAYMENT_LABELS = {
    "card": "Credit/Debit Card",
    "upi": "UPI Payment",
    "netbanking": "Net Banking",
    "cod": "Cash on Delivery",
}

INSERT_ATTEMPTS = 3


async def list_addresses(session: ShopSession) -> list[Address]:
    user = session.require_user()
    with store_errors("load saved addresses"):
        docs = await get_documents(session.db, ADDRESSES, {"user_id": user.uid}, sort=[("created_at", -1)])
    return [Address(**d) for d in docs]


async def create_address(session: ShopSession, address: AddressIn) -> Address:
    user = session.require_user()
    with store_errors("save address"):
        doc = await create_document(session.db, ADDRESSES, {**address.model_dump(), "user_id": user.uid})
    return Address(**doc)


async def _resolve_address(session: ShopSession, request: CheckoutRequest) -> Address:
    user = session.require_user()
    if request.address_id:
        with store_errors("load address"):
            doc = await get_document(session.db, ADDRESSES, request.address_id)
        if doc is None or doc.get("user_id") != user.uid:
            raise NotFound("Address not found")
        return Address(**doc)
    return await create_address(session, request.new_address)


def _check_selections(request: CheckoutRequest) -> Optional[str]:
    """Validate address and payment choices; returns the card's last four digits."""
    if not request.address_id and request.new_address is None:
        raise ValidationFailure("Please select an address or add a new one")
    if request.payment_method is None:
        raise ValidationFailure("Please select a payment method")
    if request.payment_method == "card":
        if request.card is None:
            raise ValidationFailure("Please fill in all card details")
        return request.card.number[-4:]
    return None


async def _insert_order(session: ShopSession, doc: dict) -> PurchaseOrder:
    for _ in range(INSERT_ATTEMPTS):
        with store_errors("place your order"):
            doc["order_number"] = await new_reference(session.db, "order_number", "ORD-")
        try:
            saved = await create_document(session.db, ORDERS, doc, key="key")
        except DuplicateKeyError:
            logger.warning("Order number %s already taken, retrying", doc["order_number"])
            continue
        except PyMongoError:
            logger.exception("Failed to place order")
            raise TransientIOFailure("Error placing order. Please try again.")
        return parse_order(saved)
    raise TransientIOFailure("Error placing order. Please try again.")


async def place_order(session: ShopSession, request: CheckoutRequest) -> PurchaseOrder:
    user = session.require_user()
    card_last4 = _check_selections(request)

    # check again right before committing; stock may have moved since the cart page
    with store_errors("load your cart"):
        lines = await user_lines(session.db, user.uid)
    checked = await reconcile(session.db, lines)
    purchasable = [line for line in checked.lines if line.available]
    if not purchasable:
        raise Unavailable("All items in your cart are currently unavailable")

    address = await _resolve_address(session, request)

    items = [
        OrderItem(
            watch_id=line.watch_id,
            name=line.name,
            brand=line.brand,
            price=line.price,
            quantity=line.quantity,
            image=line.image,
        )
        for line in purchasable
    ]
    subtotal, tax, total = compute_totals(sum(item.price * item.quantity for item in items))

    order = await _insert_order(session, {
        "type": "purchase",
        "status": initial_status("purchase"),
        "timestamp": utcnow(),
        "user_id": user.uid,
        "user_email": user.email,
        "customer_name": address.full_name,
        "customer_email": user.email,
        "customer_phone": address.phone,
        "shipping_address": address.model_dump(mode="json"),
        "payment_method": request.payment_method,
        "payment_status": "pending" if request.payment_method == "cod" else "paid",
        "card_last4": card_last4,
        "items": [item.model_dump() for item in items],
        "subtotal": subtotal,
        "tax": tax,
        "total_amount": total,
    })
    logger.info("Placed order %s for user %s (%d items)", order.order_number, user.uid, len(items))

    for item in items:
        try:
            await decrement_stock(session.db, item.watch_id, item.quantity)
        except (ShopError, PyMongoError):
            logger.exception("Error updating stock for %s on order %s", item.name, order.order_number)

    try:
        await session.db[CART].delete_many({"user_id": user.uid})
    except PyMongoError:
        logger.exception("Failed to clear cart after order %s", order.order_number)

    session.notifier.notify(
        user.email,
        address.full_name,
        order.order_number,
        total_amount=f"{order.total_amount:.2f}",
        items=len(items),
        payment_method=PAYMENT_LABELS[order.payment_method],
        address=f"{address.address}, {address.city}, {address.state} - {address.pincode}",
    )
    return order
