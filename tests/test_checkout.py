import asyncio

import pytest
from bson import ObjectId

from cart import add_to_cart, load_cart
from checkout import create_address, list_addresses, place_order
from database import CART, ORDERS, WATCHES
from errors import LoginRequired, NotFound, Unavailable, ValidationFailure
from inventory import get_availability, set_visibility
from schemas import CardDetails, CheckoutRequest, PurchaseOrder
from session import ShopSession


async def test_place_order_commits_totals_stock_and_cart(db, session, notifier, make_watch, address):
    watch = await make_watch(price=1000.0, stock=5)
    await add_to_cart(session, watch.id)

    order = await place_order(session, CheckoutRequest(new_address=address, payment_method="upi"))

    assert order.order_number.startswith("ORD-")
    assert (order.subtotal, order.tax, order.total_amount) == (1000, 180, 1180)
    assert order.total_amount == pytest.approx(order.subtotal + order.tax)
    assert order.status == "pending"
    assert order.payment_status == "paid"
    assert order.customer_name == "Asha Rao"
    assert [(i.name, i.quantity) for i in order.items] == [("Speedmaster", 1)]
    assert (await get_availability(db, watch.id)).stock == 4
    assert await db[CART].count_documents({"user_id": "user-1"}) == 0
    assert notifier.sent[0]["order_id"] == order.order_number
    assert notifier.sent[0]["to_email"] == "asha@example.com"


async def test_cash_on_delivery_is_pending_payment(session, make_watch, address):
    watch = await make_watch()
    await add_to_cart(session, watch.id)
    order = await place_order(session, CheckoutRequest(new_address=address, payment_method="cod"))
    assert order.payment_status == "pending"
    assert order.card_last4 is None


async def test_card_payment_stores_last_four(session, make_watch, address):
    watch = await make_watch()
    await add_to_cart(session, watch.id)
    card = CardDetails(number="4111 1111 1111 1234", name="Asha Rao", expiry="12/29", cvv="123")

    order = await place_order(session, CheckoutRequest(new_address=address, payment_method="card", card=card))

    assert order.card_last4 == "1234"


async def test_checkout_validates_before_touching_the_store(db, session, make_watch, address):
    watch = await make_watch()
    await add_to_cart(session, watch.id)

    with pytest.raises(ValidationFailure):
        await place_order(session, CheckoutRequest(payment_method="upi"))
    with pytest.raises(ValidationFailure):
        await place_order(session, CheckoutRequest(new_address=address))
    with pytest.raises(ValidationFailure):
        await place_order(session, CheckoutRequest(new_address=address, payment_method="card"))

    assert await db[ORDERS].count_documents({}) == 0
    assert (await get_availability(db, watch.id)).stock == 5


async def test_checkout_only_buys_available_lines(db, session, make_watch, cart_line, address):
    keep = await make_watch(name="Speedmaster", price=1000.0, stock=1)
    gone = await make_watch(name="Seamaster", price=500.0)
    await cart_line(keep, quantity=3)
    await cart_line(gone, quantity=1)
    await set_visibility(db, gone.id, True)

    order = await place_order(session, CheckoutRequest(new_address=address, payment_method="upi"))

    assert [(i.name, i.quantity) for i in order.items] == [("Speedmaster", 1)]
    assert order.total_amount == 1180
    assert (await get_availability(db, keep.id)).stock == 0


async def test_checkout_with_nothing_available_is_rejected(db, session, make_watch, cart_line, address):
    watch = await make_watch(stock=0)
    await cart_line(watch, quantity=1)

    with pytest.raises(Unavailable):
        await place_order(session, CheckoutRequest(new_address=address, payment_method="upi"))
    assert await db[ORDERS].count_documents({}) == 0


async def test_checkout_with_empty_cart_is_rejected(session, address):
    with pytest.raises(Unavailable):
        await place_order(session, CheckoutRequest(new_address=address, payment_method="upi"))


async def test_checkout_requires_login(db, notifier, address):
    with pytest.raises(LoginRequired):
        await place_order(ShopSession(db=db, notifier=notifier), CheckoutRequest(new_address=address, payment_method="upi"))


async def test_saved_address_is_reused(session, make_watch, address):
    saved = await create_address(session, address)
    watch = await make_watch()
    await add_to_cart(session, watch.id)

    order = await place_order(session, CheckoutRequest(address_id=saved.id, payment_method="netbanking"))

    assert order.shipping_address.id == saved.id
    assert [a.id for a in await list_addresses(session)] == [saved.id]


async def test_someone_elses_address_is_not_found(session, other_session, make_watch, address):
    theirs = await create_address(other_session, address)
    watch = await make_watch()
    await add_to_cart(session, watch.id)

    with pytest.raises(NotFound):
        await place_order(session, CheckoutRequest(address_id=theirs.id, payment_method="upi"))


async def test_two_orders_get_distinct_numbers(session, make_watch, address):
    watch = await make_watch(stock=10)
    await add_to_cart(session, watch.id)
    first = await place_order(session, CheckoutRequest(new_address=address, payment_method="upi"))
    await add_to_cart(session, watch.id)
    second = await place_order(session, CheckoutRequest(new_address=address, payment_method="upi"))

    assert first.order_number != second.order_number
    assert first.key != second.key


async def test_last_unit_goes_to_first_committed_order(db, session, other_session, make_watch, cart_line, address):
    watch = await make_watch(stock=1)
    await cart_line(watch, user_id="user-1", quantity=1)
    await cart_line(watch, user_id="user-2", quantity=1)
    first = await load_cart(session)
    second = await load_cart(other_session)
    assert first.summary.checkout_ready and second.summary.checkout_ready

    order = await place_order(session, CheckoutRequest(new_address=address, payment_method="upi"))

    assert order.items[0].quantity == 1
    assert (await get_availability(db, watch.id)).stock == 0
    with pytest.raises(Unavailable):
        await place_order(other_session, CheckoutRequest(new_address=address, payment_method="upi"))


async def test_concurrent_checkouts_for_last_unit(db, session, other_session, make_watch, cart_line, address):
    watch = await make_watch(stock=1)
    await cart_line(watch, user_id="user-1", quantity=1)
    await cart_line(watch, user_id="user-2", quantity=1)
    request = CheckoutRequest(new_address=address, payment_method="upi")

    results = await asyncio.gather(
        place_order(session, request),
        place_order(other_session, request),
        return_exceptions=True,
    )

    accepted = [r for r in results if isinstance(r, PurchaseOrder)]
    rejected = [r for r in results if not isinstance(r, PurchaseOrder)]
    assert len(accepted) in (1, 2)
    assert all(isinstance(r, Unavailable) for r in rejected)
    assert await db[ORDERS].count_documents({}) == len(accepted)
    assert (await get_availability(db, watch.id)).stock == 0
    doc = await db[WATCHES].find_one({"_id": ObjectId(watch.id)})
    assert doc["stock"] == 0
