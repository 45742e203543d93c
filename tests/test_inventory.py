import asyncio

import pytest
from bson import ObjectId

from cart import load_cart, update_quantity
from database import CART, WATCHES
from errors import NotFound, ValidationFailure
from inventory import (
    catalog_query,
    decrement_stock,
    delete_watch,
    get_availability,
    list_all_watches,
    list_watches,
    set_visibility,
    update_watch,
)
from schemas import CatalogFilter, WatchUpdate


async def stored_line(db, line_id):
    return await db[CART].find_one({"_id": ObjectId(line_id)})


async def test_hide_then_unhide_restores_cart_line(db, session, make_watch, cart_line):
    watch = await make_watch(price=1000.0, stock=5)
    line_id = await cart_line(watch, quantity=2)

    hidden = await set_visibility(db, watch.id, True)

    assert hidden.cart_lines == 1 and hidden.complete
    line = await stored_line(db, line_id)
    assert (line["quantity"], line["hidden"], line["out_of_stock"], line["original_quantity"]) == (0, True, True, 2)
    cart = await load_cart(session)
    assert cart.summary.total == 0
    assert not cart.summary.checkout_ready

    shown = await set_visibility(db, watch.id, False)

    assert shown.cart_lines == 1 and shown.complete
    line = await stored_line(db, line_id)
    assert (line["quantity"], line["hidden"], line["out_of_stock"]) == (2, False, False)
    cart = await load_cart(session)
    assert cart.summary.total == 2360


async def test_unhide_leaves_lines_the_shopper_zeroed(db, session, make_watch, cart_line):
    watch = await make_watch(stock=5)
    line_id = await cart_line(watch, quantity=3)
    await update_quantity(session, line_id, 0)

    await set_visibility(db, watch.id, True)
    await set_visibility(db, watch.id, False)

    line = await stored_line(db, line_id)
    assert (line["quantity"], line["out_of_stock"]) == (0, True)
    cart = await load_cart(session)
    assert not cart.summary.checkout_ready


async def test_unhide_without_original_restores_one(db, make_watch, cart_line):
    watch = await make_watch(hidden=True)
    line_id = await cart_line(watch, quantity=0, hidden=True, out_of_stock=True)

    await set_visibility(db, watch.id, False)

    assert (await stored_line(db, line_id))["quantity"] == 1


async def test_hiding_twice_keeps_original_quantity(db, make_watch, cart_line):
    watch = await make_watch()
    line_id = await cart_line(watch, quantity=3)

    await set_visibility(db, watch.id, True)
    await set_visibility(db, watch.id, True)

    assert (await stored_line(db, line_id))["original_quantity"] == 3


async def test_hide_touches_every_shopper(db, make_watch, cart_line):
    watch = await make_watch()
    await cart_line(watch, user_id="user-1", quantity=1)
    await cart_line(watch, user_id="user-2", quantity=4)

    result = await set_visibility(db, watch.id, True)

    assert result.cart_lines == 2
    assert await db[CART].count_documents({"watch_id": watch.id, "hidden": True}) == 2


async def test_update_watch_routes_hidden_through_cascade(db, make_watch, cart_line):
    watch = await make_watch()
    line_id = await cart_line(watch, quantity=2)

    updated = await update_watch(db, watch.id, WatchUpdate(hidden=True, price=1500.0))

    assert updated.hidden and updated.price == 1500.0
    assert (await stored_line(db, line_id))["hidden"] is True


async def test_delete_watch_removes_cart_lines(db, make_watch, cart_line):
    watch = await make_watch()
    keep = await make_watch(name="Aqua Terra")
    await cart_line(watch, user_id="user-1")
    await cart_line(watch, user_id="user-2")
    await cart_line(keep, user_id="user-1")

    result = await delete_watch(db, watch.id)

    assert result.cart_lines == 2 and result.complete
    assert await db[CART].count_documents({}) == 1
    assert not (await get_availability(db, watch.id)).exists
    with pytest.raises(NotFound):
        await delete_watch(db, watch.id)


async def test_decrement_stock_floors_at_zero(db, make_watch):
    watch = await make_watch(stock=3)
    assert await decrement_stock(db, watch.id, 2) == 1
    assert await decrement_stock(db, watch.id, 5) == 0
    assert (await get_availability(db, watch.id)).stock == 0


async def test_concurrent_decrements_never_go_negative(db, make_watch):
    watch = await make_watch(stock=1)

    results = await asyncio.gather(decrement_stock(db, watch.id, 1), decrement_stock(db, watch.id, 1))

    assert results == [0, 0]
    doc = await db[WATCHES].find_one({"_id": ObjectId(watch.id)})
    assert doc["stock"] == 0


async def test_decrement_unknown_product(db):
    with pytest.raises(NotFound):
        await decrement_stock(db, str(ObjectId()), 1)
    with pytest.raises(NotFound):
        await decrement_stock(db, "not-an-id", 1)


def test_catalog_query_normalises_brands():
    query = catalog_query(CatalogFilter(brands=["omega", "TAG HEUER"], category="luxury"))
    assert query["brand"] == {"$in": ["Omega", "Tag heuer"]}
    assert query["category"] == "luxury"
    assert query["hidden"] == {"$ne": True}


def test_catalog_query_limits_brand_count():
    with pytest.raises(ValidationFailure):
        catalog_query(CatalogFilter(brands=[f"brand{i}" for i in range(11)]))


async def test_list_watches_filters_and_sorts(db, make_watch):
    await make_watch(name="Speedmaster", brand="Omega", price=700.0)
    await make_watch(name="Seamaster", brand="Omega", price=500.0)
    await make_watch(name="Submariner", brand="Rolex", price=900.0)
    await make_watch(name="Hidden Gem", brand="Omega", price=100.0, hidden=True)

    omega = await list_watches(db, CatalogFilter(brands=["omega"], sort="price_asc"))
    assert [w.name for w in omega] == ["Seamaster", "Speedmaster"]

    ranged = await list_watches(db, CatalogFilter(min_price=600, max_price=1000, sort="price_desc"))
    assert [w.name for w in ranged] == ["Submariner", "Speedmaster"]

    searched = await list_watches(db, CatalogFilter(q="sub"))
    assert [w.name for w in searched] == ["Submariner"]

    assert len(await list_all_watches(db)) == 4


async def test_list_watches_rejects_inverted_price_range(db):
    with pytest.raises(ValidationFailure):
        await list_watches(db, CatalogFilter(min_price=500, max_price=100))
