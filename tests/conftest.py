"""
Pytest fixtures for the storefront tests.

Every test gets a fresh in-memory Mongo database, a notifier that records
instead of mailing, and signed-in shopper/admin sessions.
"""

import httpx
import pytest
from mongomock_motor import AsyncMongoMockClient

from database import CART
from inventory import create_watch
from notifications import Notifier
from schemas import AddressIn, WatchIn
from session import Identity, ShopSession


class RecordingNotifier(Notifier):
    def __init__(self):
        super().__init__()
        self.sent = []

    def notify(self, to_email, to_name, order_id, **fields):
        self.sent.append({"to_email": to_email, "to_name": to_name, "order_id": order_id, **fields})


@pytest.fixture
def db():
    return AsyncMongoMockClient()["timekeeper_test"]


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def shopper():
    return Identity(uid="user-1", email="asha@example.com", display_name="Asha")


@pytest.fixture
def session(db, notifier, shopper):
    return ShopSession(db=db, notifier=notifier, user=shopper)


@pytest.fixture
def other_session(db, notifier):
    return ShopSession(db=db, notifier=notifier, user=Identity(uid="user-2", email="ravi@example.com"))


@pytest.fixture
def admin_session(db, notifier):
    return ShopSession(db=db, notifier=notifier, user=Identity(uid="admin-1"), is_admin=True)


@pytest.fixture
def make_watch(db):
    async def _make(**overrides):
        data = {"name": "Speedmaster", "brand": "Omega", "category": "luxury", "price": 1000.0, "stock": 5}
        data.update(overrides)
        return await create_watch(db, WatchIn(**data))
    return _make


@pytest.fixture
def cart_line(db):
    """Insert a raw cart line, bypassing the add-to-cart checks."""
    async def _line(watch, user_id="user-1", quantity=1, **extra):
        doc = {
            "user_id": user_id,
            "watch_id": watch.id,
            "name": watch.name,
            "brand": watch.brand,
            "price": watch.price,
            "quantity": quantity,
            "out_of_stock": False,
            "hidden": False,
            **extra,
        }
        result = await db[CART].insert_one(doc)
        return str(result.inserted_id)
    return _line


@pytest.fixture
def address():
    return AddressIn(
        full_name="Asha Rao",
        phone="9876543210",
        address="12 MG Road",
        city="Bengaluru",
        state="Karnataka",
        pincode="560001",
    )


@pytest.fixture
async def client(db, notifier):
    from database import get_db
    from main import app, get_notifier

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_notifier] = lambda: notifier
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
