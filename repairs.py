"""
Repair pickups and store visits.

Service bookings carry a public "PK..." (pickup) or "SV..." (store visit)
id next to their document key. Prices come from a fixed table; services
priced at zero are assessed after inspection instead of quoted.
"""

from __future__ import annotations
import logging
from typing import Union

from config import settings
from database import ORDERS, create_document, utcnow
from errors import store_errors
from lookup import new_reference, parse_order
from schemas import AssessedPrice, FixedPrice, PickupOrder, PickupRequest, ServiceRequest, StoreOrder, StoreVisitRequest
from session import ShopSession
from workflow import initial_status

logger = logging.getLogger(__name__)

SERVICE_PRICES = {
    "battery": 200.0,
    "full": 500.0,
    "glass": 150.0,
    "other": 0.0,
}


def pickup_price(service: str, express: bool = False) -> Union[FixedPrice, AssessedPrice]:
    base = SERVICE_PRICES.get(service, 0.0)
    surcharge = settings.EXPRESS_SURCHARGE if express else 0.0
    if base == 0:
        return AssessedPrice(surcharge=surcharge)
    return FixedPrice(amount=base + surcharge)


def price_display(price: Union[FixedPrice, AssessedPrice]) -> str:
    if isinstance(price, FixedPrice):
        return f"₹{price.amount:g}"
    return price.display()


async def _book(session: ShopSession, request: ServiceRequest, order_type: str, prefix: str, place: dict) -> dict:
    user = session.require_user()
    price = pickup_price(request.service, request.express)
    with store_errors("book your service"):
        reference = await new_reference(session.db, "id", prefix)
        saved = await create_document(session.db, ORDERS, {
            **request.model_dump(),
            **place,
            "id": reference,
            "type": order_type,
            "status": initial_status(order_type),
            "timestamp": utcnow(),
            "user_id": user.uid,
            "user_email": user.email,
            "price": price.model_dump(),
        }, key="key")
    logger.info("Booked %s %s for user %s", order_type, reference, user.uid)

    session.notifier.notify(
        request.email,
        request.customer_name,
        reference,
        service_type=request.service,
        pickup_date=request.date,
        pickup_time=request.time,
        total_price=price_display(price),
        express_service="Yes" if request.express else "No",
        **place,
    )
    return saved


async def schedule_pickup(session: ShopSession, request: PickupRequest) -> PickupOrder:
    saved = await _book(session, request, "pickup", "PK", {"address": request.address})
    return parse_order(saved)


async def book_store_visit(session: ShopSession, request: StoreVisitRequest) -> StoreOrder:
    saved = await _book(session, request, "store", "SV", {"store": request.store})
    return parse_order(saved)
