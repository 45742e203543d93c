import logging
import os
from contextlib import asynccontextmanager
from datetime import date
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel
from pymongo.errors import PyMongoError

import cart as cart_ops
import checkout
import inventory
import lookup
import reports
import repairs
import workflow
from config import settings
from database import WATCHES, create_document, ensure_indexes, get_db
from errors import NotFound, ShopError
from notifications import EmailNotifier, Notifier
from schemas import (
    AddToCart,
    Address,
    AddressIn,
    Cart,
    CartLine,
    CatalogFilter,
    CheckoutRequest,
    DashboardStats,
    DeleteResult,
    Order,
    OrderType,
    PickupOrder,
    PickupRequest,
    PurchaseOrder,
    QuantityUpdate,
    SortOrder,
    StoreOrder,
    StoreVisitRequest,
    VisibilityResult,
    Watch,
    WatchIn,
    WatchUpdate,
)
from session import Identity, ShopSession

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("timekeeper")

notifier = EmailNotifier()


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await ensure_indexes(await get_db())
    except PyMongoError:
        logger.exception("Could not create indexes; continuing without them")
    yield
    await notifier.drain()


app = FastAPI(title="Timekeeper API", lifespan=lifespan)

# Allow all origins for dev preview
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.public_message, "category": exc.category},
    )


# Identity comes from the auth provider in front of this service

def get_notifier() -> Notifier:
    return notifier


def current_identity(
    x_user_id: Optional[str] = Header(None),
    x_user_email: Optional[str] = Header(None),
    x_user_name: Optional[str] = Header(None),
) -> Optional[Identity]:
    if not x_user_id:
        return None
    return Identity(uid=x_user_id, email=x_user_email, display_name=x_user_name)


def get_session(
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: Optional[Identity] = Depends(current_identity),
    mailer: Notifier = Depends(get_notifier),
    x_admin: Optional[str] = Header(None),
) -> ShopSession:
    return ShopSession(db=db, notifier=mailer, user=user, is_admin=x_admin == "true")


def admin_session(session: ShopSession = Depends(get_session)) -> ShopSession:
    session.require_admin()
    return session


@app.get("/")
async def root():
    return {"message": "Timekeeper Backend Running"}


@app.get("/test")
async def test(db: AsyncIOMotorDatabase = Depends(get_db)):
    try:
        collections = await db.list_collection_names()
        return {
            "backend": "✅ Running",
            "database": "✅ Connected",
            "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
            "database_name": db.name,
            "collections": collections[:10],
        }
    except PyMongoError:
        logger.exception("Database health check failed")
        return {"backend": "✅ Running", "database": "❌ Not Available"}


# Seed data: a small watch catalogue
SEED_WATCHES: list[dict] = [
    {"name": "Submariner Date", "brand": "Rolex", "category": "luxury", "price": 1045000.0, "stock": 3, "features": ["Automatic", "300m water resistance", "Ceramic bezel"]},
    {"name": "Speedmaster Moonwatch", "brand": "Omega", "category": "luxury", "price": 725000.0, "stock": 4, "features": ["Manual winding", "Chronograph", "Hesalite crystal"]},
    {"name": "Carrera Chronograph", "brand": "Tag heuer", "category": "luxury", "price": 465000.0, "stock": 5, "features": ["Automatic", "Chronograph", "Sapphire crystal"]},
    {"name": "Navitimer B01", "brand": "Breitling", "category": "luxury", "price": 810000.0, "stock": 2, "features": ["Slide rule bezel", "Chronograph"]},
    {"name": "Seamaster Aqua Terra", "brand": "Omega", "category": "luxury", "price": 560000.0, "stock": 6, "features": ["Co-axial movement", "150m water resistance"]},
    {"name": "Presage Cocktail Time", "brand": "Seiko", "category": "classic", "price": 42000.0, "stock": 12, "features": ["Automatic", "Textured dial"]},
    {"name": "PRX Powermatic 80", "brand": "Tissot", "category": "classic", "price": 58000.0, "stock": 10, "features": ["80h power reserve", "Integrated bracelet"]},
    {"name": "G-Shock GA-2100", "brand": "Casio", "category": "sports", "price": 9500.0, "stock": 25, "features": ["Shock resistant", "World time"]},
]


class SeedResponse(BaseModel):
    inserted: int


@app.post("/seed", response_model=SeedResponse)
async def seed_watches(session: ShopSession = Depends(admin_session)):
    count = await session.db[WATCHES].count_documents({})
    if count == 0:
        for w in SEED_WATCHES:
            await create_document(session.db, WATCHES, WatchIn(**w).model_dump())
        return SeedResponse(inserted=len(SEED_WATCHES))
    return SeedResponse(inserted=0)


# ---------------------- Catalog ----------------------

@app.get("/watches", response_model=List[Watch])
async def list_watches(
    category: Optional[str] = Query(None),
    q: Optional[str] = Query(None),
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    brand: List[str] = Query(default=[]),
    sort: SortOrder = Query("featured"),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    filters = CatalogFilter(category=category, q=q, min_price=min_price, max_price=max_price, brands=brand, sort=sort)
    return await inventory.list_watches(db, filters)


@app.get("/watches/{watch_id}", response_model=Watch)
async def get_watch(watch_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    watch = await inventory.get_watch(db, watch_id)
    if watch.hidden:
        raise NotFound("Product not found")
    return watch


# ---------------------- Cart ----------------------

@app.get("/cart", response_model=Cart)
async def get_cart(session: ShopSession = Depends(get_session)):
    return await cart_ops.load_cart(session)


@app.get("/cart/count")
async def get_cart_count(session: ShopSession = Depends(get_session)):
    return {"count": await cart_ops.cart_count(session)}


@app.post("/cart", response_model=CartLine)
async def add_to_cart(payload: AddToCart, session: ShopSession = Depends(get_session)):
    return await cart_ops.add_to_cart(session, payload.watch_id, payload.quantity)


@app.patch("/cart/{line_id}", response_model=CartLine)
async def update_cart_line(line_id: str, payload: QuantityUpdate, session: ShopSession = Depends(get_session)):
    return await cart_ops.update_quantity(session, line_id, payload.quantity)


@app.delete("/cart/{line_id}")
async def remove_cart_line(line_id: str, session: ShopSession = Depends(get_session)):
    await cart_ops.remove_line(session, line_id)
    return {"status": "ok"}


@app.delete("/cart")
async def clear_cart(session: ShopSession = Depends(get_session)):
    return {"removed": await cart_ops.clear_cart(session)}


# ---------------------- Checkout ----------------------

@app.get("/addresses", response_model=List[Address])
async def list_addresses(session: ShopSession = Depends(get_session)):
    return await checkout.list_addresses(session)


@app.post("/addresses", response_model=Address)
async def create_address(payload: AddressIn, session: ShopSession = Depends(get_session)):
    return await checkout.create_address(session, payload)


@app.post("/checkout", response_model=PurchaseOrder)
async def place_order(payload: CheckoutRequest, session: ShopSession = Depends(get_session)):
    return await checkout.place_order(session, payload)


# ---------------------- Services ----------------------

@app.get("/services/price")
async def service_price(service: str = Query(...), express: bool = Query(False)):
    price = repairs.pickup_price(service, express)
    return {"price": price, "display": repairs.price_display(price)}


@app.post("/pickups", response_model=PickupOrder)
async def schedule_pickup(payload: PickupRequest, session: ShopSession = Depends(get_session)):
    return await repairs.schedule_pickup(session, payload)


@app.post("/store-visits", response_model=StoreOrder)
async def book_store_visit(payload: StoreVisitRequest, session: ShopSession = Depends(get_session)):
    return await repairs.book_store_visit(session, payload)


# ---------------------- Tracking ----------------------

@app.get("/orders", response_model=List[Order])
async def my_orders(
    type: Optional[OrderType] = Query(None),
    session: ShopSession = Depends(get_session),
):
    return await lookup.list_user_orders(session, type)


@app.get("/orders/track/{identifier}", response_model=Order)
async def track_order(identifier: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    return await lookup.find_order(db, identifier)


# ---------------------- Admin ----------------------

class VisibilityIn(BaseModel):
    hidden: bool


@app.get("/admin/dashboard", response_model=DashboardStats)
async def dashboard(
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    session: ShopSession = Depends(admin_session),
):
    return await reports.dashboard_stats(session.db, start, end)


@app.get("/admin/orders", response_model=List[Order])
async def admin_orders(
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    session: ShopSession = Depends(admin_session),
):
    return await reports.list_orders(session.db, start, end)


@app.post("/admin/orders/{identifier}/advance", response_model=Order)
async def advance_order(identifier: str, session: ShopSession = Depends(admin_session)):
    return await workflow.advance_order(session.db, identifier)


@app.get("/admin/watches", response_model=List[Watch])
async def admin_watches(session: ShopSession = Depends(admin_session)):
    return await inventory.list_all_watches(session.db)


@app.post("/admin/watches", response_model=Watch)
async def create_watch(payload: WatchIn, session: ShopSession = Depends(admin_session)):
    return await inventory.create_watch(session.db, payload)


@app.patch("/admin/watches/{watch_id}", response_model=Watch)
async def update_watch(watch_id: str, payload: WatchUpdate, session: ShopSession = Depends(admin_session)):
    return await inventory.update_watch(session.db, watch_id, payload)


@app.delete("/admin/watches/{watch_id}", response_model=DeleteResult)
async def delete_watch(watch_id: str, session: ShopSession = Depends(admin_session)):
    return await inventory.delete_watch(session.db, watch_id)


@app.post("/admin/watches/{watch_id}/visibility", response_model=VisibilityResult)
async def set_visibility(watch_id: str, payload: VisibilityIn, session: ShopSession = Depends(admin_session)):
    return await inventory.set_visibility(session.db, watch_id, payload.hidden)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
