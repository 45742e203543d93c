from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from config import settings

# Collection names
WATCHES = "watches"
CART = "cart"
ORDERS = "orders"
ADDRESSES = "addresses"

_client: Optional[AsyncIOMotorClient] = None
_db: Optional[AsyncIOMotorDatabase] = None


async def get_db() -> AsyncIOMotorDatabase:
    global _client, _db
    if _db is None:
        _client = AsyncIOMotorClient(settings.DATABASE_URL)
        _db = _client[settings.DATABASE_NAME]
    return _db


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    # public order references must stay unique; sparse because each kind has only one of them
    await db[ORDERS].create_index("order_number", unique=True, sparse=True)
    await db[ORDERS].create_index("id", unique=True, sparse=True)
    await db[ORDERS].create_index([("user_id", 1), ("timestamp", -1)])
    await db[CART].create_index([("user_id", 1), ("added_at", -1)])
    await db[CART].create_index("watch_id")
    await db[ADDRESSES].create_index([("user_id", 1), ("created_at", -1)])


def utcnow() -> str:
    """Timestamps are stored as ISO-8601 strings so they sort lexically."""
    return datetime.now(timezone.utc).isoformat()


def epoch_millis() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def object_id(value: Any) -> Optional[ObjectId]:
    """Parse a document key; returns None for anything that is not a valid ObjectId."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def to_client(doc: Optional[dict[str, Any]], key: str = "id") -> Optional[dict[str, Any]]:
    if not doc:
        return doc
    d = dict(doc)
    if "_id" in d:
        d[key] = str(d.pop("_id"))
    return d


async def create_document(db: AsyncIOMotorDatabase, collection_name: str, data: dict[str, Any], key: str = "id") -> dict[str, Any]:
    now = utcnow()
    data_with_meta = {"created_at": now, **data, "updated_at": now}
    result = await db[collection_name].insert_one(data_with_meta)
    inserted = await db[collection_name].find_one({"_id": result.inserted_id})
    return to_client(inserted, key) or {}


async def get_document(db: AsyncIOMotorDatabase, collection_name: str, doc_id: Any, key: str = "id") -> Optional[dict[str, Any]]:
    oid = object_id(doc_id)
    if oid is None:
        return None
    doc = await db[collection_name].find_one({"_id": oid})
    return to_client(doc, key)


async def get_documents(
    db: AsyncIOMotorDatabase,
    collection_name: str,
    filter_dict: dict[str, Any] | None = None,
    sort: list[tuple[str, int]] | None = None,
    limit: int = 0,
    key: str = "id",
) -> list[dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {}, sort=sort, limit=limit)
    docs = []
    async for d in cursor:
        docs.append(to_client(d, key))
    return docs


async def update_document(db: AsyncIOMotorDatabase, collection_name: str, doc_id: Any, changes: dict[str, Any]) -> bool:
    oid = object_id(doc_id)
    if oid is None:
        return False
    result = await db[collection_name].update_one(
        {"_id": oid}, {"$set": {**changes, "updated_at": utcnow()}}
    )
    return result.matched_count > 0


async def delete_document(db: AsyncIOMotorDatabase, collection_name: str, doc_id: Any) -> bool:
    oid = object_id(doc_id)
    if oid is None:
        return False
    result = await db[collection_name].delete_one({"_id": oid})
    return result.deleted_count > 0
