"""
MongoDB access

One client per process. Collection names are the lowercase model names from
schemas.py ("product", "cartitem", "order", "orderitem", "distributionhub",
"user").
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from pymongo import ASCENDING, MongoClient

from config import DATABASE_NAME, DATABASE_URL, MONGO_TRANSACTIONS

logger = logging.getLogger(__name__)

client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]
else:
    logger.warning("DATABASE_URL/DATABASE_NAME not set, running without a database")


def get_db():
    """FastAPI dependency returning the configured database."""
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def object_id(value) -> Optional[ObjectId]:
    """Parse a client-supplied id, None when it is not a valid ObjectId."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def create_document(database, collection_name: str, data: dict, session=None) -> str:
    now = datetime.now(timezone.utc)
    doc = dict(data)
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = database[collection_name].insert_one(doc, session=session)
    return str(result.inserted_id)


def with_id(doc: dict) -> dict:
    """Replace Mongo's _id with a string id for JSON responses."""
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


def ensure_indexes(database):
    """Unique indexes backing the one-per-key rules of the collections."""
    database["cartitem"].create_index([("customer_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    database["user"].create_index("username", unique=True)
    database["user"].create_index("email", unique=True)
    database["distributionhub"].create_index("hub_name", unique=True)
    database["orderitem"].create_index("order_id")


def run_in_transaction(database, work):
    """Call ``work(session)`` inside a multi-document transaction, or ``work(None)``.

    Transactions need a replica set, so they are opt-in through
    MONGO_TRANSACTIONS. ``with_transaction`` retries the whole callback on
    TransientTransactionError (a write conflict with a concurrent
    transaction) and aborts on any other exception, which undoes every write
    made with the session. Without a session callers keep their own
    compensation.
    """
    if not MONGO_TRANSACTIONS:
        return work(None)
    with database.client.start_session() as session:
        return session.with_transaction(work)
