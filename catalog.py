"""
Product catalog

Read side used by the cart and checkout, the conditional stock updates that
keep concurrent checkouts from overselling, and the vendor's own product CRUD.
"""
import logging
import math
import re
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError as PydanticValidationError
from pymongo import ReturnDocument

from database import create_document, object_id, with_id
from errors import ConflictError, NotFoundError, ValidationError
from schemas import OrderStatus, Product

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "price", "available_stock", "sale_percentage", "image_url", "description", "category")


def get_product(db, product_id, session=None) -> Optional[dict]:
    oid = object_id(product_id)
    if oid is None:
        return None
    return db["product"].find_one({"_id": oid}, session=session)


def get_products(db, product_ids) -> dict:
    """Map of product id string -> product document for the ids that still exist."""
    oids = [oid for oid in (object_id(pid) for pid in set(product_ids)) if oid is not None]
    if not oids:
        return {}
    return {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": oids}})}


def decrement_stock(db, product_id, quantity: int, session=None) -> Optional[dict]:
    """Take ``quantity`` units if and only if that many are available.

    Returns the product as it was before the decrement, or None when the
    product is gone or has too little stock.
    """
    oid = object_id(product_id)
    if oid is None:
        return None
    return db["product"].find_one_and_update(
        {"_id": oid, "available_stock": {"$gte": quantity}},
        {"$inc": {"available_stock": -quantity}},
        return_document=ReturnDocument.BEFORE,
        session=session,
    )


def restock(db, product_id, quantity: int, session=None):
    oid = object_id(product_id)
    if oid is None:
        return
    result = db["product"].update_one({"_id": oid}, {"$inc": {"available_stock": quantity}}, session=session)
    if result.matched_count == 0:
        logger.warning("Restock skipped, product %s no longer exists", product_id)


def list_products(
    db,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    category: Optional[str] = None,
    keyword: Optional[str] = None,
    vendor_id: Optional[str] = None,
    page: int = 1,
    page_size: int = 12,
    price_order: Optional[str] = None,
) -> dict:
    if page < 1 or page_size < 1:
        raise ValidationError("page and pageSize must be positive")

    query = {}
    if min_price is not None or max_price is not None:
        query["price"] = {}
        if min_price is not None:
            query["price"]["$gte"] = min_price
        if max_price is not None:
            query["price"]["$lte"] = max_price
    if category:
        query["category"] = category
    if keyword:
        query["name"] = {"$regex": re.escape(keyword), "$options": "i"}
    if vendor_id:
        query["vendor_id"] = vendor_id

    cursor = db["product"].find(query)
    if price_order in ("asc", "desc"):
        cursor = cursor.sort("price", 1 if price_order == "asc" else -1)
    items = list(cursor.skip((page - 1) * page_size).limit(page_size))
    total = db["product"].count_documents(query)

    return {
        "products": [with_id(p) for p in items],
        "totalProducts": total,
        "pageIndex": page,
        "pageSize": page_size,
        "totalPages": max(1, math.ceil(total / page_size)),
    }


# -----------------------------
# Vendor product management
# -----------------------------

def list_vendor_products(db, vendor_id: str):
    return [with_id(p) for p in db["product"].find({"vendor_id": vendor_id})]


def get_vendor_product(db, vendor_id: str, product_id) -> dict:
    oid = object_id(product_id)
    product = db["product"].find_one({"_id": oid, "vendor_id": vendor_id}) if oid else None
    if not product:
        raise NotFoundError("Product", product_id)
    return product


def _validated(vendor_id: str, data: dict) -> dict:
    try:
        return Product(vendor_id=vendor_id, **data).model_dump()
    except PydanticValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        raise ValidationError(f"Invalid product fields: {fields}")


def create_product(db, vendor_id: str, data: dict) -> dict:
    doc = _validated(vendor_id, data)
    product_id = create_document(db, "product", doc)
    logger.info("Vendor %s added product %s", vendor_id, product_id)
    return {"id": product_id, **doc}


def update_product(db, vendor_id: str, product_id, changes: dict) -> dict:
    """Apply a partial edit.

    The merged product is validated as a whole, but only the edited fields are
    written, so concurrent stock decrements are never overwritten. A stock edit
    only applies while the stock is still the value the vendor's edit was based
    on, otherwise it is a conflict.
    """
    changes = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS}
    current = get_vendor_product(db, vendor_id, product_id)
    merged = {k: current.get(k) for k in EDITABLE_FIELDS if k in current}
    merged.update(changes)
    # full re-validation so a partial edit cannot break an invariant
    validated = _validated(vendor_id, merged)

    query = {"_id": current["_id"], "vendor_id": vendor_id}
    if "available_stock" in changes:
        query["available_stock"] = current.get("available_stock", 0)
    update = {k: validated[k] for k in changes}
    update["updated_at"] = datetime.now(timezone.utc)
    updated = db["product"].find_one_and_update(query, {"$set": update}, return_document=ReturnDocument.AFTER)
    if not updated:
        get_vendor_product(db, vendor_id, product_id)
        logger.warning("Stock edit of product %s lost a race with a checkout", product_id)
        raise ConflictError("Stock changed while editing, reload the product and retry")
    return with_id(updated)


def delete_product(db, vendor_id: str, product_id):
    product = get_vendor_product(db, vendor_id, product_id)
    db["product"].delete_one({"_id": product["_id"]})
    logger.info("Vendor %s deleted product %s", vendor_id, product_id)


def product_sales_count(db, vendor_id: str, product_id) -> int:
    """Units of a vendor's product sold over orders that were not canceled."""
    product = get_vendor_product(db, vendor_id, product_id)
    order_ids = [
        str(o["_id"])
        for o in db["order"].find(
            {"vendor_id": vendor_id, "status": {"$ne": OrderStatus.CANCELED.value}},
            {"_id": 1},
        )
    ]
    if not order_ids:
        return 0
    items = db["orderitem"].find({"order_id": {"$in": order_ids}, "product_id": str(product["_id"])})
    return sum(int(it.get("quantity", 0)) for it in items)
