"""
Cart store

One ``cartitem`` document per (customer, product), backed by a unique index. Quantities are always >= 1
while a line exists; setting a line to zero deletes it.
"""
import logging
from datetime import datetime, timezone

from pymongo.errors import DuplicateKeyError

from catalog import get_product, get_products
from errors import NotFoundError, ValidationError
from pricing import unit_price

logger = logging.getLogger(__name__)


def _check_quantity(quantity, minimum: int):
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < minimum:
        raise ValidationError(f"Quantity must be an integer >= {minimum}")


def _upsert_line(db, customer_id: str, product_id: str, update: dict):
    key = {"customer_id": customer_id, "product_id": product_id}
    try:
        db["cartitem"].update_one(key, update, upsert=True)
    except DuplicateKeyError:
        # a concurrent upsert inserted the line first, this update now matches it
        logger.info("Cart line %s/%s created concurrently, retrying", customer_id, product_id)
        db["cartitem"].update_one(key, update)


def add_to_cart(db, customer_id: str, product_id: str, quantity: int):
    """Add units of a product, merging with an existing line."""
    _check_quantity(quantity, 1)
    if get_product(db, product_id) is None:
        raise NotFoundError("Product", product_id)

    now = datetime.now(timezone.utc)
    _upsert_line(db, customer_id, product_id, {
        "$inc": {"quantity": quantity},
        "$set": {"updated_at": now},
        "$setOnInsert": {"created_at": now},
    })


def set_quantity(db, customer_id: str, product_id: str, quantity: int):
    _check_quantity(quantity, 0)
    if quantity == 0:
        remove_item(db, customer_id, product_id)
        return
    if get_product(db, product_id) is None:
        raise NotFoundError("Product", product_id)

    now = datetime.now(timezone.utc)
    _upsert_line(db, customer_id, product_id, {
        "$set": {"quantity": quantity, "updated_at": now},
        "$setOnInsert": {"created_at": now},
    })


def remove_item(db, customer_id: str, product_id: str) -> bool:
    """Delete a line. Returns False when there was nothing to delete."""
    result = db["cartitem"].delete_one({"customer_id": customer_id, "product_id": product_id})
    return result.deleted_count > 0


def cart_lines(db, customer_id: str, session=None):
    return list(db["cartitem"].find({"customer_id": customer_id}, session=session))


def product_summary(product: dict) -> dict:
    return {
        "id": str(product["_id"]),
        "name": product.get("name"),
        "price": product.get("price"),
        "salePercentage": product.get("sale_percentage", 0),
        "imageUrl": product.get("image_url"),
        "availableStock": product.get("available_stock", 0),
        "vendorId": product.get("vendor_id"),
    }


def get_cart(db, customer_id: str):
    """Cart lines joined with current product data.

    ``product`` is None when the product was deleted after it was added.
    """
    lines = cart_lines(db, customer_id)
    products = get_products(db, [line["product_id"] for line in lines])

    cart = []
    for line in lines:
        product = products.get(line["product_id"])
        entry = {
            "id": str(line["_id"]),
            "productId": line["product_id"],
            "quantity": line["quantity"],
            "product": None,
            "available": False,
            "unitPrice": None,
            "subtotal": None,
        }
        if product is None:
            logger.warning("Cart of %s references deleted product %s", customer_id, line["product_id"])
        else:
            price = unit_price(product)
            entry.update(
                product=product_summary(product),
                available=product.get("available_stock", 0) >= line["quantity"],
                unitPrice=float(price),
                subtotal=float(price * line["quantity"]),
            )
        cart.append(entry)
    return cart
