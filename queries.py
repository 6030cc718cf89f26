"""
Role scoped read projections of orders.

Every query starts from ``actor.order_scope()``, so a client-supplied id never
reaches an order outside the caller's scope.
"""
import logging
from collections import defaultdict
from typing import Iterable, Optional

from actors import Actor
from billing import verify_order_total
from catalog import get_products
from database import object_id
from errors import NotFoundError, ValidationError
from pricing import line_subtotal, order_total
from schemas import OrderStatus

logger = logging.getLogger(__name__)

UNKNOWN_PRODUCT = "Unknown Product"
UNKNOWN_VENDOR = "Unknown vendor"
UNKNOWN_CUSTOMER = "Unknown"


def parse_status_filter(raw: Optional[str]) -> Optional[set]:
    if not raw:
        return None
    statuses = set()
    for part in raw.split(","):
        part = part.strip().upper()
        if not part:
            continue
        try:
            statuses.add(OrderStatus(part))
        except ValueError:
            raise ValidationError(f"Invalid status filter: {part}")
    return statuses or None


def _users_by_id(db, user_ids: Iterable[str]) -> dict:
    oids = [oid for oid in (object_id(uid) for uid in set(user_ids)) if oid is not None]
    if not oids:
        return {}
    return {str(u["_id"]): u for u in db["user"].find({"_id": {"$in": oids}})}


def _vendor_name(user: Optional[dict]) -> str:
    if not user:
        return UNKNOWN_VENDOR
    return user.get("business_name") or user.get("name") or user.get("username") or UNKNOWN_VENDOR


def _items_by_order(db, order_ids) -> dict:
    grouped = defaultdict(list)
    if order_ids:
        for item in db["orderitem"].find({"order_id": {"$in": list(order_ids)}}):
            grouped[item["order_id"]].append(item)
    return grouped


def _iso(value):
    return value.isoformat() if value is not None else None


def _checked_total(order: dict, items) -> float:
    if not verify_order_total(order, items):
        logger.warning(
            "Order %s stored total %s differs from its items (%s)",
            order["_id"], order.get("total_price"), order_total(items),
        )
    return float(order.get("total_price", 0))


class OrderView:
    """Facts about one order that the actors pick their fields from."""

    def __init__(self, order: dict, items, users: dict, products: dict):
        self.order = order
        self.items = items
        self.users = users
        self.products = products

    @property
    def customer(self) -> dict:
        return self.users.get(self.order["customer_id"]) or {}

    @property
    def vendor_name(self) -> str:
        return _vendor_name(self.users.get(self.order["vendor_id"]))

    @property
    def customer_name(self) -> str:
        return self.customer.get("name") or UNKNOWN_CUSTOMER

    @property
    def customer_address(self) -> str:
        return self.customer.get("address") or UNKNOWN_CUSTOMER

    def subtotal_for(self, vendor_id: str) -> float:
        """Sum of the lines belonging to ``vendor_id``.

        Items of a deleted product are attributed to the order's vendor.
        """
        own = [
            it for it in self.items
            if (self.products.get(it["product_id"]) or {}).get("vendor_id", self.order["vendor_id"]) == vendor_id
        ]
        return float(order_total(own))


def list_orders(db, actor: Actor, statuses: Optional[set] = None):
    query = dict(actor.order_scope())
    allowed = set(actor.listed_statuses) if actor.listed_statuses else None
    if statuses and allowed:
        allowed &= statuses
    elif statuses:
        allowed = statuses
    if allowed is not None:
        query["status"] = {"$in": sorted(s.value for s in allowed)}

    orders = list(db["order"].find(query).sort("order_date", -1))
    items = _items_by_order(db, [str(o["_id"]) for o in orders])
    users = _users_by_id(db, [o["customer_id"] for o in orders] + [o["vendor_id"] for o in orders])
    products = get_products(db, [it["product_id"] for order_items in items.values() for it in order_items])

    out = []
    for order in orders:
        order_items = items.get(str(order["_id"]), [])
        summary = {
            "id": str(order["_id"]),
            "status": order["status"],
            "orderDate": _iso(order.get("order_date")),
            "totalPrice": _checked_total(order, order_items),
            "cancelReason": order.get("cancel_reason"),
        }
        summary.update(actor.summary_fields(OrderView(order, order_items, users, products)))
        out.append(summary)
    return out


def get_order_detail(db, actor: Actor, order_id) -> dict:
    oid = object_id(order_id)
    order = db["order"].find_one({"_id": oid, **actor.order_scope()}) if oid else None
    if not order:
        raise NotFoundError("Order", order_id)

    order_key = str(order["_id"])
    items = _items_by_order(db, [order_key])[order_key]
    products = get_products(db, [it["product_id"] for it in items])
    users = _users_by_id(db, [order["customer_id"], order["vendor_id"]])
    view = OrderView(order, items, users, products)
    hub_oid = object_id(order.get("hub_id"))
    hub = db["distributionhub"].find_one({"_id": hub_oid}) if hub_oid else None

    mapped = []
    for it in items:
        product = products.get(it["product_id"])
        if product is None:
            logger.warning("Order %s references deleted product %s", order_key, it["product_id"])
        mapped.append({
            "id": str(it["_id"]),
            "productId": it["product_id"],
            "productName": product.get("name") if product else UNKNOWN_PRODUCT,
            "imageUrl": (product.get("image_url") or "") if product else "",
            "priceAtPurchase": it["price_at_purchase"],
            "quantity": it["quantity"],
            "subtotal": float(line_subtotal(it["price_at_purchase"], it["quantity"])),
        })

    status = OrderStatus(order["status"])
    detail = {
        "id": order_key,
        "status": status.value,
        "orderDate": _iso(order.get("order_date")),
        "totalPrice": _checked_total(order, items),
        "cancelReason": order.get("cancel_reason") if status == OrderStatus.CANCELED else None,
        "vendorName": view.vendor_name,
        "customerName": view.customer_name,
        "customerAddress": view.customer_address,
        "hub": {
            "id": order.get("hub_id"),
            "hubName": hub.get("hub_name") if hub else None,
            "hubLocation": hub.get("hub_location") if hub else None,
        },
        "items": mapped,
        "actions": actor.actions_for(status),
        "statusHistory": [
            {"status": h["status"], "at": _iso(h.get("at"))} for h in order.get("status_history", [])
        ],
    }
    detail.update(actor.detail_fields(view))
    return detail
