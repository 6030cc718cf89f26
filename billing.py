"""
Order billing engine

Turns a customer's cart into one PENDING order per vendor. Stock is reserved
at this point (and only here) with conditional decrements. A checkout either
persists every order, item, stock decrement and cart deletion, or none of
them. Without a transaction each write is recorded and undone if a later step
fails. With MONGO_TRANSACTIONS on, the checkout runs in one transaction that
is retried on write conflicts and discarded on abort.
"""
import logging
from collections import OrderedDict
from datetime import datetime, timezone

from cart import cart_lines
from catalog import decrement_stock, get_products, restock
from database import object_id, run_in_transaction
from errors import EmptyCartError, InsufficientStockError, InternalError
from hubs import HubPicker, default_picker
from pricing import order_total, unit_price
from schemas import Order, OrderItem, OrderStatus, StatusChange

logger = logging.getLogger(__name__)


def split_by_vendor(lines, products):
    """Group cart lines by the vendor of their product, keeping cart order."""
    partitions = OrderedDict()
    for line in lines:
        vendor_id = products[line["product_id"]]["vendor_id"]
        partitions.setdefault(vendor_id, []).append(line)
    return partitions


def bill_items(lines, snapshots):
    """Order item documents (without order_id) priced from product snapshots."""
    return [
        {
            "product_id": line["product_id"],
            "quantity": line["quantity"],
            "price_at_purchase": float(unit_price(snapshots[line["product_id"]])),
        }
        for line in lines
    ]


def check_stock(lines, products):
    """Fail fast on lines the current stock cannot cover.

    This is advisory only; the conditional decrement is what prevents overselling.
    """
    for line in lines:
        product = products.get(line["product_id"])
        if product is None:
            raise InsufficientStockError(line["product_id"], line["quantity"], 0)
        available = int(product.get("available_stock", 0))
        if line["quantity"] > available:
            raise InsufficientStockError(
                line["product_id"], line["quantity"], available, product_name=product.get("name")
            )


class Checkout:
    """The writes of one checkout, with what is needed to undo them."""

    def __init__(self, db, customer_id: str, session=None):
        self.db = db
        self.customer_id = customer_id
        self.session = session
        self.reserved = []
        self.order_ids = []

    def reserve(self, lines, products) -> dict:
        snapshots = {}
        for line in lines:
            product_id, quantity = line["product_id"], line["quantity"]
            before = decrement_stock(self.db, product_id, quantity, session=self.session)
            if before is None:
                current = products.get(product_id) or {}
                fresh = self.db["product"].find_one({"_id": object_id(product_id)}, session=self.session)
                available = int(fresh.get("available_stock", 0)) if fresh else 0
                raise InsufficientStockError(product_id, quantity, available, product_name=current.get("name"))
            self.reserved.append((product_id, quantity))
            snapshots[product_id] = before
        return snapshots

    def place(self, vendor_id: str, hub_id: str, lines, snapshots, now) -> dict:
        for line in lines:
            if snapshots[line["product_id"]].get("vendor_id") != vendor_id:
                raise InternalError("Order items must belong to a single vendor")

        items = bill_items(lines, snapshots)
        total = order_total(items)
        order = Order(
            customer_id=self.customer_id,
            vendor_id=vendor_id,
            hub_id=hub_id,
            order_date=now,
            status=OrderStatus.PENDING,
            total_price=float(total),
            status_history=[
                StatusChange(status=OrderStatus.PENDING, at=now, actor=f"CUSTOMER:{self.customer_id}")
            ],
        )
        order_doc = {**order.model_dump(), "created_at": now, "updated_at": now}
        result = self.db["order"].insert_one(order_doc, session=self.session)
        order_id = str(result.inserted_id)
        self.order_ids.append(order_id)

        item_docs = [OrderItem(order_id=order_id, **item).model_dump() for item in items]
        self.db["orderitem"].insert_many(item_docs, session=self.session)

        return {
            "orderId": order_id,
            "vendorId": vendor_id,
            "hub": hub_id,
            "status": OrderStatus.PENDING.value,
            "totalPrice": float(total),
            "itemCount": len(items),
        }

    def rollback(self):
        if self.session is not None:
            # the transaction abort discards these writes; the session is unusable now
            logger.info("Checkout of %s aborted inside its transaction", self.customer_id)
            self.order_ids = []
            self.reserved = []
            return
        if self.order_ids:
            self.db["orderitem"].delete_many({"order_id": {"$in": self.order_ids}}, session=self.session)
            self.db["order"].delete_many(
                {"_id": {"$in": [object_id(oid) for oid in self.order_ids]}}, session=self.session
            )
        for product_id, quantity in reversed(self.reserved):
            restock(self.db, product_id, quantity, session=self.session)
        logger.warning(
            "Rolled back checkout of %s: %d orders removed, %d reservations released",
            self.customer_id, len(self.order_ids), len(self.reserved),
        )
        self.order_ids = []
        self.reserved = []


def create_order(db, customer_id: str, hub_picker: HubPicker = None):
    """Check out the customer's cart. Returns one summary per created order."""
    hub_picker = hub_picker or default_picker()

    def checkout_cart(session):
        lines = cart_lines(db, customer_id, session=session)
        if not lines:
            raise EmptyCartError(customer_id)

        products = get_products(db, [line["product_id"] for line in lines])
        try:
            check_stock(lines, products)
        except InsufficientStockError as exc:
            logger.warning("Checkout of %s rejected: %s", customer_id, exc)
            raise

        partitions = split_by_vendor(lines, products)
        hubs = {vendor_id: hub_picker.pick(db, vendor_id, session=session) for vendor_id in partitions}

        checkout = Checkout(db, customer_id, session=session)
        now = datetime.now(timezone.utc)
        try:
            snapshots = checkout.reserve(lines, products)
            summaries = [
                checkout.place(vendor_id, hubs[vendor_id], vendor_lines, snapshots, now)
                for vendor_id, vendor_lines in partitions.items()
            ]
            db["cartitem"].delete_many({"_id": {"$in": [line["_id"] for line in lines]}}, session=session)
        except Exception:
            checkout.rollback()
            raise
        return summaries

    summaries = run_in_transaction(db, checkout_cart)
    logger.info("Customer %s checked out %d order(s)", customer_id, len(summaries))
    return summaries


def verify_order_total(order: dict, items) -> bool:
    """True when the stored total equals the sum of the item subtotals."""
    return float(order_total(items)) == float(order.get("total_price", 0))
