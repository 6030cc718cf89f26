"""Tests for the role scoped order projections."""

from types import SimpleNamespace

import pytest
from bson import ObjectId

import billing
import cart
from actors import CustomerActor, ShipperActor, VendorActor, actor_for_user
from conftest import CollectionProxy, DatabaseProxy
from errors import NotFoundError, ValidationError
from order_status import change_status
from queries import get_order_detail, list_orders, parse_status_filter


@pytest.fixture
def two_vendor_checkout(db, customer, vendor, other_vendor, make_product, picker, hub):
    cid = str(customer["_id"])
    a = make_product(vendor, 10.0, 5, name="Desk lamp deluxe")
    b = make_product(other_vendor, 4.5, 5, name="Paperback novel")
    cart.add_to_cart(db, cid, a, 2)
    cart.add_to_cart(db, cid, b, 2)
    summaries = billing.create_order(db, cid, hub_picker=picker)
    return {s["vendorId"]: s["orderId"] for s in summaries}


class TestCustomerView:
    def test_lists_own_orders_with_vendor_name(self, db, customer, vendor, other_vendor, two_vendor_checkout):
        rows = list_orders(db, actor_for_user(customer))
        names = sorted(r["vendorName"] for r in rows)
        assert names == ["Book Nook", "Gadget House"]
        totals = {r["vendorName"]: r["totalPrice"] for r in rows}
        assert totals == {"Gadget House": 20.0, "Book Nook": 9.0}

    def test_other_customer_sees_nothing(self, db, other_customer, two_vendor_checkout):
        assert list_orders(db, actor_for_user(other_customer)) == []

    def test_detail(self, db, customer, vendor, two_vendor_checkout):
        order_id = two_vendor_checkout[str(vendor["_id"])]
        detail = get_order_detail(db, actor_for_user(customer), order_id)

        assert detail["status"] == "PENDING"
        assert detail["customerAddress"] == "12 Hang Bai, Hanoi"
        assert detail["vendorName"] == "Gadget House"
        assert detail["actions"] == ["cancel"]
        assert detail["cancelReason"] is None
        (item,) = detail["items"]
        assert item["productName"] == "Desk lamp deluxe"
        assert item["subtotal"] == 20.0
        assert detail["hub"]["hubName"] == "Hanoi"

    def test_detail_of_foreign_order_is_not_found(self, db, other_customer, vendor, two_vendor_checkout):
        order_id = two_vendor_checkout[str(vendor["_id"])]
        with pytest.raises(NotFoundError):
            get_order_detail(db, actor_for_user(other_customer), order_id)

    def test_cancel_reason_shown(self, db, customer, vendor, two_vendor_checkout):
        order_id = two_vendor_checkout[str(vendor["_id"])]
        change_status(db, actor_for_user(customer), order_id, "CANCELED", "too slow")
        detail = get_order_detail(db, actor_for_user(customer), order_id)
        assert detail["cancelReason"] == "Customer Canceled: too slow"
        assert detail["actions"] == []

    def test_deleted_product_renders_placeholder(self, db, customer, vendor, two_vendor_checkout):
        order_id = two_vendor_checkout[str(vendor["_id"])]
        db["product"].delete_many({"vendor_id": str(vendor["_id"])})

        detail = get_order_detail(db, actor_for_user(customer), order_id)
        (item,) = detail["items"]
        assert item["productName"] == "Unknown Product"
        assert item["priceAtPurchase"] == 10.0
        assert detail["totalPrice"] == 20.0


class TestVendorView:
    def test_only_own_orders_with_subtotal(self, db, vendor, two_vendor_checkout):
        rows = list_orders(db, actor_for_user(vendor))
        assert [r["id"] for r in rows] == [two_vendor_checkout[str(vendor["_id"])]]
        assert rows[0]["vendorSubtotal"] == 20.0
        assert rows[0]["customerName"] == "Alice Nguyen"

    def test_detail_actions_only_while_pending(self, db, vendor, two_vendor_checkout):
        actor = actor_for_user(vendor)
        order_id = two_vendor_checkout[str(vendor["_id"])]
        assert get_order_detail(db, actor, order_id)["actions"] == ["accept", "reject"]

        change_status(db, actor, order_id, "ACTIVE")
        assert get_order_detail(db, actor, order_id)["actions"] == []

    def test_history_filter(self, db, vendor, two_vendor_checkout):
        actor = actor_for_user(vendor)
        order_id = two_vendor_checkout[str(vendor["_id"])]
        change_status(db, actor, order_id, "CANCELED", "no stock left")

        assert list_orders(db, actor, parse_status_filter("PENDING")) == []
        history = list_orders(db, actor, parse_status_filter("delivered,canceled"))
        assert [r["id"] for r in history] == [order_id]


class TestShipperView:
    def test_only_active_orders_of_own_hub(self, db, vendor, shipper, far_shipper, two_vendor_checkout):
        order_id = two_vendor_checkout[str(vendor["_id"])]
        assert list_orders(db, actor_for_user(shipper)) == []

        change_status(db, actor_for_user(vendor), order_id, "ACTIVE")

        rows = list_orders(db, actor_for_user(shipper))
        assert [r["id"] for r in rows] == [order_id]
        assert rows[0]["customerAddress"] == "12 Hang Bai, Hanoi"
        assert list_orders(db, actor_for_user(far_shipper)) == []

    def test_detail_actions(self, db, vendor, shipper, two_vendor_checkout):
        order_id = two_vendor_checkout[str(vendor["_id"])]
        change_status(db, actor_for_user(vendor), order_id, "ACTIVE")
        detail = get_order_detail(db, actor_for_user(shipper), order_id)
        assert detail["actions"] == ["deliver", "cancel"]

    def test_status_filter_cannot_widen_scope(self, db, vendor, shipper, two_vendor_checkout):
        assert list_orders(db, actor_for_user(shipper), parse_status_filter("PENDING")) == []


class TestRoleFields:
    view = SimpleNamespace(
        vendor_name="Gadget House",
        customer_name="Alice Nguyen",
        customer_address="12 Hang Bai, Hanoi",
        subtotal_for=lambda vendor_id: 12.5 if vendor_id == "v1" else 0.0,
    )

    def test_summary_fields_per_actor(self):
        assert CustomerActor("c1").summary_fields(self.view) == {"vendorName": "Gadget House"}
        assert VendorActor("v1").summary_fields(self.view) == {
            "customerName": "Alice Nguyen",
            "vendorSubtotal": 12.5,
        }
        assert ShipperActor("s1", "h1").summary_fields(self.view) == {
            "customerName": "Alice Nguyen",
            "customerAddress": "12 Hang Bai, Hanoi",
        }

    def test_only_vendors_get_extra_detail_fields(self):
        assert CustomerActor("c1").detail_fields(self.view) == {}
        assert ShipperActor("s1", "h1").detail_fields(self.view) == {}
        assert VendorActor("v1").detail_fields(self.view) == {"vendorSubtotal": 12.5}


def test_vendor_list_reads_products_once(db, customer, vendor, make_product, picker, hub):
    cid = str(customer["_id"])
    pid = make_product(vendor, 10.0, 5)
    for _ in range(3):
        cart.add_to_cart(db, cid, pid, 1)
        billing.create_order(db, cid, hub_picker=picker)

    products = db["product"]
    reads = []

    def counting_find(*args, **kwargs):
        reads.append(args)
        return products.find(*args, **kwargs)

    counting_db = DatabaseProxy(db, product=CollectionProxy(products, find=counting_find))
    rows = list_orders(counting_db, actor_for_user(vendor))

    assert [r["vendorSubtotal"] for r in rows] == [10.0, 10.0, 10.0]
    assert len(reads) == 1


class TestStatusFilter:
    def test_empty(self):
        assert parse_status_filter(None) is None
        assert parse_status_filter("") is None

    def test_invalid(self):
        with pytest.raises(ValidationError):
            parse_status_filter("PENDING,LOST")


def test_total_mismatch_is_reported(db, customer, vendor, two_vendor_checkout, caplog):
    order_id = two_vendor_checkout[str(vendor["_id"])]
    db["order"].update_one({"_id": ObjectId(order_id)}, {"$set": {"total_price": 99.0}})

    with caplog.at_level("WARNING", logger="queries"):
        detail = get_order_detail(db, actor_for_user(customer), order_id)

    assert detail["totalPrice"] == 99.0
    assert "differs from its items" in caplog.text
