"""Tests for vendor product edits racing checkout stock decrements."""

import pytest

import catalog
from conftest import stock_of
from errors import ConflictError, NotFoundError, ValidationError


@pytest.fixture
def vid(vendor):
    return str(vendor["_id"])


@pytest.fixture
def sale_after_read(db, monkeypatch):
    """Sell one unit right after the edit has read the product, once."""

    def _install(product_id):
        real = catalog.get_vendor_product
        sold = []

        def read_then_sell(*args, **kwargs):
            product = real(*args, **kwargs)
            if not sold:
                sold.append(catalog.decrement_stock(db, product_id, 1))
            return product

        monkeypatch.setattr(catalog, "get_vendor_product", read_then_sell)

    return _install


class TestUpdateProduct:
    def test_edit_keeps_concurrent_sale(self, db, vid, vendor, make_product, sale_after_read):
        pid = make_product(vendor, 10.0, 5)
        sale_after_read(pid)

        updated = catalog.update_product(db, vid, pid, {"description": "new text"})

        assert updated["description"] == "new text"
        assert stock_of(db, pid) == 4

    def test_stock_edit_based_on_stale_stock_conflicts(self, db, vid, vendor, make_product, sale_after_read):
        pid = make_product(vendor, 10.0, 5)
        sale_after_read(pid)

        with pytest.raises(ConflictError):
            catalog.update_product(db, vid, pid, {"available_stock": 20})

        assert stock_of(db, pid) == 4

    def test_stock_edit(self, db, vid, vendor, make_product):
        pid = make_product(vendor, 10.0, 5)
        updated = catalog.update_product(db, vid, pid, {"available_stock": 20, "price": 12.5})
        assert updated["available_stock"] == 20
        assert updated["price"] == 12.5

    def test_merged_product_is_validated(self, db, vid, vendor, make_product):
        pid = make_product(vendor, 10.0, 5)
        with pytest.raises(ValidationError):
            catalog.update_product(db, vid, pid, {"sale_percentage": 150})
        assert catalog.get_product(db, pid)["sale_percentage"] == 0

    def test_other_vendors_product(self, db, other_vendor, vendor, make_product):
        pid = make_product(vendor, 10.0, 5)
        with pytest.raises(NotFoundError):
            catalog.update_product(db, str(other_vendor["_id"]), pid, {"price": 1.0})
