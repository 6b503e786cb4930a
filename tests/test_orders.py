"""Tests for checkout, cancellation and admin status changes."""

from decimal import Decimal

import pytest
from bson import ObjectId

import orders
from cart import add_item
from database import utcnow
from errors import (
    EmptyCartError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from inventory import set_sizes
from orders import cancel_order, next_order_number, place_order, shipping_cost, update_status
from schemas import Cart, CheckoutRequest

USER = "64b000000000000000000001"


def checkout(address, **kwargs):
    return CheckoutRequest(shipping_address=address, payment_method="card", **kwargs)


def product_doc(db, product_id):
    return db["product"].find_one({"_id": ObjectId(product_id)})


def stock_of(db, product_id, size):
    doc = product_doc(db, product_id)
    return next(b["stock"] for b in doc["sizes"] if float(b["size"]) == float(size))


class TestShippingCost:
    def test_tiers(self):
        assert shipping_cost("standard", Decimal("99.99")) == Decimal("9.99")
        assert shipping_cost("standard", Decimal("100")) == Decimal("0")
        assert shipping_cost("express", Decimal("500")) == Decimal("19.99")
        assert shipping_cost("overnight", Decimal("5")) == Decimal("29.99")

    def test_unknown_method(self):
        with pytest.raises(ValidationError):
            shipping_cost("teleport", Decimal("1"))


class TestOrderNumber:
    def test_format_and_sequence(self, db):
        now = utcnow()
        first = next_order_number(db, now)
        second = next_order_number(db, now)
        prefix = f"ORD{now.year}{now.month:02d}"
        assert first == f"{prefix}000001"
        assert second == f"{prefix}000002"


class TestPlaceOrder:
    def test_places_confirmed_order_and_decrements_stock(self, db, product_id, address):
        cart = add_item(db, Cart(), product_id, 9, "Black", 2)
        result = place_order(db, USER, cart, checkout(address))

        assert result["order_number"].startswith("ORD")
        assert result["order_number"].endswith("000001")
        assert stock_of(db, product_id, 9) == 3
        assert product_doc(db, product_id)["sold_count"] == 2

        order = db["order"].find_one({"_id": ObjectId(result["order_id"])})
        assert order["status"] == "confirmed"
        assert order["user_id"] == USER
        assert order["payment"] == {"method": "card", "status": "pending", "transaction_id": None}
        assert order["billing_address"] == order["shipping_address"]
        assert len(order["status_history"]) == 1
        assert order["status_history"][0]["note"] == "Order placed successfully"
        assert order["items"][0]["name"] == "Runner One"
        assert order["items"][0]["color"] == "Black"
        assert order["items"][0]["quantity"] == 2

    def test_subtotal_120_standard_shipping(self, db, make_product, address):
        pid = make_product(name="Court Classic", price=40.0)
        cart = add_item(db, Cart(), pid, 9, None, 3)
        result = place_order(db, USER, cart, checkout(address, shipping_method="standard"))

        order = db["order"].find_one({"_id": ObjectId(result["order_id"])})
        assert order["subtotal"] == 120.0
        assert order["shipping"] == {"method": "standard", "cost": 0.0}
        assert order["tax"] == 9.6
        assert order["total"] == 129.6

    def test_express_shipping_charged_above_threshold(self, db, make_product, address):
        pid = make_product(name="Court Classic", price=40.0)
        cart = add_item(db, Cart(), pid, 9, None, 3)
        result = place_order(db, USER, cart, checkout(address, shipping_method="express"))
        order = db["order"].find_one({"_id": ObjectId(result["order_id"])})
        assert order["shipping"]["cost"] == 19.99
        assert order["total"] == pytest.approx(149.59)

    def test_empty_cart_creates_nothing(self, db, address):
        with pytest.raises(EmptyCartError):
            place_order(db, USER, Cart(), checkout(address))
        assert db["order"].count_documents({}) == 0

    def test_requires_user(self, db, product_id, address):
        cart = add_item(db, Cart(), product_id, 9, None, 1)
        with pytest.raises(UnauthorizedError):
            place_order(db, None, cart, checkout(address))

    def test_incomplete_address(self, db, product_id, address):
        cart = add_item(db, Cart(), product_id, 9, None, 1)
        address.street = ""
        with pytest.raises(ValidationError, match="street"):
            place_order(db, USER, cart, checkout(address))
        assert stock_of(db, product_id, 9) == 5

    def test_stock_gone_since_add(self, db, product_id, address):
        cart = add_item(db, Cart(), product_id, 9, None, 3)
        set_sizes(db, product_id, [{"size": 9, "stock": 2}, {"size": 10, "stock": 2}])
        with pytest.raises(InsufficientStockError, match="Runner One in size 9"):
            place_order(db, USER, cart, checkout(address))
        assert stock_of(db, product_id, 9) == 2
        assert db["order"].count_documents({}) == 0

    def test_product_deleted_since_add(self, db, product_id, address):
        cart = add_item(db, Cart(), product_id, 9, None, 1)
        db["product"].delete_one({"_id": ObjectId(product_id)})
        with pytest.raises(NotFoundError):
            place_order(db, USER, cart, checkout(address))

    def test_colours_of_one_size_share_a_bucket(self, db, product_id, address):
        cart = add_item(db, Cart(), product_id, 9, "Black", 3)
        cart = add_item(db, cart, product_id, 9, "White", 2)
        set_sizes(db, product_id, [{"size": 9, "stock": 4}])
        with pytest.raises(InsufficientStockError):
            place_order(db, USER, cart, checkout(address))
        assert stock_of(db, product_id, 9) == 4

    def test_mid_loop_failure_rolls_back_earlier_lines(self, db, make_product, address, monkeypatch):
        first = make_product(name="First Shoe")
        second = make_product(name="Second Shoe")
        cart = add_item(db, Cart(), first, 9, None, 2)
        cart = add_item(db, cart, second, 9, None, 1)

        real_decrement = orders.decrement_stock

        def racing_decrement(db_, pid, size, quantity, name=None, mode=None):
            if pid == second:
                raise InsufficientStockError(name, size)
            return real_decrement(db_, pid, size, quantity, name=name, mode=mode)

        monkeypatch.setattr(orders, "decrement_stock", racing_decrement)
        with pytest.raises(InsufficientStockError, match="Second Shoe"):
            place_order(db, USER, cart, checkout(address))

        assert stock_of(db, first, 9) == 5
        assert product_doc(db, first)["sold_count"] == 0
        assert product_doc(db, first)["total_stock"] == 7
        assert db["order"].count_documents({}) == 0

    def test_insert_failure_rolls_back(self, db, product_id, address, monkeypatch):
        cart = add_item(db, Cart(), product_id, 9, None, 2)

        def broken_insert(*args, **kwargs):
            raise RuntimeError("write failed")

        monkeypatch.setattr(orders, "create_document", broken_insert)
        with pytest.raises(RuntimeError):
            place_order(db, USER, cart, checkout(address))
        assert stock_of(db, product_id, 9) == 5

    def test_read_modify_write_mode(self, db, product_id, address):
        cart = add_item(db, Cart(), product_id, 10, None, 2)
        place_order(db, USER, cart, checkout(address), mode="read_modify_write")
        assert stock_of(db, product_id, 10) == 0
        assert product_doc(db, product_id)["total_stock"] == 5

    def test_items_are_snapshots(self, db, product_id, address):
        cart = add_item(db, Cart(), product_id, 9, None, 1)
        result = place_order(db, USER, cart, checkout(address))
        db["product"].update_one({"_id": ObjectId(product_id)}, {"$set": {"name": "Renamed", "price": 1.0}})
        order = db["order"].find_one({"_id": ObjectId(result["order_id"])})
        assert order["items"][0]["name"] == "Runner One"
        assert order["items"][0]["price"] == 60.0

    def test_sequential_order_numbers(self, db, product_id, address):
        a = place_order(db, USER, add_item(db, Cart(), product_id, 9, None, 1), checkout(address))
        b = place_order(db, USER, add_item(db, Cart(), product_id, 9, None, 1), checkout(address))
        assert int(b["order_number"][-6:]) == int(a["order_number"][-6:]) + 1


@pytest.fixture
def placed(db, product_id, address):
    cart = add_item(db, Cart(), product_id, 9, None, 3)
    return place_order(db, USER, cart, checkout(address))["order_id"]


class TestCancelOrder:
    def test_cancel_confirmed_restores_stock(self, db, product_id, placed):
        assert stock_of(db, product_id, 9) == 2
        order = cancel_order(db, placed, USER)

        assert order["status"] == "cancelled"
        assert order["status_history"][-1]["status"] == "cancelled"
        assert order["status_history"][-1]["note"] == "Cancelled by customer"
        assert stock_of(db, product_id, 9) == 5
        assert product_doc(db, product_id)["sold_count"] == 0

    def test_cancel_shipped_fails_and_changes_nothing(self, db, product_id, placed):
        update_status(db, placed, "shipped")
        with pytest.raises(InvalidTransitionError, match="cannot be cancelled"):
            cancel_order(db, placed, USER)
        assert db["order"].find_one({"_id": ObjectId(placed)})["status"] == "shipped"
        assert stock_of(db, product_id, 9) == 2

    def test_cancel_twice_restores_once(self, db, product_id, placed):
        cancel_order(db, placed, USER)
        with pytest.raises(InvalidTransitionError):
            cancel_order(db, placed, USER)
        assert stock_of(db, product_id, 9) == 5

    def test_other_users_order_not_found(self, db, placed):
        with pytest.raises(NotFoundError):
            cancel_order(db, placed, "64b000000000000000000002")

    def test_deleted_size_is_recreated(self, db, product_id, placed):
        set_sizes(db, product_id, [{"size": 10, "stock": 2}])
        cancel_order(db, placed, USER)
        assert stock_of(db, product_id, 9) == 3
        assert product_doc(db, product_id)["total_stock"] == 5


class TestUpdateStatus:
    def test_any_status_may_follow_any_other(self, db, placed):
        update_status(db, placed, "delivered")
        order = update_status(db, placed, "pending", note="Reopened")
        assert order["status"] == "pending"
        assert [h["status"] for h in order["status_history"]] == ["confirmed", "delivered", "pending"]
        assert order["status_history"][-1]["note"] == "Reopened"

    def test_default_note_and_tracking(self, db, placed):
        order = update_status(db, placed, "shipped", tracking_number="1Z999")
        assert order["tracking_number"] == "1Z999"
        assert order["status_history"][-1]["note"] == "Status updated to shipped"

    def test_unknown_status_rejected(self, db, placed):
        with pytest.raises(ValidationError):
            update_status(db, placed, "lost")

    def test_unknown_order(self, db):
        with pytest.raises(NotFoundError):
            update_status(db, str(ObjectId()), "shipped")

    def test_admin_cancel_does_not_restore_stock(self, db, product_id, placed):
        update_status(db, placed, "cancelled")
        assert stock_of(db, product_id, 9) == 2
