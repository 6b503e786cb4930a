"""Tests for cart totals and cart mutations."""

from decimal import Decimal

import pytest
from bson import ObjectId

from cart import add_item, calculate_totals, clear_cart, item_count, remove_item, update_item
from errors import NotFoundError, OutOfStockError, ValidationError
from inventory import set_sizes
from schemas import Cart, CartItem


def line(price, quantity, size=9.0, product_id="p1", color="Default"):
    return CartItem(product_id=product_id, name="Shoe", price=price, size=size, color=color, quantity=quantity)


class TestCalculateTotals:
    def test_free_shipping_at_threshold(self):
        cart = calculate_totals(Cart(items=[line(40, 3)]))
        assert cart.subtotal == 120.0
        assert cart.shipping == 0
        assert cart.tax == 9.6
        assert cart.total == 129.6

    def test_flat_shipping_below_threshold(self):
        cart = calculate_totals(Cart(items=[line(25.5, 2)]))
        assert cart.subtotal == 51.0
        assert cart.shipping == 9.99
        assert cart.tax == 4.08
        assert cart.total == 65.07

    def test_empty_cart_is_all_zero(self):
        cart = calculate_totals(Cart())
        assert (cart.subtotal, cart.shipping, cart.tax, cart.total) == (0, 0, 0, 0)

    def test_subtotal_rounds_half_even(self):
        assert calculate_totals(Cart(items=[line(0.125, 1)])).subtotal == 0.12
        assert calculate_totals(Cart(items=[line(0.375, 1)])).subtotal == 0.38

    @pytest.mark.parametrize(
        "items",
        [
            [line(19.99, 1)],
            [line(33.33, 3), line(0.01, 7, size=10.0)],
            [line(129.99, 1), line(55.0, 2, product_id="p2")],
        ],
    )
    def test_total_is_sum_of_components(self, items):
        cart = calculate_totals(Cart(items=items))
        expected_subtotal = sum(Decimal(str(i.price)) * i.quantity for i in items)
        assert Decimal(str(cart.subtotal)) == expected_subtotal.quantize(Decimal("0.01"))
        assert Decimal(str(cart.total)) == (
            Decimal(str(cart.subtotal)) + Decimal(str(cart.shipping)) + Decimal(str(cart.tax))
        )


class TestAddItem:
    def test_adds_line_with_price_snapshot(self, db, make_product):
        pid = make_product(price=100.0, sale_price=80.0)
        cart = add_item(db, Cart(), pid, 9, "Black", 2)

        assert len(cart.items) == 1
        item = cart.items[0]
        assert item.product_id == pid
        assert item.price == 80.0
        assert item.original_price == 100.0
        assert item.color == "Black"
        assert item.max_stock == 5
        assert item.slug == "runner-one"
        assert cart.subtotal == 160.0

    def test_default_color(self, db, product_id):
        cart = add_item(db, Cart(), product_id, 9)
        assert cart.items[0].color == "Default"
        assert cart.items[0].quantity == 1

    def test_same_line_sums_quantities(self, db, product_id):
        cart = add_item(db, Cart(), product_id, 9, "Black", 1)
        cart = add_item(db, cart, product_id, 9, "Black", 2)
        assert len(cart.items) == 1
        assert cart.items[0].quantity == 3

    def test_other_color_is_separate_line(self, db, product_id):
        cart = add_item(db, Cart(), product_id, 9, "Black", 1)
        cart = add_item(db, cart, product_id, 9, "White", 1)
        assert len(cart.items) == 2

    def test_cumulative_quantity_over_stock_fails(self, db, product_id):
        cart = add_item(db, Cart(), product_id, 9, None, 3)
        assert cart.subtotal == 180.0
        assert cart.total == pytest.approx(180.0 + 0 + 14.4)

        with pytest.raises(OutOfStockError, match="Only 5 items"):
            add_item(db, cart, product_id, 9, None, 3)
        assert cart.items[0].quantity == 3

    def test_more_than_stock_fails_and_leaves_cart_unchanged(self, db, product_id):
        cart = Cart()
        with pytest.raises(OutOfStockError):
            add_item(db, cart, product_id, 10, None, 3)
        assert cart.items == []

    def test_unknown_size_fails(self, db, product_id):
        with pytest.raises(OutOfStockError):
            add_item(db, Cart(), product_id, 12.5, None, 1)

    def test_unknown_product_fails(self, db):
        with pytest.raises(NotFoundError):
            add_item(db, Cart(), str(ObjectId()), 9, None, 1)

    def test_zero_quantity_rejected(self, db, product_id):
        with pytest.raises(ValidationError):
            add_item(db, Cart(), product_id, 9, None, 0)

    def test_later_price_change_does_not_touch_cart(self, db, product_id):
        cart = add_item(db, Cart(), product_id, 9, None, 1)
        db["product"].update_one({"_id": ObjectId(product_id)}, {"$set": {"price": 999.0}})
        cart = add_item(db, cart, product_id, 9, None, 1)
        assert cart.items[0].price == 60.0
        assert cart.subtotal == 120.0


class TestUpdateAndRemove:
    def test_update_sets_exact_quantity(self, db, product_id):
        cart = add_item(db, Cart(), product_id, 9, None, 1)
        cart = update_item(db, cart, product_id, 9, 4)
        assert cart.items[0].quantity == 4
        assert cart.subtotal == 240.0

    def test_update_to_zero_removes(self, db, product_id):
        cart = add_item(db, Cart(), product_id, 9, None, 2)
        cart = update_item(db, cart, product_id, 9, 0)
        assert cart.items == []
        assert cart.total == 0

    def test_update_checks_live_stock_not_snapshot(self, db, product_id):
        cart = add_item(db, Cart(), product_id, 9, None, 1)
        set_sizes(db, product_id, [{"size": 9, "stock": 2}, {"size": 10, "stock": 2}])
        with pytest.raises(OutOfStockError, match="Only 2 items available"):
            update_item(db, cart, product_id, 9, 3)
        assert cart.items[0].quantity == 1

    def test_update_missing_line(self, db, product_id):
        with pytest.raises(NotFoundError):
            update_item(db, Cart(), product_id, 9, 1)

    def test_remove_line(self, db, product_id):
        cart = add_item(db, Cart(), product_id, 9, None, 1)
        cart = add_item(db, cart, product_id, 10, None, 1)
        cart = remove_item(cart, product_id, 9)
        assert [i.size for i in cart.items] == [10.0]
        assert cart.subtotal == 60.0

    def test_remove_missing_line(self):
        with pytest.raises(NotFoundError):
            remove_item(Cart(), str(ObjectId()), 9)

    def test_clear_and_count(self, db, product_id):
        cart = add_item(db, Cart(), product_id, 9, None, 2)
        cart = add_item(db, cart, product_id, 10, None, 1)
        assert item_count(cart) == 3
        cleared = clear_cart()
        assert cleared.items == []
        assert item_count(cleared) == 0
        assert cleared.total == 0


class TestProductIdCase:
    def test_uppercase_id_sums_into_same_line(self, db, product_id):
        cart = add_item(db, Cart(), product_id, 9, "Black", 5)
        with pytest.raises(OutOfStockError):
            add_item(db, cart, product_id.upper(), 9, "Black", 5)
        assert len(cart.items) == 1
        assert item_count(cart) == 5

    def test_update_and_remove_accept_uppercase_id(self, db, product_id):
        cart = add_item(db, Cart(), product_id, 9, None, 1)
        cart = add_item(db, cart, product_id, 10, None, 1)
        cart = update_item(db, cart, product_id.upper(), 9, 3)
        assert cart.items[0].quantity == 3
        cart = remove_item(cart, product_id.upper(), 10)
        assert [i.size for i in cart.items] == [9.0]
