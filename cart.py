"""Session cart operations.

Every function takes the ``Cart`` explicitly and returns the updated cart;
nothing here touches the session. A failing call leaves the cart it was given
unchanged. Totals are recomputed after every successful mutation.
"""
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Optional

from config import TAX_RATE, FREE_SHIPPING_THRESHOLD, STANDARD_SHIPPING
from database import to_object_id
from errors import NotFoundError, OutOfStockError, ValidationError
from inventory import available, find_bucket, get_product
from schemas import Cart, CartItem, Product


CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Quantize to cents, round-half-even."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_EVEN)


def compute_subtotal(items) -> Decimal:
    return to_money(sum((Decimal(str(i.price)) * i.quantity for i in items), Decimal("0")))


def compute_tax(subtotal: Decimal) -> Decimal:
    return to_money(subtotal * Decimal(TAX_RATE))


def calculate_totals(cart: Cart) -> Cart:
    subtotal = compute_subtotal(cart.items)
    # An empty cart owes nothing, shipping included.
    if not cart.items or subtotal >= Decimal(FREE_SHIPPING_THRESHOLD):
        shipping = Decimal("0")
    else:
        shipping = to_money(STANDARD_SHIPPING)
    tax = compute_tax(subtotal)
    total = subtotal + shipping + tax
    cart.subtotal = float(subtotal)
    cart.shipping = float(shipping)
    cart.tax = float(tax)
    cart.total = float(total)
    return cart


def _find_line(cart: Cart, product_id: str, size: float, color: Optional[str] = None) -> int:
    # Lines hold the lowercase hex form of the id.
    product_id = str(to_object_id(product_id))
    for i, item in enumerate(cart.items):
        if item.product_id != product_id or float(item.size) != float(size):
            continue
        if color is not None and item.color != color:
            continue
        return i
    return -1


def add_item(db, cart: Cart, product_id: str, size: float, color: Optional[str] = None, quantity: int = 1) -> Cart:
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    doc = get_product(db, product_id)
    bucket = find_bucket(doc, size)
    if bucket is None or int(bucket.get("stock", 0)) < quantity:
        raise OutOfStockError()
    stock = int(bucket["stock"])
    color = color or "Default"

    updated = cart.model_copy(deep=True)
    idx = _find_line(updated, product_id, size, color)
    if idx > -1:
        new_qty = updated.items[idx].quantity + quantity
        if new_qty > stock:
            raise OutOfStockError(stock)
        updated.items[idx].quantity = new_qty
    else:
        product = Product.model_validate(doc)
        updated.items.append(
            CartItem(
                product_id=str(doc["_id"]),
                name=product.name,
                brand=product.brand,
                price=product.effective_price,
                original_price=product.price,
                size=float(size),
                color=color,
                quantity=quantity,
                image=product.primary_image,
                slug=product.slug,
                max_stock=stock,
            )
        )
    return calculate_totals(updated)


def update_item(db, cart: Cart, product_id: str, size: float, quantity: int) -> Cart:
    """Set a line's quantity; zero or less removes the line."""
    idx = _find_line(cart, product_id, size)
    if idx == -1:
        raise NotFoundError("Item in cart")
    updated = cart.model_copy(deep=True)
    if quantity <= 0:
        updated.items.pop(idx)
        return calculate_totals(updated)

    stock = available(get_product(db, product_id), size)
    if quantity > stock:
        raise OutOfStockError(message=f"Only {stock} items available")
    updated.items[idx].quantity = quantity
    return calculate_totals(updated)


def remove_item(cart: Cart, product_id: str, size: float) -> Cart:
    idx = _find_line(cart, product_id, size)
    if idx == -1:
        raise NotFoundError("Item in cart")
    updated = cart.model_copy(deep=True)
    updated.items.pop(idx)
    return calculate_totals(updated)


def clear_cart() -> Cart:
    return calculate_totals(Cart())


def item_count(cart: Cart) -> int:
    return sum(item.quantity for item in cart.items)
