"""Checkout and order lifecycle.

Checkout is all-or-nothing. Every cart line is validated against live stock
before any bucket is touched. Decrements already applied are restored if a
later line or the order insert fails.
"""
import logging
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from pymongo import DESCENDING, ReturnDocument

from cart import compute_subtotal, compute_tax, to_money
from config import FREE_SHIPPING_THRESHOLD, STANDARD_SHIPPING, EXPRESS_SHIPPING, OVERNIGHT_SHIPPING
from database import create_document, to_object_id, to_str_id, utcnow
from errors import (
    EmptyCartError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from inventory import available, decrement_stock, get_product, restore_stock
from schemas import (
    CANCELLABLE_STATUSES,
    ORDER_STATUSES,
    Address,
    Cart,
    CheckoutRequest,
    Order,
    OrderItem,
    Payment,
    Shipping,
    StatusEntry,
)

logger = logging.getLogger(__name__)

REQUIRED_ADDRESS_FIELDS = ("first_name", "last_name", "street", "city", "zip_code")


def shipping_cost(method: str, subtotal: Decimal) -> Decimal:
    if method == "express":
        return to_money(EXPRESS_SHIPPING)
    if method == "overnight":
        return to_money(OVERNIGHT_SHIPPING)
    if method == "standard":
        return Decimal("0") if subtotal >= Decimal(FREE_SHIPPING_THRESHOLD) else to_money(STANDARD_SHIPPING)
    raise ValidationError(f"Unknown shipping method: {method}")


def next_order_number(db, now: Optional[datetime] = None) -> str:
    """ORD + year + month + a six digit sequence from an atomic counter."""
    now = now or utcnow()
    counter = db["counter"].find_one_and_update(
        {"_id": "order"},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return f"ORD{now.year}{now.month:02d}{counter['seq']:06d}"


def validate_address(address: Address, label: str = "Shipping address"):
    missing = [f for f in REQUIRED_ADDRESS_FIELDS if not (getattr(address, f) or "").strip()]
    if missing:
        raise ValidationError(f"{label} is missing: {', '.join(missing)}")


def _check_stock(db, cart: Cart) -> Dict[str, Dict[str, Any]]:
    # Lines with the same product and size but different colours draw on one bucket.
    demand: Dict[Tuple[str, float], int] = defaultdict(int)
    for item in cart.items:
        demand[(item.product_id, float(item.size))] += item.quantity

    products = {}
    for item in cart.items:
        if item.product_id not in products:
            try:
                products[item.product_id] = get_product(db, item.product_id)
            except NotFoundError:
                raise NotFoundError(f"Product {item.name}")
        if available(products[item.product_id], item.size) < demand[(item.product_id, float(item.size))]:
            raise InsufficientStockError(item.name, item.size)
    return products


def _rollback(db, applied: List):
    if not applied:
        return
    logger.warning(f"Checkout failed after {len(applied)} stock decrement(s); restoring stock")
    for item in reversed(applied):
        restore_stock(db, item.product_id, item.size, item.quantity)


def place_order(db, user_id: Optional[str], cart: Cart, payload: CheckoutRequest, mode: Optional[str] = None) -> Dict[str, str]:
    """Turn the cart into a confirmed order.

    Returns ``{"order_id", "order_number"}``. The caller is responsible for
    emptying the session cart afterwards.
    """
    if not user_id:
        raise UnauthorizedError()
    if not cart.items:
        raise EmptyCartError()
    validate_address(payload.shipping_address)
    if payload.billing_address is not None:
        validate_address(payload.billing_address, "Billing address")

    products = _check_stock(db, cart)

    applied = []
    try:
        for item in cart.items:
            decrement_stock(db, item.product_id, item.size, item.quantity, name=item.name, mode=mode)
            applied.append(item)

        order_items = [
            OrderItem(
                product_id=item.product_id,
                name=products[item.product_id].get("name", item.name),
                price=item.price,
                size=item.size,
                color=item.color,
                quantity=item.quantity,
                image=item.image,
            )
            for item in cart.items
        ]
        subtotal = compute_subtotal(cart.items)
        tax = compute_tax(subtotal)
        cost = shipping_cost(payload.shipping_method, subtotal)
        now = utcnow()
        order = Order(
            order_number=next_order_number(db, now),
            user_id=str(user_id),
            items=order_items,
            shipping_address=payload.shipping_address,
            billing_address=payload.billing_address or payload.shipping_address,
            payment=Payment(method=payload.payment_method, status="pending"),
            subtotal=float(subtotal),
            shipping=Shipping(method=payload.shipping_method, cost=float(cost)),
            tax=float(tax),
            total=float(subtotal + cost + tax),
            status="confirmed",
            notes=payload.notes,
            status_history=[StatusEntry(status="confirmed", timestamp=now, note="Order placed successfully")],
            created_at=now,
        )
        order_id = create_document(db, "order", order.model_dump(exclude={"id"}))
    except Exception:
        _rollback(db, applied)
        raise

    logger.info(f"Order {order.order_number} placed by user {user_id}: {len(order_items)} item(s), total {order.total:.2f}")
    return {"order_id": order_id, "order_number": order.order_number}


def serialize_order(doc: Dict[str, Any]) -> Order:
    return Order.model_validate(to_str_id(doc))


def get_order(db, order_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
    filt: Dict[str, Any] = {"_id": to_object_id(order_id)}
    if user_id is not None:
        filt["user_id"] = str(user_id)
    doc = db["order"].find_one(filt)
    if not doc:
        raise NotFoundError("Order", order_id)
    return doc


def list_user_orders(db, user_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = db["order"].find({"user_id": str(user_id)}).sort("created_at", DESCENDING)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def list_orders(db, status: Optional[str] = None, page: int = 1, limit: int = 20) -> Tuple[List[Dict[str, Any]], int]:
    filt: Dict[str, Any] = {}
    if status:
        filt["status"] = status
    total = db["order"].count_documents(filt)
    cursor = db["order"].find(filt).sort("created_at", DESCENDING).skip((page - 1) * limit).limit(limit)
    return list(cursor), total


def cancel_order(db, order_id: str, user_id: str) -> Dict[str, Any]:
    """Customer cancellation: only from pending/confirmed, restores stock."""
    order = get_order(db, order_id, user_id)
    if order.get("status") not in CANCELLABLE_STATUSES:
        raise InvalidTransitionError(order.get("status"), "Order cannot be cancelled at this stage")

    now = utcnow()
    # Guarded on status so a second concurrent cancel can't restore stock twice.
    result = db["order"].update_one(
        {"_id": order["_id"], "status": {"$in": list(CANCELLABLE_STATUSES)}},
        {
            "$set": {"status": "cancelled", "updated_at": now},
            "$push": {"status_history": {"status": "cancelled", "timestamp": now, "note": "Cancelled by customer"}},
        },
    )
    if result.modified_count == 0:
        current = db["order"].find_one({"_id": order["_id"]}) or {}
        raise InvalidTransitionError(current.get("status", "unknown"), "Order cannot be cancelled at this stage")

    for item in order.get("items", []):
        restore_stock(db, item["product_id"], item["size"], item["quantity"])

    logger.info(f"Order {order.get('order_number')} cancelled by user {user_id}")
    return db["order"].find_one({"_id": order["_id"]})


def update_status(db, order_id: str, status: str, note: Optional[str] = None, tracking_number: Optional[str] = None) -> Dict[str, Any]:
    """Admin status overwrite.

    Any known status may follow any other; there is no state machine here.
    Stock is not touched, even when moving to "cancelled".
    """
    if status not in ORDER_STATUSES:
        raise ValidationError(f"Invalid status: {status}")
    now = utcnow()
    updates: Dict[str, Any] = {"status": status, "updated_at": now}
    if tracking_number:
        updates["tracking_number"] = tracking_number
    result = db["order"].update_one(
        {"_id": to_object_id(order_id)},
        {
            "$set": updates,
            "$push": {"status_history": {"status": status, "timestamp": now, "note": note or f"Status updated to {status}"}},
        },
    )
    if result.matched_count == 0:
        raise NotFoundError("Order", order_id)
    logger.info(f"Order {order_id} status set to {status}")
    return db["order"].find_one({"_id": to_object_id(order_id)})
