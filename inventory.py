"""Per-size stock buckets on product documents.

A product carries ``sizes: [{size, stock}]`` plus a denormalised
``total_stock`` and ``sold_count``. Every write here keeps
``total_stock == sum(stock)``: whole-list writes recompute it, single-bucket
writes ``$inc`` it by the same delta in the same update.
"""
import logging
from typing import Any, Dict, List, Optional

from config import STOCK_DECREMENT_MODE
from database import to_object_id, utcnow
from errors import InsufficientStockError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

DECREMENT_MODES = ("compare_and_swap", "read_modify_write")
CAS_ATTEMPTS = 3


def bucket_index(sizes: List[Dict[str, Any]], size: float) -> int:
    for i, bucket in enumerate(sizes):
        if float(bucket.get("size")) == float(size):
            return i
    return -1


def find_bucket(product: Dict[str, Any], size: float) -> Optional[Dict[str, Any]]:
    sizes = product.get("sizes") or []
    idx = bucket_index(sizes, size)
    return sizes[idx] if idx >= 0 else None


def available(product: Dict[str, Any], size: float) -> int:
    bucket = find_bucket(product, size)
    return int(bucket.get("stock", 0)) if bucket else 0


def total_stock(sizes: List[Dict[str, Any]]) -> int:
    return sum(int(s.get("stock", 0)) for s in sizes)


def get_product(db, product_id) -> Dict[str, Any]:
    product = db["product"].find_one({"_id": to_object_id(product_id)})
    if not product:
        raise NotFoundError("Product", str(product_id))
    return product


def decrement_stock(db, product_id, size: float, quantity: int, name: Optional[str] = None, mode: Optional[str] = None):
    """Take ``quantity`` units out of one size bucket and count them as sold.

    Raises InsufficientStockError when the bucket is missing or short.
    """
    mode = mode or STOCK_DECREMENT_MODE
    if mode == "compare_and_swap":
        _decrement_cas(db, product_id, size, quantity, name)
    elif mode == "read_modify_write":
        _decrement_rmw(db, product_id, size, quantity, name)
    else:
        raise ValidationError(f"Unknown stock decrement mode: {mode}")


def _decrement_rmw(db, product_id, size, quantity, name):
    # Check-then-write with no guard: two concurrent checkouts can both pass the check.
    product = get_product(db, product_id)
    sizes = product.get("sizes") or []
    idx = bucket_index(sizes, size)
    if idx == -1 or int(sizes[idx].get("stock", 0)) < quantity:
        raise InsufficientStockError(name or product.get("name", "Product"), size)
    sizes[idx]["stock"] = int(sizes[idx]["stock"]) - quantity
    db["product"].update_one(
        {"_id": product["_id"]},
        {
            "$set": {"sizes": sizes, "total_stock": total_stock(sizes), "updated_at": utcnow()},
            "$inc": {"sold_count": quantity},
        },
    )


def _decrement_cas(db, product_id, size, quantity, name):
    for _ in range(CAS_ATTEMPTS):
        product = get_product(db, product_id)
        sizes = product.get("sizes") or []
        idx = bucket_index(sizes, size)
        if idx == -1 or int(sizes[idx].get("stock", 0)) < quantity:
            raise InsufficientStockError(name or product.get("name", "Product"), size)
        result = db["product"].update_one(
            {
                "_id": product["_id"],
                f"sizes.{idx}.size": sizes[idx]["size"],
                f"sizes.{idx}.stock": {"$gte": quantity},
            },
            {
                "$inc": {f"sizes.{idx}.stock": -quantity, "total_stock": -quantity, "sold_count": quantity},
                "$set": {"updated_at": utcnow()},
            },
        )
        if result.modified_count == 1:
            return
        logger.info(f"Stock for product {product_id} size {size:g} changed during checkout, retrying")
    raise InsufficientStockError(name or "Product", size)


def restore_stock(db, product_id, size: float, quantity: int) -> bool:
    """Put ``quantity`` units back into a size bucket and un-count them as sold.

    A bucket that was deleted from the product since the sale is recreated.
    Returns False only when the product itself is gone.
    """
    oid = to_object_id(product_id)
    for _ in range(CAS_ATTEMPTS):
        product = db["product"].find_one({"_id": oid})
        if not product:
            logger.warning(f"Cannot restore {quantity} units of size {size:g}: product {product_id} no longer exists")
            return False
        sizes = product.get("sizes") or []
        idx = bucket_index(sizes, size)
        if idx == -1:
            logger.warning(f"Size {size:g} was removed from product {product_id}; recreating it with {quantity} units")
            db["product"].update_one(
                {"_id": oid},
                {
                    "$push": {"sizes": {"size": size, "stock": quantity}},
                    "$inc": {"total_stock": quantity, "sold_count": -quantity},
                    "$set": {"updated_at": utcnow()},
                },
            )
            return True
        result = db["product"].update_one(
            {"_id": oid, f"sizes.{idx}.size": sizes[idx]["size"]},
            {
                "$inc": {f"sizes.{idx}.stock": quantity, "total_stock": quantity, "sold_count": -quantity},
                "$set": {"updated_at": utcnow()},
            },
        )
        if result.matched_count == 1:
            return True
    logger.error(f"Gave up restoring {quantity} units of size {size:g} to product {product_id}")
    return False


def set_sizes(db, product_id, sizes: List[Dict[str, Any]]) -> int:
    """Replace a product's size list (admin inventory edit). Returns the new total stock."""
    seen = set()
    for bucket in sizes:
        if float(bucket["size"]) in seen:
            raise ValidationError(f"Duplicate size {float(bucket['size']):g}")
        seen.add(float(bucket["size"]))
        if int(bucket.get("stock", 0)) < 0:
            raise ValidationError("Stock cannot be negative")
    total = total_stock(sizes)
    result = db["product"].update_one(
        {"_id": to_object_id(product_id)},
        {"$set": {"sizes": sizes, "total_stock": total, "updated_at": utcnow()}},
    )
    if result.matched_count == 0:
        raise NotFoundError("Product", str(product_id))
    return total
