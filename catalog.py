"""Product catalog: browsing, reviews and admin product CRUD."""
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING

from database import create_document, to_object_id, to_str_id, utcnow
from errors import DuplicateError, NotFoundError
from inventory import total_stock
from schemas import Product, ProductIn

logger = logging.getLogger(__name__)

SORTS = {
    "price_asc": [("price", ASCENDING)],
    "price_desc": [("price", DESCENDING)],
    "newest": [("created_at", DESCENDING)],
    "rating": [("rating.average", DESCENDING)],
    "popular": [("sold_count", DESCENDING)],
}


def slugify(name: str) -> str:
    return re.sub(r"(^-|-$)", "", re.sub(r"[^a-z0-9]+", "-", name.lower()))


def serialize_product(doc: Dict[str, Any], with_reviews: bool = True) -> Product:
    product = Product.model_validate(to_str_id(doc))
    if not with_reviews:
        product.reviews = []
    return product


def _search_regex(text: str) -> Dict[str, Any]:
    return {"$regex": re.escape(text), "$options": "i"}


def build_filter(
    category: Optional[str] = None,
    brand: Optional[str] = None,
    gender: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    size: Optional[float] = None,
    color: Optional[str] = None,
    search: Optional[str] = None,
    featured: Optional[bool] = None,
) -> Dict[str, Any]:
    filt: Dict[str, Any] = {"is_active": True}
    if category:
        filt["category"] = category
    if brand:
        filt["brand"] = brand
    if gender:
        filt["gender"] = gender
    if featured:
        filt["is_featured"] = True
    if min_price is not None or max_price is not None:
        price_cond: Dict[str, Any] = {}
        if min_price is not None:
            price_cond["$gte"] = float(min_price)
        if max_price is not None:
            price_cond["$lte"] = float(max_price)
        filt["price"] = price_cond
    if size is not None:
        filt["sizes"] = {"$elemMatch": {"size": float(size), "stock": {"$gt": 0}}}
    if color:
        filt["colors.name"] = _search_regex(color)
    if search:
        filt["$or"] = [
            {"name": _search_regex(search)},
            {"brand": _search_regex(search)},
            {"description": _search_regex(search)},
            {"tags": _search_regex(search)},
        ]
    return filt


def list_products(db, filt: Dict[str, Any], sort: Optional[str] = None, page: int = 1, limit: int = 12) -> Tuple[List[Product], Dict[str, Any]]:
    page = max(page, 1)
    limit = max(limit, 1)
    total = db["product"].count_documents(filt)
    total_pages = (total + limit - 1) // limit
    cursor = (
        db["product"]
        .find(filt)
        .sort(SORTS.get(sort, SORTS["newest"]))
        .skip((page - 1) * limit)
        .limit(limit)
    )
    products = [serialize_product(d, with_reviews=False) for d in cursor]
    pagination = {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": total_pages,
        "hasNext": page < total_pages,
        "hasPrev": page > 1,
    }
    return products, pagination


def _group_counts(db, field: str, sort) -> List[Dict[str, Any]]:
    pipeline = [
        {"$match": {"is_active": True}},
        {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
        {"$sort": sort},
    ]
    return [{"name": row["_id"], "count": row["count"]} for row in db["product"].aggregate(pipeline)]


def category_counts(db) -> List[Dict[str, Any]]:
    return _group_counts(db, "category", {"_id": 1})


def brand_counts(db) -> List[Dict[str, Any]]:
    return _group_counts(db, "brand", {"count": -1, "_id": 1})


def available_sizes(db) -> List[float]:
    pipeline = [
        {"$match": {"is_active": True}},
        {"$unwind": "$sizes"},
        {"$match": {"sizes.stock": {"$gt": 0}}},
        {"$group": {"_id": "$sizes.size"}},
        {"$sort": {"_id": 1}},
    ]
    return [float(row["_id"]) for row in db["product"].aggregate(pipeline)]


def find_product(db, id_or_slug: str, active_only: bool = True) -> Dict[str, Any]:
    if ObjectId.is_valid(id_or_slug):
        filt: Dict[str, Any] = {"$or": [{"_id": ObjectId(id_or_slug)}, {"slug": id_or_slug}]}
    else:
        filt = {"slug": id_or_slug}
    if active_only:
        filt["is_active"] = True
    doc = db["product"].find_one(filt)
    if not doc:
        raise NotFoundError("Product", id_or_slug)
    return doc


def related_products(db, doc: Dict[str, Any], limit: int = 4) -> List[Product]:
    cursor = db["product"].find(
        {"category": doc.get("category"), "_id": {"$ne": doc["_id"]}, "is_active": True}
    ).limit(limit)
    return [serialize_product(d, with_reviews=False) for d in cursor]


def add_review(db, product_id: str, user_id: str, rating: int, comment: Optional[str] = None) -> Dict[str, Any]:
    """One review per user; keeps rating.average/count in step with the reviews."""
    oid = to_object_id(product_id)
    doc = db["product"].find_one({"_id": oid})
    if not doc:
        raise NotFoundError("Product", product_id)
    reviews = doc.get("reviews") or []
    if any(r.get("user") == str(user_id) for r in reviews):
        raise DuplicateError("You have already reviewed this product")

    reviews.append({"user": str(user_id), "rating": int(rating), "comment": comment, "created_at": utcnow()})
    average = sum(r["rating"] for r in reviews) / len(reviews)
    rating_doc = {"average": round(average, 2), "count": len(reviews)}
    db["product"].update_one(
        {"_id": oid},
        {"$set": {"reviews": reviews, "rating": rating_doc, "updated_at": utcnow()}},
    )
    return rating_doc


# -----------------
# Admin
# -----------------

def _product_document(payload: ProductIn) -> Dict[str, Any]:
    data = payload.model_dump()
    data["slug"] = slugify(payload.name)
    data["total_stock"] = total_stock(data["sizes"])
    if data["images"] and not any(img["is_primary"] for img in data["images"]):
        data["images"][0]["is_primary"] = True
    for img in data["images"]:
        img["alt"] = img.get("alt") or payload.name
    return data


def _ensure_unique_slug(db, slug: str, exclude_id: Optional[ObjectId] = None):
    filt: Dict[str, Any] = {"slug": slug}
    if exclude_id is not None:
        filt["_id"] = {"$ne": exclude_id}
    if db["product"].find_one(filt):
        raise DuplicateError("slug already exists")


def create_product(db, payload: ProductIn) -> str:
    data = _product_document(payload)
    _ensure_unique_slug(db, data["slug"])
    data.update({"rating": {"average": 0, "count": 0}, "reviews": [], "sold_count": 0})
    product_id = create_document(db, "product", data)
    logger.info(f"Product {product_id} created: {payload.name}")
    return product_id


def update_product(db, product_id: str, payload: ProductIn) -> Dict[str, Any]:
    oid = to_object_id(product_id)
    data = _product_document(payload)
    _ensure_unique_slug(db, data["slug"], exclude_id=oid)
    data["updated_at"] = utcnow()
    result = db["product"].update_one({"_id": oid}, {"$set": data})
    if result.matched_count == 0:
        raise NotFoundError("Product", product_id)
    return db["product"].find_one({"_id": oid})


def delete_product(db, product_id: str):
    result = db["product"].delete_one({"_id": to_object_id(product_id)})
    if result.deleted_count == 0:
        raise NotFoundError("Product", product_id)
    logger.info(f"Product {product_id} deleted")


def admin_list_products(db, search: Optional[str] = None, category: Optional[str] = None, brand: Optional[str] = None, page: int = 1, limit: int = 20) -> Tuple[List[Product], int]:
    filt: Dict[str, Any] = {}
    if search:
        filt["$or"] = [{"name": _search_regex(search)}, {"brand": _search_regex(search)}]
    if category:
        filt["category"] = category
    if brand:
        filt["brand"] = brand
    total = db["product"].count_documents(filt)
    cursor = db["product"].find(filt).sort("created_at", DESCENDING).skip((page - 1) * limit).limit(limit)
    return [serialize_product(d, with_reviews=False) for d in cursor], total


def inventory_report(db) -> List[Dict[str, Any]]:
    cursor = db["product"].find({}, {"name": 1, "brand": 1, "sizes": 1, "total_stock": 1}).sort("total_stock", ASCENDING)
    return [
        {
            "id": str(d["_id"]),
            "name": d.get("name"),
            "brand": d.get("brand"),
            "sizes": d.get("sizes", []),
            "totalStock": d.get("total_stock", 0),
        }
        for d in cursor
    ]


# -----------------
# Demo data
# -----------------

DEMO_PRODUCTS = [
    ProductIn(
        name="Nike Air Max 270",
        description="Visible Air cushioning under every step, with a heritage tongue top and low-cut collar.",
        short_description="Iconic Air Max cushioning with modern comfort",
        brand="Nike", category="Running", gender="Unisex",
        price=150.00, sale_price=129.99,
        sizes=[{"size": s, "stock": n} for s, n in [(7, 15), (8, 20), (9, 25), (9.5, 22), (10, 30), (11, 20)]],
        colors=[{"name": "Black/White", "hex_code": "#000000"}, {"name": "Blue/Navy", "hex_code": "#1e3a8a"}],
        images=[{"url": "https://images.unsplash.com/photo-1542291026-7eec264c27ff?w=800"}],
        features=["Air Max 270 unit", "Mesh upper", "Foam midsole"],
        materials=["Mesh", "Synthetic", "Rubber"],
        tags=["running", "air max", "cushioned"],
        is_featured=True,
    ),
    ProductIn(
        name="Adidas Ultraboost 22",
        description="Responsive Boost midsole and a Primeknit upper that adapts to the foot.",
        short_description="Energy-returning running shoe",
        brand="Adidas", category="Running", gender="Men",
        price=190.00,
        sizes=[{"size": s, "stock": n} for s, n in [(8, 10), (8.5, 12), (9, 14), (10, 9), (11, 6)]],
        colors=[{"name": "Core Black", "hex_code": "#111111"}],
        images=[{"url": "https://images.unsplash.com/photo-1608231387042-66d1773070a5?w=800"}],
        tags=["running", "boost"],
        is_featured=True,
    ),
    ProductIn(
        name="Converse Chuck Taylor All Star",
        description="The canvas high-top that has not changed much since 1917, and does not need to.",
        brand="Converse", category="Casual", gender="Unisex",
        price=65.00, sale_price=55.00,
        sizes=[{"size": s, "stock": n} for s, n in [(6, 8), (7, 12), (8, 15), (9, 15), (10, 10)]],
        colors=[{"name": "Optical White", "hex_code": "#ffffff"}],
        images=[{"url": "https://images.unsplash.com/photo-1607522370275-f14206abe5d3?w=800"}],
        tags=["classic", "canvas"],
    ),
    ProductIn(
        name="Timberland Premium 6-Inch Boot",
        description="Waterproof nubuck leather boot with a padded collar and lug outsole.",
        brand="Other", category="Boots", gender="Men",
        price=198.00,
        sizes=[{"size": s, "stock": n} for s, n in [(8, 4), (9, 3), (10, 2)]],
        colors=[{"name": "Wheat", "hex_code": "#d89b4a"}],
        images=[{"url": "https://images.unsplash.com/photo-1520639888713-7851133b1ed0?w=800"}],
        tags=["boots", "waterproof"],
    ),
]


def seed_products(db) -> int:
    """Insert the demo catalog when the product collection is empty. Returns the product count."""
    if db["product"].count_documents({}) == 0:
        for payload in DEMO_PRODUCTS:
            create_product(db, payload)
        logger.info(f"Seeded {len(DEMO_PRODUCTS)} demo products")
    return int(db["product"].count_documents({}))
