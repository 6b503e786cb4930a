import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import (
    authenticate,
    ensure_admin,
    get_user,
    list_users,
    register_user,
    serialize_user,
    session_user,
    toggle_wishlist,
    update_profile,
)
from cart import add_item, clear_cart, item_count, remove_item, update_item
from catalog import (
    add_review,
    admin_list_products,
    available_sizes,
    brand_counts,
    build_filter,
    category_counts,
    create_product,
    delete_product,
    find_product,
    inventory_report,
    list_products,
    related_products,
    seed_products,
    serialize_product,
    update_product,
)
from config import (
    ADMIN_EMAIL,
    ADMIN_PASSWORD,
    ALLOWED_ORIGINS,
    LOG_LEVEL,
    LOW_STOCK_THRESHOLD,
    PORT,
    SESSION_COOKIE_NAME,
    SESSION_COOKIE_SECURE,
    SESSION_TTL_HOURS,
)
from database import db as default_db, ensure_indexes, get_db, get_documents, to_object_id
from errors import ERROR_STATUS_CODES, ForbiddenError, StoreError, UnauthorizedError
from inventory import set_sizes
from orders import (
    cancel_order,
    get_order,
    list_orders,
    list_user_orders,
    place_order,
    serialize_order,
    update_status,
)
from schemas import (
    AddToCartRequest,
    CheckoutRequest,
    InventoryUpdateRequest,
    LoginRequest,
    ProductIn,
    ProfileUpdateRequest,
    RegisterRequest,
    RemoveFromCartRequest,
    ReviewRequest,
    StatusUpdateRequest,
    UpdateCartRequest,
    WishlistRequest,
)
from sessions import SessionStore

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("shoestore")

STARTED_AT = time.time()


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        ensure_indexes(default_db)
        if ADMIN_EMAIL and ADMIN_PASSWORD:
            ensure_admin(default_db, ADMIN_EMAIL, ADMIN_PASSWORD)
    except PyMongoError as e:
        logger.error(f"Database setup failed: {e}")
    yield


app = FastAPI(title="Shoe Store API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed = (time.perf_counter() - start) * 1000
    logger.info(f"{request.method} {request.url.path} {response.status_code} {elapsed:.1f}ms")
    return response


@app.middleware("http")
async def session_cookie(request: Request, call_next):
    response = await call_next(request)
    # Every response for a new session carries its cookie, error responses included.
    session_id = getattr(request.state, "new_session_id", None)
    if session_id:
        response.set_cookie(
            SESSION_COOKIE_NAME,
            session_id,
            max_age=SESSION_TTL_HOURS * 3600,
            httponly=True,
            secure=SESSION_COOKIE_SECURE,
            samesite="lax",
        )
    return response


# -----------------
# Error handling
# -----------------

def _status_for(exc: StoreError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 500


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": str(exc), "errorType": type(exc).__name__},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        messages.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg"))
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": "Validation Error", "errors": messages},
    )


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError) -> JSONResponse:
    key_value = (exc.details or {}).get("keyValue") or {}
    field = next(iter(key_value), None)
    message = f"{field} already exists" if field else "Duplicate value"
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": message, "errorType": "DuplicateError"},
    )


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError) -> JSONResponse:
    logger.exception(f"{request.method} {request.url.path} database error")
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Database error", "errorType": type(exc).__name__},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"{request.method} {request.url.path} failed")
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Internal server error", "errorType": type(exc).__name__},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail
    if exc.status_code == 404 and exc.detail == "Not Found":
        message = f"Route not found: {request.method} {request.url.path}"
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": message})


# -----------------
# Session / auth dependencies
# -----------------

def get_session_store(db=Depends(get_db)) -> SessionStore:
    return SessionStore(db)


def get_session(request: Request, store: SessionStore = Depends(get_session_store)) -> Dict[str, Any]:
    session = store.load(request.cookies.get(SESSION_COOKIE_NAME))
    if session is None:
        session = store.create()
        request.state.new_session_id = session["_id"]
    return session


def current_user(session: Dict[str, Any] = Depends(get_session)) -> Dict[str, Any]:
    if not session.get("user"):
        raise UnauthorizedError()
    return session["user"]


def require_admin(user: Dict[str, Any] = Depends(current_user)) -> Dict[str, Any]:
    if user.get("role") != "admin":
        raise ForbiddenError()
    return user


def _pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {"page": page, "totalPages": (total + limit - 1) // limit, "total": total}


# -----------------
# Service
# -----------------

@app.get("/")
def read_root():
    return {"message": "Shoe store backend is running"}


@app.get("/health")
def health(db=Depends(get_db)):
    mongodb = "disconnected"
    try:
        db.list_collection_names()
        mongodb = "connected"
    except PyMongoError as e:
        logger.warning(f"Health check could not reach MongoDB: {str(e)[:80]}")
    return {
        "status": "healthy",
        "uptime": round(time.time() - STARTED_AT, 1),
        "mongodb": mongodb,
    }


@app.post("/seed")
def seed(db=Depends(get_db)):
    count = seed_products(db)
    return {"seeded": True, "count": count}


# -----------------
# Catalog
# -----------------

@app.get("/api/products")
def get_products(
    category: Optional[str] = None,
    brand: Optional[str] = None,
    gender: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    size: Optional[float] = None,
    color: Optional[str] = None,
    search: Optional[str] = None,
    sort: Optional[str] = Query(None, description="price_asc|price_desc|newest|rating|popular"),
    featured: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    db=Depends(get_db),
):
    filt = build_filter(category, brand, gender, min_price, max_price, size, color, search, featured)
    products, pagination = list_products(db, filt, sort, page, limit)
    return {"success": True, "data": products, "pagination": pagination}


@app.get("/api/products/categories")
def get_categories(db=Depends(get_db)):
    return {"success": True, "data": category_counts(db)}


@app.get("/api/products/brands")
def get_brands(db=Depends(get_db)):
    return {"success": True, "data": brand_counts(db)}


@app.get("/api/products/sizes")
def get_sizes(db=Depends(get_db)):
    return {"success": True, "data": available_sizes(db)}


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    doc = find_product(db, product_id)
    return {"success": True, "data": serialize_product(doc), "related": related_products(db, doc)}


@app.post("/api/products/{product_id}/review")
def post_review(product_id: str, payload: ReviewRequest, db=Depends(get_db), user=Depends(current_user)):
    rating = add_review(db, product_id, user["id"], payload.rating, payload.comment)
    return {"success": True, "message": "Review added successfully", "rating": rating}


# -----------------
# Cart
# -----------------

@app.get("/api/cart")
def get_cart(session=Depends(get_session), store: SessionStore = Depends(get_session_store)):
    return {"success": True, "data": store.get_cart(session)}


@app.get("/api/cart/count")
def get_cart_count(session=Depends(get_session), store: SessionStore = Depends(get_session_store)):
    return {"success": True, "count": item_count(store.get_cart(session))}


@app.post("/api/cart/add")
def add_to_cart(payload: AddToCartRequest, db=Depends(get_db), session=Depends(get_session), store: SessionStore = Depends(get_session_store)):
    cart = add_item(db, store.get_cart(session), payload.product_id, payload.size, payload.color, payload.quantity)
    store.put_cart(session, cart)
    return {"success": True, "message": "Item added to cart", "data": cart}


@app.put("/api/cart/update")
def update_cart(payload: UpdateCartRequest, db=Depends(get_db), session=Depends(get_session), store: SessionStore = Depends(get_session_store)):
    cart = update_item(db, store.get_cart(session), payload.product_id, payload.size, payload.quantity)
    store.put_cart(session, cart)
    return {"success": True, "message": "Cart updated", "data": cart}


@app.delete("/api/cart/remove")
def remove_from_cart(payload: RemoveFromCartRequest, session=Depends(get_session), store: SessionStore = Depends(get_session_store)):
    cart = remove_item(store.get_cart(session), payload.product_id, payload.size)
    store.put_cart(session, cart)
    return {"success": True, "message": "Item removed from cart", "data": cart}


@app.delete("/api/cart/clear")
def clear(session=Depends(get_session), store: SessionStore = Depends(get_session_store)):
    cart = clear_cart()
    store.put_cart(session, cart)
    return {"success": True, "message": "Cart cleared", "data": cart}


# -----------------
# Checkout / Orders
# -----------------

@app.get("/api/orders")
def get_orders(db=Depends(get_db), user=Depends(current_user)):
    return {"success": True, "data": [serialize_order(d) for d in list_user_orders(db, user["id"])]}


@app.get("/api/orders/{order_id}")
def get_order_detail(order_id: str, db=Depends(get_db), user=Depends(current_user)):
    return {"success": True, "data": serialize_order(get_order(db, order_id, user["id"]))}


@app.post("/api/orders", status_code=201)
def create_order(
    payload: CheckoutRequest,
    db=Depends(get_db),
    session=Depends(get_session),
    store: SessionStore = Depends(get_session_store),
    user=Depends(current_user),
):
    result = place_order(db, user["id"], store.get_cart(session), payload)
    store.put_cart(session, clear_cart())
    return {
        "success": True,
        "message": "Order placed successfully",
        "data": {"orderId": result["order_id"], "orderNumber": result["order_number"]},
    }


@app.post("/api/orders/{order_id}/cancel")
def cancel(order_id: str, db=Depends(get_db), user=Depends(current_user)):
    cancel_order(db, order_id, user["id"])
    return {"success": True, "message": "Order cancelled successfully"}


# -----------------
# Wishlist
# -----------------

@app.get("/api/wishlist")
def get_wishlist(db=Depends(get_db), user=Depends(current_user)):
    ids = get_user(db, user["id"]).get("wishlist", [])
    docs = get_documents(db, "product", {"_id": {"$in": [to_object_id(i) for i in ids]}})
    return {"success": True, "data": [serialize_product(d, with_reviews=False) for d in docs]}


@app.post("/api/wishlist/add")
def add_to_wishlist(payload: WishlistRequest, db=Depends(get_db), user=Depends(current_user)):
    added, wishlist = toggle_wishlist(db, user["id"], payload.product_id)
    message = "Added to wishlist" if added else "Removed from wishlist"
    return {"success": True, "message": message, "added": added, "data": wishlist}


# -----------------
# Auth
# -----------------

@app.post("/auth/register", status_code=201)
def register(payload: RegisterRequest, db=Depends(get_db), session=Depends(get_session), store: SessionStore = Depends(get_session_store)):
    doc = register_user(db, payload)
    store.set_user(session, session_user(doc))
    return {"success": True, "message": "Account created successfully", "data": serialize_user(doc)}


@app.post("/auth/login")
def login(payload: LoginRequest, db=Depends(get_db), session=Depends(get_session), store: SessionStore = Depends(get_session_store)):
    doc = authenticate(db, payload.email, payload.password)
    store.set_user(session, session_user(doc))
    return {"success": True, "message": f"Welcome back, {doc.get('first_name')}!", "data": serialize_user(doc)}


@app.post("/auth/logout")
def logout(request: Request, response: Response, session=Depends(get_session), store: SessionStore = Depends(get_session_store)):
    store.destroy(session["_id"])
    request.state.new_session_id = None
    response.delete_cookie(SESSION_COOKIE_NAME)
    return {"success": True, "message": "Logged out"}


@app.get("/auth/profile")
def profile(db=Depends(get_db), user=Depends(current_user)):
    doc = get_user(db, user["id"])
    orders = [serialize_order(d) for d in list_user_orders(db, user["id"], limit=5)]
    return {"success": True, "data": serialize_user(doc), "orders": orders}


@app.put("/auth/profile")
def edit_profile(
    payload: ProfileUpdateRequest,
    db=Depends(get_db),
    session=Depends(get_session),
    store: SessionStore = Depends(get_session_store),
    user=Depends(current_user),
):
    doc = update_profile(db, user["id"], payload)
    store.set_user(session, session_user(doc))
    return {"success": True, "message": "Profile updated successfully", "data": serialize_user(doc)}


# -----------------
# Admin
# -----------------

@app.get("/admin")
def dashboard(db=Depends(get_db), admin=Depends(require_admin)):
    sales = list(db["order"].aggregate([
        {"$match": {"status": {"$ne": "cancelled"}}},
        {"$group": {"_id": None, "totalSales": {"$sum": "$total"}, "orderCount": {"$sum": 1}}},
    ]))
    recent = db["order"].find().sort("created_at", DESCENDING).limit(10)
    low_stock = db["product"].find(
        {"total_stock": {"$lt": LOW_STOCK_THRESHOLD}}, {"name": 1, "brand": 1, "total_stock": 1}
    )
    return {
        "success": True,
        "stats": {
            "totalProducts": db["product"].count_documents({}),
            "totalOrders": db["order"].count_documents({}),
            "totalUsers": db["user"].count_documents({"role": "customer"}),
            "totalSales": round(sales[0]["totalSales"], 2) if sales else 0,
        },
        "recentOrders": [serialize_order(d) for d in recent],
        "lowStockProducts": [
            {"id": str(d["_id"]), "name": d.get("name"), "brand": d.get("brand"), "totalStock": d.get("total_stock", 0)}
            for d in low_stock
        ],
    }


@app.get("/admin/products")
def admin_products(
    search: Optional[str] = None,
    category: Optional[str] = None,
    brand: Optional[str] = None,
    page: int = Query(1, ge=1),
    db=Depends(get_db),
    admin=Depends(require_admin),
):
    limit = 20
    products, total = admin_list_products(db, search, category, brand, page, limit)
    return {"success": True, "data": products, "pagination": _pagination(page, limit, total)}


@app.post("/admin/products", status_code=201)
def admin_create_product(payload: ProductIn, db=Depends(get_db), admin=Depends(require_admin)):
    product_id = create_product(db, payload)
    doc = db["product"].find_one({"_id": to_object_id(product_id)})
    return {"success": True, "message": "Product created successfully", "data": serialize_product(doc)}


@app.get("/admin/products/{product_id}")
def admin_get_product(product_id: str, db=Depends(get_db), admin=Depends(require_admin)):
    return {"success": True, "data": serialize_product(find_product(db, product_id, active_only=False))}


@app.put("/admin/products/{product_id}")
def admin_update_product(product_id: str, payload: ProductIn, db=Depends(get_db), admin=Depends(require_admin)):
    doc = update_product(db, product_id, payload)
    return {"success": True, "message": "Product updated successfully", "data": serialize_product(doc)}


@app.delete("/admin/products/{product_id}")
def admin_delete_product(product_id: str, db=Depends(get_db), admin=Depends(require_admin)):
    delete_product(db, product_id)
    return {"success": True, "message": "Product deleted"}


@app.get("/admin/inventory")
def admin_inventory(db=Depends(get_db), admin=Depends(require_admin)):
    return {"success": True, "data": inventory_report(db)}


@app.put("/admin/inventory/{product_id}")
def admin_update_inventory(product_id: str, payload: InventoryUpdateRequest, db=Depends(get_db), admin=Depends(require_admin)):
    total = set_sizes(db, product_id, [s.model_dump() for s in payload.sizes])
    return {"success": True, "message": "Stock updated", "totalStock": total}


@app.get("/admin/orders")
def admin_orders(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    db=Depends(get_db),
    admin=Depends(require_admin),
):
    limit = 20
    docs, total = list_orders(db, status, page, limit)
    return {"success": True, "data": [serialize_order(d) for d in docs], "pagination": _pagination(page, limit, total)}


@app.get("/admin/orders/{order_id}")
def admin_order_detail(order_id: str, db=Depends(get_db), admin=Depends(require_admin)):
    return {"success": True, "data": serialize_order(get_order(db, order_id))}


@app.put("/admin/orders/{order_id}/status")
def admin_update_order_status(order_id: str, payload: StatusUpdateRequest, db=Depends(get_db), admin=Depends(require_admin)):
    doc = update_status(db, order_id, payload.status, payload.note, payload.tracking_number)
    return {"success": True, "message": "Order status updated", "data": serialize_order(doc)}


@app.get("/admin/users")
def admin_users(
    role: Optional[str] = None,
    page: int = Query(1, ge=1),
    db=Depends(get_db),
    admin=Depends(require_admin),
):
    limit = 20
    users, total = list_users(db, role, page, limit)
    return {"success": True, "data": users, "pagination": _pagination(page, limit, total)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
