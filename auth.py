"""Users, password hashing and the wishlist."""
import hashlib
import hmac
import logging
import secrets
from typing import Any, Dict, List, Optional, Tuple

from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

from database import create_document, to_object_id, to_str_id, utcnow
from errors import DuplicateError, NotFoundError, UnauthorizedError
from schemas import Address, ProfileUpdateRequest, RegisterRequest, User

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 260000


def hash_password(password: str, salt: Optional[str] = None, iterations: Optional[int] = None) -> str:
    salt = salt or secrets.token_hex(16)
    iterations = iterations or PBKDF2_ITERATIONS
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), iterations).hex()
    return f"pbkdf2_sha256${iterations}${salt}${digest}"


def verify_password(password: str, stored: str) -> bool:
    try:
        algorithm, iterations, salt, _ = stored.split("$")
    except (AttributeError, ValueError):
        return False
    if algorithm != "pbkdf2_sha256":
        return False
    return hmac.compare_digest(hash_password(password, salt, int(iterations)), stored)


def session_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    """The slice of a user document kept in the session."""
    return {
        "id": str(doc["_id"]),
        "email": doc["email"],
        "first_name": doc.get("first_name"),
        "last_name": doc.get("last_name"),
        "role": doc.get("role", "customer"),
    }


def serialize_user(doc: Dict[str, Any]) -> User:
    return User.model_validate(to_str_id(doc))


def register_user(db, payload: RegisterRequest, role: str = "customer") -> Dict[str, Any]:
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise DuplicateError("Email already registered")
    doc = {
        "email": email,
        "password_hash": hash_password(payload.password),
        "first_name": payload.first_name.strip(),
        "last_name": payload.last_name.strip(),
        "phone": payload.phone,
        "address": Address().model_dump(),
        "role": role,
        "is_active": True,
        "wishlist": [],
    }
    try:
        user_id = create_document(db, "user", doc)
    except DuplicateKeyError:
        raise DuplicateError("Email already registered")
    logger.info(f"User {user_id} registered ({role})")
    return db["user"].find_one({"_id": to_object_id(user_id)})


def authenticate(db, email: str, password: str) -> Dict[str, Any]:
    doc = db["user"].find_one({"email": email.lower(), "is_active": True})
    if not doc or not verify_password(password, doc.get("password_hash", "")):
        raise UnauthorizedError("Invalid email or password")
    return doc


def get_user(db, user_id: str) -> Dict[str, Any]:
    doc = db["user"].find_one({"_id": to_object_id(user_id)})
    if not doc:
        raise NotFoundError("User", user_id)
    return doc


def update_profile(db, user_id: str, payload: ProfileUpdateRequest) -> Dict[str, Any]:
    updates = payload.model_dump(exclude_none=True)
    if "address" in updates:
        updates["address"] = payload.address.model_dump()
    updates["updated_at"] = utcnow()
    result = db["user"].update_one({"_id": to_object_id(user_id)}, {"$set": updates})
    if result.matched_count == 0:
        raise NotFoundError("User", user_id)
    return get_user(db, user_id)


def toggle_wishlist(db, user_id: str, product_id: str) -> Tuple[bool, List[str]]:
    """Add the product if absent, remove it if present. Returns (added, wishlist)."""
    if not db["product"].find_one({"_id": to_object_id(product_id)}):
        raise NotFoundError("Product", product_id)
    user = get_user(db, user_id)
    added = product_id not in (user.get("wishlist") or [])
    op = "$addToSet" if added else "$pull"
    db["user"].update_one({"_id": user["_id"]}, {op: {"wishlist": product_id}})
    return added, get_user(db, user_id).get("wishlist", [])


def list_users(db, role: Optional[str] = None, page: int = 1, limit: int = 20) -> Tuple[List[User], int]:
    filt: Dict[str, Any] = {}
    if role:
        filt["role"] = role
    total = db["user"].count_documents(filt)
    cursor = db["user"].find(filt).sort("created_at", DESCENDING).skip((page - 1) * limit).limit(limit)
    return [serialize_user(d) for d in cursor], total


def ensure_admin(db, email: str, password: str):
    """Create the bootstrap admin account if it doesn't exist yet."""
    if db["user"].find_one({"email": email.lower()}):
        return
    register_user(
        db,
        RegisterRequest(email=email, password=password, first_name="Admin", last_name="User"),
        role="admin",
    )
    logger.info(f"Bootstrap admin {email} created")
