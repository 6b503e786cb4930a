"""Server-side sessions.

A session is a document in the "session" collection keyed by a random token
that travels in an HTTP-only cookie. It holds the logged-in user (if any) and
the cart. Documents expire ``SESSION_TTL_HOURS`` after their last save; a TTL
index removes them, and ``load`` ignores any it finds past expiry.
"""
import logging
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional

from config import SESSION_TTL_HOURS
from database import utcnow
from schemas import Cart

logger = logging.getLogger(__name__)


class SessionStore:
    def __init__(self, db, ttl_hours: int = SESSION_TTL_HOURS):
        self.collection = db["session"]
        self.ttl = timedelta(hours=ttl_hours)

    def create(self) -> Dict[str, Any]:
        now = utcnow()
        session = {
            "_id": secrets.token_urlsafe(32),
            "user": None,
            "cart": Cart().model_dump(),
            "created_at": now,
            "expires_at": now + self.ttl,
        }
        self.collection.insert_one(session)
        return session

    def load(self, session_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if not session_id:
            return None
        session = self.collection.find_one({"_id": session_id})
        if not session:
            return None
        if session.get("expires_at") and session["expires_at"] <= utcnow():
            self.collection.delete_one({"_id": session_id})
            return None
        return session

    def _touch(self, session_id: str, fields: Dict[str, Any]):
        fields = dict(fields)
        fields["expires_at"] = utcnow() + self.ttl
        self.collection.update_one({"_id": session_id}, {"$set": fields})

    def get_cart(self, session: Dict[str, Any]) -> Cart:
        return Cart.model_validate(session.get("cart") or {})

    def put_cart(self, session: Dict[str, Any], cart: Cart):
        data = cart.model_dump()
        session["cart"] = data
        self._touch(session["_id"], {"cart": data})

    def set_user(self, session: Dict[str, Any], user: Optional[Dict[str, Any]]):
        session["user"] = user
        self._touch(session["_id"], {"user": user})

    def destroy(self, session_id: str):
        self.collection.delete_one({"_id": session_id})
        logger.debug(f"Session {session_id[:8]} destroyed")
