"""Custom exceptions for the shoe store backend."""

from typing import Dict, Optional


class StoreError(Exception):
    """Base exception for all store errors."""

    pass


class NotFoundError(StoreError):
    """Raised when a product, order, user or cart line doesn't exist."""

    def __init__(self, what: str, ident: Optional[str] = None):
        self.what = what
        self.ident = ident
        msg = f"{what} not found"
        if ident:
            msg = f"{what} not found: {ident}"
        super().__init__(msg)


class OutOfStockError(StoreError):
    """Raised when a cart line asks for more units than the size carries."""

    def __init__(self, available: Optional[int] = None, message: Optional[str] = None):
        self.available = available
        if message is None:
            if available is None:
                message = "Selected size is not available in requested quantity"
            else:
                message = f"Only {available} items available in this size"
        super().__init__(message)


class InsufficientStockError(StoreError):
    """Raised at checkout when a line can no longer be fulfilled."""

    def __init__(self, name: str, size: float):
        self.name = name
        self.size = size
        super().__init__(
            f"{name} in size {size:g} is no longer available in requested quantity"
        )


class InvalidTransitionError(StoreError):
    """Raised when an order can't move from its current status."""

    def __init__(self, status: str, message: Optional[str] = None):
        self.status = status
        super().__init__(message or f"Order cannot be changed from status '{status}'")


class ValidationError(StoreError):
    """Raised on malformed input (ids, addresses, payment or shipping fields)."""

    pass


class EmptyCartError(ValidationError):
    def __init__(self):
        super().__init__("Cart is empty")


class DuplicateError(StoreError):
    """Raised when a unique value (email, slug, review) already exists."""

    pass


class UnauthorizedError(StoreError):
    def __init__(self, message: str = "Please login to continue"):
        super().__init__(message)


class ForbiddenError(StoreError):
    def __init__(self, message: str = "Access denied. Admin only."):
        super().__init__(message)


ERROR_STATUS_CODES: Dict[type, int] = {
    NotFoundError: 404,
    OutOfStockError: 400,
    InsufficientStockError: 400,
    InvalidTransitionError: 400,
    ValidationError: 400,
    EmptyCartError: 400,
    DuplicateError: 400,
    UnauthorizedError: 401,
    ForbiddenError: 403,
}
