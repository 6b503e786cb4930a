"""
Database Schemas

Pydantic models for the MongoDB collections of the shoe store.
Each persisted model maps to a collection named after it in lowercase:
- User -> "user" collection
- Product -> "product" collection
- Order -> "order" collection

Documents are stored with snake_case keys (``model_dump()``); the JSON API
speaks camelCase (``model_dump(by_alias=True)``, which FastAPI applies when
encoding responses). Request bodies accept either spelling.
"""

from datetime import datetime
from typing import Optional, List, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, computed_field
from pydantic.alias_generators import to_camel

ORDER_STATUSES = ("pending", "confirmed", "processing", "shipped", "delivered", "cancelled", "refunded")
CANCELLABLE_STATUSES = ("pending", "confirmed")
TERMINAL_STATUSES = ("delivered", "cancelled", "refunded")
PAYMENT_METHODS = ("card", "paypal", "cod")
SHIPPING_METHODS = ("standard", "express", "overnight")

BRANDS = ("Nike", "Adidas", "Puma", "Reebok", "New Balance", "Converse", "Vans", "Jordan", "Under Armour", "Other")
CATEGORIES = ("Running", "Basketball", "Casual", "Formal", "Sneakers", "Boots", "Sandals", "Athletic")
GENDERS = ("Men", "Women", "Unisex", "Kids")

OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled", "refunded"]
PaymentMethod = Literal["card", "paypal", "cod"]
ShippingMethod = Literal["standard", "express", "overnight"]


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -----------------------------
# Users
# -----------------------------
class Address(ApiModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: str = "USA"
    phone: Optional[str] = None


class User(ApiModel):
    """
    Users collection schema
    Collection name: "user"

    The stored document also carries ``password_hash``; it is never part of
    this model so it can't leak into a response.
    """
    id: Optional[str] = None
    email: EmailStr
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    phone: Optional[str] = None
    address: Address = Field(default_factory=Address)
    role: Literal["customer", "admin"] = "customer"
    is_active: bool = True
    wishlist: List[str] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @computed_field
    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


# -----------------------------
# Catalog
# -----------------------------
class SizeStock(ApiModel):
    """A stock bucket: one size and the units left in it."""
    size: float
    stock: int = Field(0, ge=0)


class Color(ApiModel):
    name: str
    hex_code: Optional[str] = None


class ProductImage(ApiModel):
    url: str
    alt: Optional[str] = None
    is_primary: bool = False


class Rating(ApiModel):
    average: float = Field(0, ge=0, le=5)
    count: int = 0


class Review(ApiModel):
    user: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None
    created_at: Optional[datetime] = None


class Product(ApiModel):
    """
    Products collection schema
    Collection name: "product"
    """
    id: Optional[str] = None
    name: str = Field(..., min_length=1)
    slug: Optional[str] = None
    description: str
    short_description: Optional[str] = Field(None, max_length=200)
    brand: Literal[BRANDS]
    category: Literal[CATEGORIES]
    gender: Literal[GENDERS] = "Unisex"
    price: float = Field(..., ge=0)
    sale_price: Optional[float] = Field(None, ge=0)
    sizes: List[SizeStock] = []
    colors: List[Color] = []
    images: List[ProductImage] = []
    features: List[str] = []
    materials: List[str] = []
    rating: Rating = Field(default_factory=Rating)
    reviews: List[Review] = []
    tags: List[str] = []
    is_active: bool = True
    is_featured: bool = False
    total_stock: int = 0
    sold_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @computed_field
    @property
    def effective_price(self) -> float:
        if self.sale_price is not None and self.sale_price < self.price:
            return self.sale_price
        return self.price

    @computed_field
    @property
    def is_on_sale(self) -> bool:
        return self.sale_price is not None and self.sale_price < self.price

    @computed_field
    @property
    def primary_image(self) -> str:
        for img in self.images:
            if img.is_primary:
                return img.url
        return self.images[0].url if self.images else "/images/placeholder.jpg"


# -----------------------------
# Cart
# -----------------------------
class CartItem(ApiModel):
    product_id: str
    name: str
    brand: Optional[str] = None
    price: float = Field(..., ge=0)
    original_price: Optional[float] = None
    size: float
    color: str = "Default"
    quantity: int = Field(..., ge=1)
    image: Optional[str] = None
    slug: Optional[str] = None
    max_stock: int = 0


class Cart(ApiModel):
    items: List[CartItem] = []
    subtotal: float = 0
    shipping: float = 0
    tax: float = 0
    total: float = 0


# -----------------------------
# Orders
# -----------------------------
class OrderItem(ApiModel):
    product_id: str
    name: str
    price: float
    size: float
    color: Optional[str] = None
    quantity: int = Field(..., ge=1)
    image: Optional[str] = None


class Payment(ApiModel):
    method: PaymentMethod = "card"
    status: Literal["pending", "completed", "failed", "refunded"] = "pending"
    transaction_id: Optional[str] = None


class Shipping(ApiModel):
    method: ShippingMethod = "standard"
    cost: float = 0


class StatusEntry(ApiModel):
    status: OrderStatus
    timestamp: datetime
    note: Optional[str] = None


class Order(ApiModel):
    """
    Orders collection schema
    Collection name: "order"
    """
    id: Optional[str] = None
    order_number: str
    user_id: str
    items: List[OrderItem]
    shipping_address: Address
    billing_address: Address
    payment: Payment
    subtotal: float
    shipping: Shipping
    tax: float = 0
    total: float
    status: OrderStatus = "pending"
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    status_history: List[StatusEntry] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# -----------------------------
# Request payloads
# -----------------------------
class AddToCartRequest(ApiModel):
    product_id: str
    size: float
    color: Optional[str] = None
    quantity: int = 1


class UpdateCartRequest(ApiModel):
    product_id: str
    size: float
    quantity: int


class RemoveFromCartRequest(ApiModel):
    product_id: str
    size: float


class CheckoutRequest(ApiModel):
    shipping_address: Address
    billing_address: Optional[Address] = None
    payment_method: PaymentMethod = "card"
    shipping_method: ShippingMethod = "standard"
    notes: Optional[str] = None


class StatusUpdateRequest(ApiModel):
    status: str
    note: Optional[str] = None
    tracking_number: Optional[str] = None


class RegisterRequest(ApiModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    phone: Optional[str] = None


class LoginRequest(ApiModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ProfileUpdateRequest(ApiModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[Address] = None


class ReviewRequest(ApiModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class WishlistRequest(ApiModel):
    product_id: str


class ProductIn(ApiModel):
    name: str = Field(..., min_length=1)
    description: str
    short_description: Optional[str] = Field(None, max_length=200)
    brand: Literal[BRANDS]
    category: Literal[CATEGORIES]
    gender: Literal[GENDERS] = "Unisex"
    price: float = Field(..., ge=0)
    sale_price: Optional[float] = Field(None, ge=0)
    sizes: List[SizeStock] = []
    colors: List[Color] = []
    images: List[ProductImage] = []
    features: List[str] = []
    materials: List[str] = []
    tags: List[str] = []
    is_active: bool = True
    is_featured: bool = False


class InventoryUpdateRequest(ApiModel):
    sizes: List[SizeStock]
