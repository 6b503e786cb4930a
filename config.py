import os

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "shoestore")

PORT = int(os.getenv("PORT", 8000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
ALLOWED_ORIGINS = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",") if o.strip()]

SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "sid")
SESSION_TTL_HOURS = int(os.getenv("SESSION_TTL_HOURS", 24))
SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "false").lower() in ("1", "true", "yes")

# Pricing
TAX_RATE = os.getenv("TAX_RATE", "0.08")
FREE_SHIPPING_THRESHOLD = os.getenv("FREE_SHIPPING_THRESHOLD", "100")
STANDARD_SHIPPING = os.getenv("STANDARD_SHIPPING", "9.99")
EXPRESS_SHIPPING = os.getenv("EXPRESS_SHIPPING", "19.99")
OVERNIGHT_SHIPPING = os.getenv("OVERNIGHT_SHIPPING", "29.99")

LOW_STOCK_THRESHOLD = int(os.getenv("LOW_STOCK_THRESHOLD", 10))

# compare_and_swap | read_modify_write
STOCK_DECREMENT_MODE = os.getenv("STOCK_DECREMENT_MODE", "compare_and_swap")

ADMIN_EMAIL = os.getenv("ADMIN_EMAIL")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")
