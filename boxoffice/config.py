import os


def _flag(name: str, default: str = "0") -> bool:
    return os.environ.get(name, default).strip().lower() in (
        "1", "true", "yes", "on"
    )


# ----------------------------
# Database
# ----------------------------
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./boxoffice.db")

# ----------------------------
# Payments
# ----------------------------
PAYMENT_PROVIDER = os.environ.get("PAYMENT_PROVIDER", "mock").lower()
STRIPE_API_KEY = os.environ.get("STRIPE_API_KEY", "")
STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
MOCK_SECRET = os.environ.get("MOCK_SECRET", "supersecret")
MOCK_WEBHOOK_URL = os.environ.get(
    "MOCK_WEBHOOK_URL",
    "http://localhost:8000/api/webhook/payments"
)
FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:5173")

# price schedule used when a checkout is not tied to a performance row
CURRENCY = os.environ.get("CURRENCY", "jpy")
GENERAL_PRICE = int(os.environ.get("GENERAL_PRICE", "4500"))
RESERVED_PRICE = int(os.environ.get("RESERVED_PRICE", "5500"))
MAX_TICKETS_PER_ORDER = int(os.environ.get("MAX_TICKETS_PER_ORDER", "10"))

# ----------------------------
# Webhook idempotency
# ----------------------------
EVENTS_BACKEND = os.environ.get("EVENTS_BACKEND", "sql").lower()
REDIS_URL = os.environ.get("REDIS_URL", "redis://127.0.0.1:6379")
WEBHOOK_EVENT_TTL_SECONDS = int(
    os.environ.get("WEBHOOK_EVENT_TTL_SECONDS", str(7 * 24 * 3600))
)

# ----------------------------
# Admin
# ----------------------------
SESSION_SECRET = os.environ.get("SESSION_SECRET", "dev-secret-change-me")
ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL", "admin@example.com")
ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "admin123")
SEED_DEMO_DATA = _flag("SEED_DEMO_DATA")

# ----------------------------
# Mail
# ----------------------------
MAIL_HOST = os.environ.get("MAIL_HOST", "")
MAIL_PORT = int(os.environ.get("MAIL_PORT", "587"))
MAIL_USERNAME = os.environ.get("MAIL_USERNAME", "")
MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD", "")
MAIL_FROM = os.environ.get("MAIL_FROM", "")
MAIL_FROM_NAME = os.environ.get("MAIL_FROM_NAME", "easel")
MAIL_STARTTLS = _flag("MAIL_STARTTLS", "1")

# ----------------------------
# Logging
# ----------------------------
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_JSON = _flag("LOG_JSON")
