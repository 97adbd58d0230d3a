import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./flowtrade.db")
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "10"))
DB_POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "300"))

# Firebase Configuration (business-side authentication)
FIREBASE_PROJECT_ID = os.getenv("FIREBASE_PROJECT_ID")

# Base URL used to build shareable portal links
PORTAL_BASE_URL = os.getenv("PORTAL_BASE_URL", "https://flowtrade.com.au").rstrip("/")

# Portal token lifetimes in days, per resource type
PORTAL_QUOTE_TOKEN_DAYS = int(os.getenv("PORTAL_QUOTE_TOKEN_DAYS", "7"))
PORTAL_INVOICE_TOKEN_DAYS = int(os.getenv("PORTAL_INVOICE_TOKEN_DAYS", "30"))

# Rate limiting for the unauthenticated portal surface
# "memory" (process-local) or "redis" (shared across instances)
RATE_LIMIT_BACKEND = os.getenv("RATE_LIMIT_BACKEND", "memory").lower()
PORTAL_RATE_LIMIT = int(os.getenv("PORTAL_RATE_LIMIT", "10"))
PORTAL_RATE_WINDOW_SECONDS = int(os.getenv("PORTAL_RATE_WINDOW_SECONDS", "60"))

# Dodo Payments Configuration
DODO_PAYMENTS_API_KEY = os.getenv("DODO_PAYMENTS_API_KEY")
# "test_mode" or "live_mode" - default to test for safety
DODO_PAYMENTS_ENVIRONMENT = os.getenv("DODO_PAYMENTS_ENVIRONMENT", "test_mode")
# Adhoc "pay what you want" product used for invoice payments
DODO_ADHOC_PRODUCT_ID = os.getenv("DODO_ADHOC_PRODUCT_ID")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "AUD")

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "FlowTrade <onboarding@resend.dev>")
EMAIL_REPLY_TO = os.getenv("EMAIL_REPLY_TO", "hello@flowtechdigital.com.au")

# Deployment
ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()
SECURITY_HEADERS_ENABLED = os.getenv("SECURITY_HEADERS_ENABLED", "true").lower() == "true"
ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS",
    "https://flowtrade.com.au,https://www.flowtrade.com.au,http://localhost:5173,http://localhost:3000",
).split(",")
