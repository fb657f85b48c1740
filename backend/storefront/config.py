# backend/storefront/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/storefront.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///storefront.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # Public storefront URL, used to build links in outgoing emails
    STORE_URL = os.environ.get("STORE_URL", "http://localhost:3000")

    # Razorpay
    RAZORPAY_KEY_ID = os.environ.get("RAZORPAY_KEY_ID", "")
    RAZORPAY_KEY_SECRET = os.environ.get("RAZORPAY_KEY_SECRET", "")
    RAZORPAY_API_BASE = os.environ.get("RAZORPAY_API_BASE", "https://api.razorpay.com/v1")
    PAYMENT_CURRENCY = os.environ.get("PAYMENT_CURRENCY", "INR")
    # Cross-check the captured amount/currency with the gateway before confirming
    PAYMENT_VERIFY_AMOUNT = _env_bool("PAYMENT_VERIFY_AMOUNT", True)
    PAYMENT_TIMEOUT_SECONDS = float(os.environ.get("PAYMENT_TIMEOUT_SECONDS", "10"))

    # Resend
    RESEND_API_KEY = os.environ.get("RESEND_API_KEY", "")
    RESEND_API_BASE = os.environ.get("RESEND_API_BASE", "https://api.resend.com")
    MAIL_FROM = os.environ.get("FROM_EMAIL", "onboarding@resend.dev")
    MAIL_TIMEOUT_SECONDS = float(os.environ.get("MAIL_TIMEOUT_SECONDS", "10"))

    # Fire-and-forget notifications run on a small thread pool
    NOTIFICATIONS_ASYNC = _env_bool("NOTIFICATIONS_ASYNC", True)
    NOTIFICATION_WORKERS = int(os.environ.get("NOTIFICATION_WORKERS", "4"))

    # Abandoned cart recovery
    CRON_SECRET = os.environ.get("CRON_SECRET", "")
    ABANDONED_CART_HOURS = int(os.environ.get("ABANDONED_CART_HOURS", "1"))
    ABANDONED_CART_BATCH_SIZE = int(os.environ.get("ABANDONED_CART_BATCH_SIZE", "10"))
    ABANDONED_CART_TTL_DAYS = int(os.environ.get("ABANDONED_CART_TTL_DAYS", "7"))


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    STORE_URL = "http://shop.test"
    RAZORPAY_KEY_ID = "rzp_test_key"
    RAZORPAY_KEY_SECRET = "rzp_test_secret"
    RAZORPAY_API_BASE = "https://razorpay.test/v1"
    RESEND_API_KEY = "re_test_key"
    RESEND_API_BASE = "https://resend.test"
    MAIL_FROM = "orders@shop.test"
    NOTIFICATIONS_ASYNC = False
    BCRYPT_ROUNDS = 4
    CRON_SECRET = "cron-test-secret"
