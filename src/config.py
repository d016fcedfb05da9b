import os
from typing import Optional


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


def database_url(url: Optional[str] = None) -> str:
    """DATABASE_URL (or ``url``) pinned to the psycopg 3 driver, or a local SQLite file."""
    url = (url if url is not None else os.getenv("DATABASE_URL", "")).strip()
    if not url:
        instance_dir = os.path.join(os.path.dirname(os.path.dirname(__file__)), "instance")
        os.makedirs(instance_dir, exist_ok=True)
        return f"sqlite:///{os.path.join(instance_dir, 'jobcredits.db')}"
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+psycopg://" + url[len(prefix):]
    return url


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Bearer tokens are issued by the job board's auth service; we only verify them
    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "dev-jwt-secret-key")
    JWT_ALGORITHM = "HS256"

    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:3000").split(",")
        if origin.strip()
    ]

    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "").strip()
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "").strip()
    STRIPE_TIMEOUT_SECONDS = _int_env("STRIPE_TIMEOUT_SECONDS", 10)
    STRIPE_MAX_NETWORK_RETRIES = _int_env("STRIPE_MAX_NETWORK_RETRIES", 2)

    CHECKOUT_SUCCESS_URL = os.getenv(
        "CHECKOUT_SUCCESS_URL",
        "http://localhost:3000/employers/dashboard?purchase_success=true"
        "&session_id={CHECKOUT_SESSION_ID}",
    )
    CHECKOUT_CANCEL_URL = os.getenv(
        "CHECKOUT_CANCEL_URL",
        "http://localhost:3000/employers/dashboard?purchase_cancelled=true",
    )

    CREDIT_EXPIRY_DAYS = _int_env("CREDIT_EXPIRY_DAYS", 90)
    CREDIT_EXPIRING_SOON_DAYS = _int_env("CREDIT_EXPIRING_SOON_DAYS", 7)
    CREDIT_CLAIM_BATCH_SIZE = _int_env("CREDIT_CLAIM_BATCH_SIZE", 5)

    DB_AUTOCREATE = os.getenv("JOBCREDITS_DB_AUTOCREATE", "false").lower() == "true"
    DB_MIGRATE_ON_START = os.getenv("JOBCREDITS_DB_MIGRATE_ON_START", "true").lower() == "true"
