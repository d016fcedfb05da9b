import os
import tempfile
import uuid
from datetime import timedelta

import pytest
from prometheus_client import REGISTRY

# Set test environment variables
os.environ["FLASK_ENV"] = "testing"
os.environ["TESTING"] = "true"
os.environ["JOBCREDITS_LOG_JSON"] = "false"


@pytest.fixture(autouse=True)
def clear_prometheus_registry():
    """Clear the default prometheus registry before each test."""
    collectors = list(REGISTRY._collector_to_names.keys())
    for collector in collectors:
        REGISTRY.unregister(collector)
    yield


_BASE_CONFIG = {
    "TESTING": True,
    "JWT_SECRET_KEY": "test-jwt-secret-key-with-enough-bytes",
    "STRIPE_SECRET_KEY": "sk_test_dummy_key_for_testing",
    "STRIPE_WEBHOOK_SECRET": "whsec_test_secret",
}


def _sqlite_app():
    from src.factory import create_app
    from src.database import db
    db_fd, db_path = tempfile.mkstemp(suffix=".db")
    app = create_app({
        **_BASE_CONFIG,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        # Worker threads in the concurrency tests open their own connections
        "SQLALCHEMY_ENGINE_OPTIONS": {
            "connect_args": {"check_same_thread": False, "timeout": 30},
        },
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
    os.close(db_fd)
    os.unlink(db_path)


def _postgres_app():
    """Row locking only behaves like production on Postgres; set TEST_DATABASE_URL."""
    url = os.environ.get("TEST_DATABASE_URL", "").strip()
    if not url:
        pytest.skip("TEST_DATABASE_URL not set")
    from src.config import database_url
    from src.factory import create_app
    from src.database import db
    app = create_app({
        **_BASE_CONFIG,
        "SQLALCHEMY_DATABASE_URI": database_url(url),
    })
    with app.app_context():
        db.drop_all()
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def app(request):
    """
    Create and configure a new app instance for each test.

    SQLite by default; concurrency tests parametrize this fixture indirectly
    with ``["sqlite", "postgres"]`` to also run against Postgres.
    """
    backend = getattr(request, "param", "sqlite")
    if backend == "postgres":
        yield from _postgres_app()
    else:
        yield from _sqlite_app()


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def auth_headers(app):
    """Build bearer headers for a user id and role."""
    from flask_jwt_extended import create_access_token

    def _headers(user_id="employer-1", role="employer"):
        token = create_access_token(identity=user_id, additional_claims={"role": role})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def make_purchase(app):
    """Insert a purchase row directly, bypassing checkout."""
    from src.database import db
    from src.models import Purchase
    from src.utils.clock import utcnow

    def _make(user_id="employer-1", status="pending", tier="starter",
              job_post=3, featured_post=0, social_graphic=0, repost=0,
              total_amount_cents=8900, session_id=None, expires_at=None):
        now = utcnow()
        purchase = Purchase(
            user_id=user_id,
            provider_session_id=session_id or f"cs_test_{uuid.uuid4().hex}",
            tier=tier,
            addons=[],
            total_amount_cents=total_amount_cents,
            status=status,
            created_at=now,
            completed_at=now if status == "completed" else None,
            expires_at=expires_at or now + timedelta(days=90),
            job_post_credits=job_post,
            featured_post_credits=featured_post,
            social_graphic_credits=social_graphic,
            repost_credits=repost,
        )
        db.session.add(purchase)
        db.session.commit()
        return purchase

    return _make


@pytest.fixture
def make_credits(app, make_purchase):
    """Insert unused credits for a user; returns their ids in insertion order."""
    from src.database import db
    from src.models import Credit
    from src.utils.clock import utcnow

    def _make(user_id="employer-1", credit_type="job_post", count=1,
              expires_in=timedelta(days=30), created_offset=timedelta(0),
              purchase=None):
        purchase = purchase or make_purchase(user_id=user_id, status="completed")
        now = utcnow()
        credits = [
            Credit(
                purchase_id=purchase.id,
                user_id=user_id,
                type=credit_type,
                is_used=False,
                expires_at=None if expires_in is None else now + expires_in,
                created_at=now + created_offset,
            )
            for _ in range(count)
        ]
        db.session.add_all(credits)
        db.session.commit()
        return [c.id for c in credits]

    return _make
