"""
Pytest configuration and fixtures

Tests run against a shared in-memory SQLite database. The schema is created
fresh for every test and dropped afterwards, so nothing leaks between tests.
"""
import pytest
import sys
import os
from uuid import uuid4

# Must be set before core.config is imported anywhere.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production-use-0123456789")
os.environ["EMAIL_ENABLED"] = "false"

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi.testclient import TestClient

import models  # noqa: F401  (registers tables on Base.metadata)
from core.database import Base, SessionLocal, engine, get_db
from core.security import create_access_token, get_password_hash
from main import app
from models import PricingPlan, User


@pytest.fixture(scope="function")
def db_session():
    """Fresh schema per test; dropped on teardown."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_session):
    """TestClient whose requests share the test's session."""

    def _override_get_db():
        try:
            yield db_session
            db_session.commit()
        except Exception:
            db_session.rollback()
            raise

    app.dependency_overrides[get_db] = _override_get_db
    app.state.cache.invalidate()
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)
        app.state.cache.invalidate()


@pytest.fixture
def make_user(db_session):
    """Factory for committed users. Pass password= to make them able to log in."""

    def _make(*, email=None, role="STUDENT", password=None, is_active=True, first_name="Test", last_name="User"):
        user = User(
            email=(email or f"user_{uuid4().hex[:8]}@example.com").lower(),
            password_hash=get_password_hash(password) if password else None,
            first_name=first_name,
            last_name=last_name,
            role=role,
            is_active=is_active,
            subjects=["MATHS"],
            year_group="GCSE",
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture
def admin_user(make_user):
    return make_user(email="admin@example.com", role="ADMIN", first_name="Ada", last_name="Admin")


@pytest.fixture
def auth_headers():
    def _headers(user) -> dict:
        token = create_access_token({"sub": str(user.id), "email": user.email, "role": user.role})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def premium_plan(db_session):
    plan = PricingPlan(
        name="Premium",
        description="Live lessons, recordings and homework portal",
        tier="PREMIUM",
        price_monthly=4999,
        price_yearly=49999,
        features=["Live sessions", "Recordings", "Homework portal"],
        subjects=["MATHS", "ENGLISH"],
        stripe_price_id_monthly="price_premium_monthly",
        stripe_price_id_yearly="price_premium_yearly",
        is_popular=True,
        sort_order=2,
    )
    db_session.add(plan)
    db_session.commit()
    return plan


@pytest.fixture
def basic_plan(db_session):
    plan = PricingPlan(
        name="Basic",
        tier="BASIC",
        price_monthly=2999,
        features=["Live sessions"],
        subjects=["MATHS"],
        stripe_price_id_monthly="price_basic_monthly",
        sort_order=1,
    )
    db_session.add(plan)
    db_session.commit()
    return plan
