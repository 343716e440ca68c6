"""
Pytest configuration and shared fixtures for the TribeLab billing backend.
"""
import sys
from pathlib import Path

# Ensure backend package is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

# Patch PostgreSQL UUID type BEFORE any imports
from sqlalchemy.dialects import postgresql
from sqlalchemy import JSON, TypeDecorator, CHAR
import uuid as uuid_module


class GUID(TypeDecorator):
    """Platform-independent GUID type. Uses PostgreSQL's UUID type, otherwise uses CHAR(36)."""
    impl = CHAR
    cache_ok = True

    def __init__(self, as_uuid=True):
        """Accept as_uuid parameter for compatibility with PostgreSQL UUID."""
        self.as_uuid = as_uuid
        super().__init__()

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(_original_uuid(as_uuid=self.as_uuid))
        else:
            return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        elif isinstance(value, uuid_module.UUID):
            return value
        else:
            return uuid_module.UUID(value)


# Monkey patch BEFORE models are imported
_original_uuid = postgresql.UUID
postgresql.UUID = GUID
_original_jsonb = postgresql.JSONB


def _to_jsonable(value):  # noqa: ANN001
    if value is None:
        return None
    if isinstance(value, uuid_module.UUID):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _to_jsonable(v) for k, v in value.items()}
    return value


class JSONB(TypeDecorator):
    """SQLite-friendly stand-in for PostgreSQL JSONB."""

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(_original_jsonb())
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value, dialect):
        return _to_jsonable(value)


postgresql.JSONB = JSONB

from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


@pytest.fixture(scope="function")
def db():
    """
    Create a fresh database for each test.

    Uses an in-memory SQLite database for fast, isolated testing.
    UUID and JSONB types have been patched at module level to work with SQLite.
    """
    from tribelab.db.base import Base
    import tribelab.models  # noqa: F401  register tables

    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def now():
    """Fixed evaluation time used by billing tests."""
    return datetime(2025, 1, 1, 12, 0, 0)


@pytest.fixture
def admin_user(db):
    """Community admin."""
    from tribelab.models import User

    user = User(
        email="admin@tribelab.test",
        full_name="Community Admin",
        oauth_provider="google",
        oauth_provider_id="admin_oauth_id",
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def other_user(db):
    """Authenticated user who does not administer the community."""
    from tribelab.models import User

    user = User(
        email="member@tribelab.test",
        full_name="Community Member",
        oauth_provider="google",
        oauth_provider_id="member_oauth_id",
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def community(db, admin_user):
    """Unpaid community with no trial history."""
    from tribelab.models import Community

    community = Community(
        slug="makers",
        name="Makers Guild",
        admin_id=admin_user.id,
        payment_status="unpaid",
    )
    db.add(community)
    db.commit()
    db.refresh(community)
    return community


@pytest.fixture
def make_subscription(db, admin_user, community, now):
    """Factory for subscription records attached to the test community by default."""
    from tribelab.models import CommunitySubscription

    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        fields = {
            "razorpay_subscription_id": f"sub_test_{counter['n']}",
            "razorpay_plan_id": "plan_test",
            "admin_id": admin_user.id,
            "community_id": community.id,
            "status": "active",
            "current_start": now - timedelta(days=10),
            "current_end": now + timedelta(days=20),
            "webhook_events": [],
            "notifications_sent": [],
            "trial_reminders": [],
        }
        fields.update(overrides)
        record = CommunitySubscription(**fields)
        db.add(record)
        db.commit()
        db.refresh(record)
        return record

    return _make
