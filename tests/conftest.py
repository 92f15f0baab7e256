"""Pytest configuration and fixtures"""

import os
from datetime import datetime, timedelta, timezone

# Settings are read at import time
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-not-for-production")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SEED_DEFAULT_ROLES"] = "false"
os.environ["NOTIFIER_URL"] = ""
os.environ["RATE_LIMIT_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from realty_access.database.database import Base, get_db
from realty_access.database.models import (
    Membership,
    MembershipStatus,
    Role,
    Tenant,
    TenantStatus,
    User,
    UserRole,
    utcnow,
)
from realty_access.main import app
from realty_access.security.jwt import create_access_token
from realty_access.security.password import hash_password
from realty_access.seed import seed_rbac
from realty_access.services.auth_service import AuthService
from realty_access.services.permission_cache import InMemoryPermissionCache

TEST_PASSWORD = "Str0ng!Passw0rd"

# In-memory SQLite shared across connections
test_engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


class FakeClock:
    """Controllable clock for cache TTL tests"""

    def __init__(self):
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture(scope="function")
def db():
    """Fresh database session per test."""
    Base.metadata.create_all(bind=test_engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return InMemoryPermissionCache(ttl_seconds=300, clock=clock)


@pytest.fixture
def seeded(db):
    """Default roles and permissions, keyed by role key."""
    seed_rbac(db)
    return {role.key: role for role in db.query(Role).all()}


@pytest.fixture
def client(db, cache):
    """Test client sharing the test session and cache."""
    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    previous_cache = app.state.permission_cache
    app.state.permission_cache = cache
    with TestClient(app) as test_client:
        yield test_client
    app.state.permission_cache = previous_cache
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    """Factory: create a user with the shared test password."""
    def _make_user(email: str, super_admin: bool = False, **kwargs) -> User:
        user = User(
            email=email,
            password_hash=hash_password(TEST_PASSWORD),
            global_role="SUPER_ADMIN" if super_admin else "USER",
            **kwargs,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_tenant(db):
    def _make_tenant(slug: str, status: str = TenantStatus.ACTIVE.value) -> Tenant:
        tenant = Tenant(name=slug.replace("-", " ").title(), slug=slug, status=status)
        db.add(tenant)
        db.commit()
        db.refresh(tenant)
        return tenant

    return _make_tenant


@pytest.fixture
def add_member(db):
    """Factory: give a user a membership (ACTIVE by default) and tenant roles."""
    def _add_member(user: User, tenant: Tenant, *roles: Role, status: str = MembershipStatus.ACTIVE.value) -> Membership:
        membership = Membership(
            user_id=user.id,
            tenant_id=tenant.id,
            status=status,
            accepted_at=utcnow() if status != MembershipStatus.PENDING_INVITE.value else None,
        )
        db.add(membership)
        for role in roles:
            db.add(UserRole(user_id=user.id, role_id=role.id, tenant_id=tenant.id))
        db.commit()
        db.refresh(membership)
        return membership

    return _add_member


@pytest.fixture
def login(db):
    """Factory: open a session for a user and return its token pair."""
    def _login(user: User) -> dict:
        tokens = AuthService.issue_tokens(db, user)
        db.commit()
        return tokens

    return _login


@pytest.fixture
def auth_headers(login):
    def _auth_headers(user: User) -> dict:
        return {"Authorization": f"Bearer {login(user)['access_token']}"}

    return _auth_headers


@pytest.fixture
def unbound_access_token():
    """Access token whose session never existed."""
    def _token(user: User) -> str:
        return create_access_token({"sub": user.id, "email": user.email, "sid": "no-such-session"})

    return _token
