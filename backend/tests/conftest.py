"""Pytest configuration and shared fixtures."""

import os
import tempfile

# Settings are read once at import time.
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_supportchat.db")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="supportchat-uploads-"))

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from supportchat.main import app
from supportchat.database import Base, get_db, enable_sqlite_foreign_keys
from supportchat.models import Tenant, User
from supportchat.models.user import ROLE_ADMIN, ROLE_AGENT, ROLE_MEMBER
from supportchat.utils.security import Identity, create_access_token

SQLALCHEMY_DATABASE_URL = os.environ["DATABASE_URL"]
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
event.listen(engine, "connect", enable_sqlite_foreign_keys)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")


@pytest.fixture(autouse=True)
def setup_and_teardown():
    """Fresh schema for every test."""
    app.dependency_overrides[get_db] = override_get_db

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    yield

    Base.metadata.drop_all(bind=engine)
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def session_factory():
    """Factory for sessions owned by a test, e.g. one per thread."""
    return TestingSessionLocal


@pytest.fixture
def db():
    """Session for service-level tests and direct assertions."""
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


def auth_headers(user: User) -> dict:
    token = create_access_token(user.id, user.tenant_id, user.role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def directory(db):
    """Two companies with their users.

    acme: alice (admin), bob (agent), carol, dave (members)
    globex: erin (admin), frank (member)
    """
    acme = Tenant(name="Acme")
    globex = Tenant(name="Globex")
    db.add_all([acme, globex])
    db.flush()

    people = {
        "alice": User(tenant_id=acme.id, name="Alice", email="alice@acme.test", role=ROLE_ADMIN),
        "bob": User(tenant_id=acme.id, name="Bob", email="bob@acme.test", role=ROLE_AGENT),
        "carol": User(tenant_id=acme.id, name="Carol", email="carol@acme.test", role=ROLE_MEMBER),
        "dave": User(tenant_id=acme.id, name="Dave", email="dave@acme.test", role=ROLE_MEMBER),
        "erin": User(tenant_id=globex.id, name="Erin", email="erin@globex.test", role=ROLE_ADMIN),
        "frank": User(tenant_id=globex.id, name="Frank", email="frank@globex.test", role=ROLE_MEMBER),
    }
    db.add_all(people.values())
    db.commit()

    ns = SimpleNamespace(acme_id=acme.id, globex_id=globex.id, headers={}, identity={})
    for key, user in people.items():
        setattr(ns, key, user.id)
        ns.headers[key] = auth_headers(user)
        ns.identity[key] = Identity(user_id=user.id, tenant_id=user.tenant_id, role=user.role)
    return ns
