import sys
from pathlib import Path

# ensure project root is importable for tests
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from uuid import uuid4

import mongomock
import pytest
from fastapi.testclient import TestClient

PASSWORD = "Passw0rd1"


@pytest.fixture
def db():
    return mongomock.MongoClient()["safetails_test"]


@pytest.fixture(autouse=True)
def isolate_state(db):
    """Fresh in-memory database and login limiter for each test to avoid order-dependent flakiness."""
    import auth
    import main
    from database import get_db

    main.app.dependency_overrides[get_db] = lambda: db
    auth.LOGIN_ATTEMPTS.clear()

    yield

    main.app.dependency_overrides.clear()
    auth.LOGIN_ATTEMPTS.clear()


@pytest.fixture
def client():
    import main

    return TestClient(main.app)


@pytest.fixture
def make_user(db):
    """Insert a user straight into the database and return the stored document."""
    from auth import hash_password
    from database import create_document, get_by_id

    def _make(email=None, role="user", password=PASSWORD, name=None, **fields):
        email = email or f"{role}-{uuid4().hex[:8]}@safetails.org"
        doc = {
            "name": name or email.split("@")[0],
            "email": email,
            "password": hash_password(password),
            "role": role,
            "isActive": True,
            "isBlocked": False,
            "isEmailVerified": True,
        }
        doc.update(fields)
        return get_by_id(db, "user", create_document(db, "user", doc))

    return _make


@pytest.fixture
def login_as(client, make_user):
    """Create a user with ``role`` and log ``client`` in as them."""

    def _login(role="user", **fields):
        user = make_user(role=role, **fields)
        r = client.post("/api/auth/login", json={"email": user["email"], "password": PASSWORD})
        assert r.status_code == 200, r.text
        return user

    return _login
