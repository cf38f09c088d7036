import os
import tempfile
import uuid
from pathlib import Path

# Point the app at a throwaway SQLite file before anything imports settings
_db_dir = tempfile.mkdtemp(prefix="portal_tests_")
os.environ["DATABASE_URL"] = f"sqlite:///{Path(_db_dir) / 'portal.db'}"
os.environ["SECRET_KEY"] = "test-secret-key-with-enough-length-for-hs256"
os.environ["LIVE_BACKPLANE"] = "local"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
from fastapi.testclient import TestClient

_PASSWORD = "Portal123!"


@pytest.fixture(scope="session")
def client():
    """Create test client; entering it runs startup (tables + live gateway)"""
    from app.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture(scope="session")
def password_hash():
    from app.auth.security import hash_password
    return hash_password(_PASSWORD)


@pytest.fixture
def db_session(client):
    from app.core.database import SessionLocal

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def make_user(client, password_hash):
    """Insert a user directly and hand back (user, auth headers, token)"""
    from app.auth.models import User
    from app.auth.security import create_access_token
    from app.core.database import SessionLocal

    def _make(role: str = "student", first_name: str = "Test", last_name: str | None = None):
        db = SessionLocal()
        try:
            user = User(
                email=f"{role}_{uuid.uuid4().hex[:10]}@school.example.com",
                hashed_password=password_hash,
                role=role,
                first_name=first_name,
                last_name=last_name or role.capitalize(),
            )
            db.add(user)
            db.commit()
            db.refresh(user)
            db.expunge(user)
        finally:
            db.close()
        token = create_access_token(sub=user.id)
        return user, {"Authorization": f"Bearer {token}"}, token

    return _make


@pytest.fixture
def gateway(client):
    from app.main import app
    return app.state.gateway


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Clear SlowAPI state between tests."""
    from app.core.limiter import limiter
    yield
    try:
        limiter.reset()
    except Exception:
        pass
