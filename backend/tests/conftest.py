from __future__ import annotations

import os
import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

os.environ["DATABASE_URL"] = "sqlite:///./test_ophthexam.db"
os.environ["ENVIRONMENT"] = "development"
os.environ["ENABLE_DEV_AUTH"] = "true"
os.environ["SESSION_SIGNING_KEY"] = "test-session-signing-key"
os.environ["BOOTSTRAP_ADMIN_EMAILS"] = "admin@example.com"
os.environ["CORS_ALLOWED_ORIGINS"] = "http://localhost:5173"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["STORAGE_MODE"] = "local"
os.environ["LOCAL_STORAGE_DIR"] = tempfile.mkdtemp(prefix="ophthexam-test-")

from ophthexam.core.config import get_settings
get_settings.cache_clear()
from ophthexam.core.rate_limit import limiter
from ophthexam.db.base import Base
from ophthexam.db.session import engine
from ophthexam.main import app

TEST_DB_PATH = Path("test_ophthexam.db")
ADMIN_EMAIL = "admin@example.com"


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    storage = getattr(limiter, "_storage", None)
    if storage and hasattr(storage, "reset"):
        storage.reset()
    yield


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture()
def client() -> TestClient:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def login(client):
    """Dev-login and return bearer headers for the given email."""

    def _login(email: str, **extra) -> dict[str, str]:
        resp = client.post("/api/v1/auth/dev-login", json={"email": email, **extra})
        assert resp.status_code == 200, resp.text
        return {"Authorization": f"Bearer {resp.json()['access_token']}"}

    return _login


@pytest.fixture()
def approved_doctor(client, login):
    """Dev-login a doctor and have the bootstrap admin approve the profile."""

    def _approved(email: str = "doctor@example.com", **extra) -> dict[str, str]:
        headers = login(email, **extra)
        admin_headers = login(ADMIN_EMAIL, full_name="Admin")
        session = client.get("/api/v1/auth/session", headers=headers)
        assert session.status_code == 200, session.text
        profile_id = session.json()["profile"]["id"]
        resp = client.patch(
            f"/api/v1/admin/profiles/{profile_id}/status",
            json={"status": "approved"},
            headers=admin_headers,
        )
        assert resp.status_code == 200, resp.text
        return headers

    return _approved


@pytest.fixture(scope="session", autouse=True)
def cleanup_db_file():
    yield
    if TEST_DB_PATH.exists():
        TEST_DB_PATH.unlink()
