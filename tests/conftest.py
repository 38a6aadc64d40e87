"""
Pytest configuration and shared fixtures.

Environment variables must be in place before any partsmatch import,
because settings and the database engine are created at import time.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_partsmatch.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("NOTIFICATION_SECRET", "test-notification-secret")

import pytest

# Clear settings cache before any app imports to ensure test env vars are used
from partsmatch.config import get_settings
get_settings.cache_clear()

from fastapi.testclient import TestClient

from partsmatch.main import app
from partsmatch.storage import Base, engine


@pytest.fixture(scope="function")
def client():
    """Create test client with fresh database for each test."""
    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    Base.metadata.drop_all(bind=engine)


def signup(client, email: str, full_name: str = None, trade_type: str = None) -> dict:
    """Create an account and return its session plus ready-made auth headers."""
    response = client.post(
        "/auth/signup",
        json={
            "email": email,
            "password": "s3cret-password",
            "full_name": full_name,
            "trade_type": trade_type,
        },
    )
    assert response.status_code == 201
    session = response.json()
    session["headers"] = {"Authorization": f"Bearer {session['access_token']}"}
    return session


@pytest.fixture
def make_user(client):
    """Factory fixture: make_user(email, full_name=None, trade_type=None)."""
    def _make(email: str, full_name: str = None, trade_type: str = None) -> dict:
        return signup(client, email, full_name, trade_type)
    return _make


@pytest.fixture
def supplier(client) -> dict:
    return signup(client, "supplier@example.com", "Sam Supplier", "electrician")


@pytest.fixture
def requester(client) -> dict:
    return signup(client, "requester@example.com", "Rae Requester", "plumber")


@pytest.fixture
def outsider(client) -> dict:
    return signup(client, "outsider@example.com", "Olly Outsider", "roofer")


@pytest.fixture
def part(client, supplier) -> dict:
    """A part listed by the supplier."""
    response = client.post(
        "/parts",
        json={
            "part_name": "Square D 200A breaker panel",
            "category": "electrical",
            "condition": "used",
            "price": 150,
            "location": "Austin, TX",
        },
        headers=supplier["headers"],
    )
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def match(client, part, requester) -> dict:
    """Match opened by the requester on the supplier's part."""
    response = client.post(
        "/matches",
        json={"listing_type": "part", "listing_id": part["id"]},
        headers=requester["headers"],
    )
    assert response.status_code == 201
    return response.json()
