"""Shared test fixtures and configuration for backend tests."""
import pytest
from fastapi.testclient import TestClient

from parley.config import AppConfig, AuthSettings, DatabaseSettings
from parley.main import create_app
from parley.store import ChatStore


def make_config() -> AppConfig:
    """In-memory database and cheap bcrypt so tests stay fast and isolated."""
    return AppConfig(
        database=DatabaseSettings(path=":memory:"),
        auth=AuthSettings(bcrypt_rounds=4),
    )


@pytest.fixture
def store():
    """A fresh in-memory ChatStore."""
    chat_store = ChatStore(db_path=":memory:")
    yield chat_store
    chat_store.close()


@pytest.fixture
def api_client():
    """TestClient for a fresh app.

    Used as a context manager so the lifespan runs (components are built
    on app.state) and every request and WebSocket shares one event loop.
    """
    with TestClient(create_app(make_config())) as client:
        yield client


@pytest.fixture
def register_user(api_client):
    """Register an account over REST; returns (user dict, token)."""
    def _register(username: str, password: str = "secret123"):
        resp = api_client.post("/auth/register", json={
            "username": username,
            "email": f"{username}@example.com",
            "password": password,
        })
        assert resp.status_code == 201, resp.text
        data = resp.json()["data"]
        return data["user"], data["token"]
    return _register


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    return bearer
