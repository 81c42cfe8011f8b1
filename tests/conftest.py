"""Shared fixtures: in-memory MongoDB (mongomock) and a configured TestClient."""

import mongomock
import pytest
from fastapi.testclient import TestClient

from userforge.utils.config import (
    AppSettings,
    AuthSettings,
    LoggingSettings,
    RateLimitSettings,
    Settings,
)

TEST_SECRET = "test-secret-key-for-jwt-signing-0123456789"
DEFAULT_PASSWORD = "Password123"


def make_settings(**overrides) -> Settings:
    values = {
        "app": AppSettings(environment="test"),
        "auth": AuthSettings(jwt_secret=TEST_SECRET, bcrypt_rounds=4),
        "rate_limits": RateLimitSettings(enabled=False),
        "logging": LoggingSettings(level="WARNING", format="console", file_path=None),
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def db():
    """Direct connection for service-level tests"""
    from userforge.models.user import User
    from userforge.services.database import connect_to_db, disconnect_from_db
    from userforge.utils.config import DatabaseSettings

    connect_to_db(DatabaseSettings(name="userforge_test"), mongo_client_class=mongomock.MongoClient)
    yield
    User.drop_collection()
    disconnect_from_db()


def build_client(settings: Settings) -> TestClient:
    from web.main import create_app
    app = create_app(settings, mongo_client_class=mongomock.MongoClient)
    return TestClient(app)


@pytest.fixture
def client(settings):
    from userforge.models.user import User

    with build_client(settings) as test_client:
        yield test_client
        User.drop_collection()


def register(client: TestClient, name="John Doe", email="john@example.com", password=DEFAULT_PASSWORD, **extra):
    payload = {"name": name, "email": email, "password": password, **extra}
    return client.post("/api/auth/register", json=payload)


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def register_and_token(client: TestClient, **kwargs) -> tuple:
    """Register a user and return (user_dict, token)"""
    res = register(client, **kwargs)
    assert res.status_code == 201, res.text
    data = res.json()["data"]
    return data["user"], data["token"]


def make_admin(client: TestClient, name="Admin User", email="admin@example.com") -> tuple:
    """Register a user, promote it to admin directly in the store, return (user, token)"""
    from userforge.models.user import User

    user, token = register_and_token(client, name=name, email=email)
    User.objects(email=email).update(set__role="admin")
    user["role"] = "admin"
    return user, token
