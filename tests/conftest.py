"""
Test configuration for the portfolio analytics API.

Environment variables are set before the application is imported so the
settings singleton, the engine and the slowapi limiter all pick them up.
The database is an in-memory SQLite shared through a StaticPool and is
recreated for every test.
"""
import os

import bcrypt

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "correct horse battery"
CONTENT_PASSWORD = "content-editor-pass"
JWT_SECRET = "test-jwt-secret-that-is-long-enough-for-hs256"
IP_SALT = "test-ip-salt"

# Low bcrypt cost keeps the suite fast
ADMIN_PASSWORD_HASH = bcrypt.hashpw(
    ADMIN_PASSWORD.encode("utf-8"), bcrypt.gensalt(rounds=4)
).decode("utf-8")

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ANALYTICS_ADMIN_EMAIL"] = ADMIN_EMAIL
os.environ["ANALYTICS_ADMIN_PASSWORD_HASH"] = ADMIN_PASSWORD_HASH
os.environ["ANALYTICS_JWT_SECRET"] = JWT_SECRET
os.environ["ANALYTICS_IP_SALT"] = IP_SALT
os.environ["ADMIN_PASSWORD"] = CONTENT_PASSWORD
os.environ["DEFAULT_RATELIMIT"] = "100000/minute"
os.environ["ENVIRONMENT"] = "development"
os.environ["REDIS_URL"] = ""
# TestClient plays the single reverse proxy in front of the app
os.environ["TRUSTED_PROXY_HOPS"] = "1"

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel

from portfolio_analytics.db import engine
from portfolio_analytics.main import app


@pytest.fixture(autouse=True)
def fresh_database():
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    yield
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def db():
    with Session(engine) as session:
        yield session


@pytest.fixture
def client():
    """Runs the lifespan, so every test gets fresh rate-limit counters."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_token(client):
    response = client.post(
        "/api/auth/login",
        json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD},
    )
    assert response.status_code == 200, response.text
    # Keep requests explicit: drop the cookie the login just set
    client.cookies.clear()
    return response.json()["token"]


@pytest.fixture
def auth_headers(admin_token):
    return {"Authorization": f"Bearer {admin_token}"}
