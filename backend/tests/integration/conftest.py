"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - Tests run against a real SQLAlchemy database: in-memory SQLite by
    default, or PostgreSQL when TEST_DATABASE_URL is set.
  - The app is created once per session using create_app("testing").
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.
  - Card detection talks to an httpx.MockTransport upstream; see the
    `upstream` fixture.

Helper functions (not fixtures) are provided for common operations:
  - seed_admin(app, ...) / seed_user(app, ...)  → id of the new principal
  - latest_code(app, target, purpose)           → most recent code string
  - login_admin(client, app, ...)               → login envelope (both steps)
  - login_user(client, app, ...)                → login envelope (both steps)
  - auth_headers(token)                         → {"Authorization": "Bearer <token>"}

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test without fixture parameterization overhead.
"""

from __future__ import annotations

import json

import httpx
import pytest
from sqlalchemy import select, text

from backend.app import create_app
from backend.app.carddetection.client import CardDetectionClient
from backend.app.carddetection.types import ClientConfig
from backend.app.extensions import CARD_CLIENT_KEY
from backend.app.extensions import db as _db
from backend.app.models.admin import Admin
from backend.app.models.user import User
from backend.app.models.verification import Verification
from backend.app.security.passwords import hash_password

TEST_IP = "10.0.0.5"
TEST_UA = "UA-test"

# Children before parents.
_TABLES = (
    "user_refresh_tokens",
    "admin_refresh_tokens",
    "user_login_sessions",
    "admin_login_sessions",
    "verifications",
    "card_detection_records",
    "cd_regions",
    "cd_products",
    "users",
    "admins",
)


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """
    Creates the Flask application in 'testing' mode once for the entire test
    session, creates all tables, and drops them at teardown.
    """
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """Deletes all rows after EVERY test in the integration suite."""
    yield  # run the test

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test

        with _db.engine.connect() as conn:
            for table in _TABLES:
                conn.execute(text(f"DELETE FROM {table}"))
            conn.commit()


# ═══════════════════════════════════════════════════════════════════════════
# Client fixtures
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client that presents a fixed IP and User-Agent."""
    test_client = app.test_client()
    test_client.environ_base.update({
        "REMOTE_ADDR": TEST_IP,
        "HTTP_USER_AGENT": TEST_UA,
    })
    return test_client


class FakeUpstream:
    """
    Stand-in for the card-detection service. Records every request; answers
    with `reply(request)` which tests may replace.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.reply = lambda request: httpx.Response(200, json={"code": 200, "msg": "", "data": True})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.reply(request)

    def decrypted(self, index: int = -1) -> dict:
        from backend.app.carddetection.crypto import CryptoUtils

        body = json.loads(self.requests[index].content)
        return json.loads(CryptoUtils("S").des_decrypt(body["data"]))


@pytest.fixture
def upstream(app, monkeypatch):
    """Swaps the app's card-detection client for one backed by FakeUpstream."""
    fake = FakeUpstream()
    card_client = CardDetectionClient(
        ClientConfig(host="https://upstream.test", app_id="A", app_secret="S", timeout=5),
        http_client=httpx.Client(transport=httpx.MockTransport(fake)),
    )
    monkeypatch.setitem(app.extensions, CARD_CLIENT_KEY, card_client)
    return fake


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def seed_admin(
    app,
    email: str = "admin@example.com",
    password: str = "password123",
    status: str = "active",
    role: str = "admin",
    is_super: bool = False,
) -> int:
    """Inserts an admin directly (admins have no registration endpoint)."""
    with app.app_context():
        admin = Admin(
            name="Admin",
            email=email,
            password_hash=hash_password(password, rounds=4),
            status=status,
            role=role,
            is_super=is_super,
        )
        _db.session.add(admin)
        _db.session.commit()
        return admin.id


def seed_user(
    app,
    email: str = "alice@example.com",
    password: str = "password123",
    status: str = "active",
    phone: str | None = None,
) -> int:
    with app.app_context():
        user = User(
            name="Alice",
            email=email,
            password_hash=hash_password(password, rounds=4),
            phone=phone,
            status=status,
            role="user",
            email_verified=status == "active",
        )
        _db.session.add(user)
        _db.session.commit()
        return user.id


def latest_code(app, target: str, purpose: str) -> str:
    """Reads the newest code for (target, purpose) straight from the store."""
    with app.app_context():
        row = _db.session.execute(
            select(Verification)
            .where(Verification.target == target, Verification.type == purpose)
            .order_by(Verification.id.desc())
            .limit(1)
        ).scalar_one()
        return row.code


def auth_headers(token: str) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {token}"}


def login_admin(client, app, email: str = "admin@example.com", password: str = "password123") -> dict:
    """Runs both login steps for an admin and returns the login envelope."""
    resp = client.post("/api/v1/admin/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, f"admin login failed: {resp.get_json()}"
    resp = client.post(
        "/api/v1/admin/auth/login/verify",
        json={"email": email, "code": latest_code(app, email, "admin_login")},
    )
    assert resp.status_code == 200, f"admin login verify failed: {resp.get_json()}"
    return resp.get_json()["data"]


def login_user(client, app, email: str = "alice@example.com", password: str = "password123") -> dict:
    """Runs both login steps for a user and returns the login envelope."""
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, f"user login failed: {resp.get_json()}"
    resp = client.post(
        "/api/v1/auth/login/verify",
        json={"email": email, "code": latest_code(app, email, "user_login")},
    )
    assert resp.status_code == 200, f"user login verify failed: {resp.get_json()}"
    return resp.get_json()["data"]
