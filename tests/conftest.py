"""
Pytest configuration and shared fixtures.

Test environment variables are set here before any wa_webhook import, and
the settings cache is cleared so they take effect.
"""

import hashlib
import hmac
import json
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_wa_webhook.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("WHATSAPP_ACCOUNT_NUMBER", "15550001111")
os.environ.setdefault("WHATSAPP_ACCOUNT_NAME", "Test Account")

import pytest

# Clear settings cache before any app imports to ensure test env vars are used
from wa_webhook.config import get_settings
get_settings.cache_clear()

from fastapi.testclient import TestClient

from wa_webhook.main import app
from wa_webhook.storage import Base, SessionLocal, engine


TEST_WEBHOOK_SECRET = os.environ["WEBHOOK_SECRET"]
TEST_ACCOUNT_NUMBER = os.environ["WHATSAPP_ACCOUNT_NUMBER"]


def compute_signature(body: bytes, secret: str = TEST_WEBHOOK_SECRET) -> str:
    """Compute the sha256=<hex> signature header for a request body."""
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


@pytest.fixture(scope="function")
def schema():
    """Fresh database schema for each test."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db(schema):
    """Database session for inspecting and seeding rows."""
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture(scope="function")
def client(schema):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def post_event(client):
    """
    POST a payload to /webhook, signed with the test secret.

    Pass raw= to send exact bytes, signature= to override the header.
    """
    def _post(payload=None, raw: bytes = None, signature: str = None):
        body = raw if raw is not None else json.dumps(payload).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        headers["X-Hub-Signature-256"] = signature if signature is not None else compute_signature(body)
        return client.post("/webhook", content=body, headers=headers)

    return _post


@pytest.fixture
def rows(db):
    """Return all current rows of a model, bypassing the session's identity map."""
    def _rows(model):
        db.expire_all()
        return db.query(model).order_by(model.id).all()

    return _rows
