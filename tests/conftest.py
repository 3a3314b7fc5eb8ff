"""
Shared test fixtures.

Provides:
  • a temporary SQLite database, recreated for every test
  • fake email / SMS transports that record what would have been sent
  • a cleared rate limiter
  • a FastAPI TestClient against the real app
"""

from __future__ import annotations

import os
import tempfile

# Settings are read at import time, so the environment is prepared first.
_DB_DIR = tempfile.mkdtemp(prefix="identity-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'identity.db')}"
os.environ.setdefault("JWT_SECRET", "test-secret-key-with-enough-length-for-hs256")
os.environ.setdefault("PASSWORD_HASH_TIME_COST", "1")
os.environ.setdefault("PASSWORD_HASH_MEMORY_COST", "1024")
os.environ.setdefault("PASSWORD_HASH_PARALLELISM", "1")
os.environ.setdefault("EMAIL_TRANSPORT", "console")
os.environ.setdefault("SMS_TRANSPORT", "console")
os.environ.setdefault("OTP_DEBUG", "false")

import pytest
from fastapi.testclient import TestClient

from identity.database import Base, engine, init_db
from identity.main import app
from identity.services.accounts import account_service
from identity.services.otp import otp_service
from identity.services.rate_limit import rate_limiter
from identity.services.registration import registration_service
from tests.mocks.transports import FakeEmailTransport, FakeSmsTransport


# ── Fixtures ───────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _fresh_database():
    Base.metadata.drop_all(bind=engine)
    init_db()
    rate_limiter.clear()
    yield
    rate_limiter.clear()


@pytest.fixture()
def email_outbox(monkeypatch) -> FakeEmailTransport:
    transport = FakeEmailTransport()
    monkeypatch.setattr(registration_service, "email_transport", transport)
    monkeypatch.setattr(account_service, "email_transport", transport)
    return transport


@pytest.fixture()
def sms_outbox(monkeypatch) -> FakeSmsTransport:
    transport = FakeSmsTransport()
    monkeypatch.setattr(otp_service, "transport", transport)
    return transport


@pytest.fixture()
def client(email_outbox, sms_outbox) -> TestClient:
    with TestClient(app, raise_server_exceptions=False) as tc:
        yield tc
