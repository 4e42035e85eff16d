import hashlib
import hmac
import json
import os
import time
import uuid

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("STRIPE_API_KEY", "sk_test_123")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, delete
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import settings
from app.domain.models.campaign import Campaign
from app.domain.models.donation import Donation, DonationStatus
from app.infrastructure.db.base import Base
from app.infrastructure.db.session import get_db
from main import app

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+pysqlite:///:memory:")
WEBHOOK_SECRET = "whsec_test"


@pytest.fixture(scope="session")
def db_engine():
    if TEST_DATABASE_URL.startswith("sqlite"):
        engine = create_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(TEST_DATABASE_URL, pool_pre_ping=True)
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session(db_engine):
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = testing_session_local()
    try:
        yield session
    finally:
        session.rollback()
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(delete(table))
        session.commit()
        session.close()


@pytest.fixture(autouse=True)
def webhook_settings(monkeypatch):
    monkeypatch.setattr(settings, "stripe_webhook_secret", WEBHOOK_SECRET)
    monkeypatch.setattr(settings, "stripe_webhook_tolerance_seconds", 300)
    monkeypatch.setattr(settings, "stripe_webhook_require_event_timestamp", False)
    monkeypatch.setattr(settings, "stripe_api_key", "sk_test_123")


@pytest.fixture
def client(db_session):
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def campaign(db_session) -> Campaign:
    record = Campaign(title="School Library", short_description="Books for every classroom", active=True)
    db_session.add(record)
    db_session.commit()
    return record


@pytest.fixture
def make_donation(db_session, campaign):
    def _make(status: DonationStatus = DonationStatus.PENDING, **overrides) -> Donation:
        values = {
            "amount": 5000,
            "currency": "usd",
            "donor_name": "Jane Donor",
            "donor_email": "jane@example.org",
            "status": status.value,
            "campaign_id": campaign.id,
            "stripe_session_id": f"cs_test_{uuid.uuid4().hex[:12]}",
        }
        values.update(overrides)
        donation = Donation(**values)
        db_session.add(donation)
        db_session.commit()
        return donation

    return _make


def _sign_payload(payload_bytes: bytes, *, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    signed_at = str(timestamp if timestamp is not None else int(time.time()))
    digest = hmac.new(secret.encode("utf-8"), f"{signed_at}.".encode("utf-8") + payload_bytes, hashlib.sha256)
    return f"t={signed_at},v1={digest.hexdigest()}"


@pytest.fixture
def build_event():
    def _build(
        event_type: str,
        donation_id: object | None,
        *,
        event_id: str | None = None,
        payment_status: str | None = "paid",
        payment_intent: str | None = "pi_test_123",
        created: int | None | str = "now",
    ) -> dict:
        metadata = {"campaignId": "camp_1"}
        if donation_id is not None:
            metadata["donationId"] = str(donation_id)
        event = {
            "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
            "object": "event",
            "type": event_type,
            "data": {
                "object": {
                    "id": f"cs_test_{uuid.uuid4().hex[:12]}",
                    "object": "checkout.session",
                    "payment_status": payment_status,
                    "payment_intent": payment_intent,
                    "metadata": metadata,
                }
            },
        }
        if created == "now":
            event["created"] = int(time.time())
        elif created is not None:
            event["created"] = created
        return event

    return _build


@pytest.fixture
def deliver(client):
    def _deliver(event: dict, *, signature: str | None = None, body: bytes | None = None):
        payload_bytes = body if body is not None else json.dumps(event).encode("utf-8")
        header = signature if signature is not None else _sign_payload(payload_bytes)
        return client.post(
            "/api/donations/stripe/webhook",
            content=payload_bytes,
            headers={"Stripe-Signature": header, "Content-Type": "application/json"},
        )

    return _deliver


@pytest.fixture
def sign_payload():
    return _sign_payload
