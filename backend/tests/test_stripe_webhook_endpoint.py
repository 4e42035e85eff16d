import json
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from app.application.services import stripe_webhook_service
from app.application.services.webhook_replay_guard import WebhookReplayGuard
from app.domain.models.donation import DonationStatus
from app.domain.models.processed_event import ProcessedEvent

COMPLETED = "checkout.session.completed"
ASYNC_SUCCEEDED = "checkout.session.async_payment_succeeded"
ASYNC_FAILED = "checkout.session.async_payment_failed"
EXPIRED = "checkout.session.expired"


def _processed_count(db_session) -> int:
    return db_session.execute(select(func.count()).select_from(ProcessedEvent)).scalar_one()


def test_paid_checkout_marks_donation_success(db_session, make_donation, build_event, deliver):
    donation = make_donation()

    response = deliver(build_event(COMPLETED, donation.id, payment_intent="pi_paid"))

    assert response.status_code == 200
    assert response.text == "ok"
    db_session.refresh(donation)
    assert donation.status == DonationStatus.SUCCESS.value
    assert donation.stripe_payment_intent_id == "pi_paid"


def test_unpaid_checkout_leaves_donation_pending(db_session, make_donation, build_event, deliver):
    donation = make_donation()

    response = deliver(build_event(COMPLETED, donation.id, payment_status="unpaid", payment_intent=None))

    assert response.text == "ok"
    db_session.refresh(donation)
    assert donation.status == DonationStatus.PENDING.value
    assert donation.stripe_payment_intent_id is None


def test_async_payment_succeeded_marks_success(db_session, make_donation, build_event, deliver):
    donation = make_donation()

    response = deliver(build_event(ASYNC_SUCCEEDED, donation.id, payment_intent="pi_async"))

    assert response.text == "ok"
    db_session.refresh(donation)
    assert donation.status == DonationStatus.SUCCESS.value
    assert donation.stripe_payment_intent_id == "pi_async"


def test_async_payment_succeeded_with_unexpected_status_is_flagged(
    db_session, make_donation, build_event, deliver, caplog
):
    donation = make_donation()

    with caplog.at_level("WARNING"):
        response = deliver(build_event(ASYNC_SUCCEEDED, donation.id, payment_status="unpaid"))

    assert response.text == "ok"
    db_session.refresh(donation)
    assert donation.status == DonationStatus.PENDING.value
    assert "async_payment_succeeded_unexpected_status" in caplog.text


def test_duplicate_delivery_is_ignored(db_session, make_donation, build_event, deliver):
    donation = make_donation()
    event = build_event(ASYNC_FAILED, donation.id, event_id="evt_dup_failed")

    first = deliver(event)
    second = deliver(event)

    assert first.text == "ok"
    assert second.status_code == 200
    assert second.text == "ignored"
    db_session.refresh(donation)
    assert donation.status == DonationStatus.FAILED.value
    assert _processed_count(db_session) == 1


def test_durable_record_catches_replay_after_restart(client, db_session, make_donation, build_event, deliver):
    donation = make_donation()
    event = build_event(COMPLETED, donation.id, event_id="evt_restart")
    assert deliver(event).text == "ok"

    client.app.state.replay_guard.clear()

    assert deliver(event).text == "ignored"


def test_expired_session_never_reverts_success(db_session, make_donation, build_event, deliver):
    donation = make_donation()
    deliver(build_event(COMPLETED, donation.id, payment_intent="pi_kept"))

    response = deliver(build_event(EXPIRED, donation.id))

    assert response.text == "ok"
    db_session.refresh(donation)
    assert donation.status == DonationStatus.SUCCESS.value
    assert donation.stripe_payment_intent_id == "pi_kept"


def test_expired_session_marks_pending_donation_failed(db_session, make_donation, build_event, deliver):
    donation = make_donation()

    response = deliver(build_event(EXPIRED, donation.id))

    assert response.text == "ok"
    db_session.refresh(donation)
    assert donation.status == DonationStatus.FAILED.value


def test_tampered_body_is_rejected_without_side_effects(db_session, make_donation, build_event, deliver, sign_payload):
    donation = make_donation()
    event = build_event(COMPLETED, donation.id)
    signature = sign_payload(json.dumps(event).encode("utf-8"))
    event["data"]["object"]["payment_intent"] = "pi_forged"

    response = deliver(event, signature=signature)

    assert response.status_code == 400
    assert response.text == "Invalid Stripe signature"
    assert _processed_count(db_session) == 0
    db_session.refresh(donation)
    assert donation.status == DonationStatus.PENDING.value


def test_rejected_delivery_does_not_poison_later_valid_delivery(db_session, make_donation, build_event, deliver):
    donation = make_donation()
    event = build_event(COMPLETED, donation.id, event_id="evt_retry")

    rejected = deliver(event, signature="t=1,v1=deadbeef")
    accepted = deliver(event)

    assert rejected.status_code == 400
    assert accepted.text == "ok"
    db_session.refresh(donation)
    assert donation.status == DonationStatus.SUCCESS.value


def test_missing_signature_header_is_rejected(client, build_event, make_donation):
    donation = make_donation()
    body = json.dumps(build_event(COMPLETED, donation.id)).encode("utf-8")

    response = client.post("/api/donations/stripe/webhook", content=body)

    assert response.status_code == 400
    assert response.text == "Missing Stripe signature"


def test_stale_event_is_rejected(db_session, make_donation, build_event, deliver):
    donation = make_donation()

    response = deliver(build_event(COMPLETED, donation.id, created=1_000))

    assert response.status_code == 400
    assert response.text == "Stale event"
    assert _processed_count(db_session) == 0


def test_unhandled_event_type_is_acknowledged_and_recorded(db_session, make_donation, build_event, deliver):
    donation = make_donation()

    response = deliver(build_event("payment_intent.created", donation.id))

    assert response.text == "ok"
    assert _processed_count(db_session) == 1
    db_session.refresh(donation)
    assert donation.status == DonationStatus.PENDING.value


def test_missing_donation_id_is_acknowledged(db_session, build_event, deliver, caplog):
    with caplog.at_level("WARNING"):
        response = deliver(build_event(COMPLETED, None))

    assert response.status_code == 200
    assert response.text == "ok"
    assert "stripe_webhook_missing_donation_id" in caplog.text


def test_unknown_donation_is_acknowledged(build_event, deliver, caplog):
    with caplog.at_level("WARNING"):
        response = deliver(build_event(COMPLETED, "5b0c8a52-2a8f-4c57-9d38-0fd0c1f0a111"))

    assert response.text == "ok"
    assert "stripe_webhook_donation_not_found" in caplog.text


def test_handler_failure_is_acknowledged_and_rolled_back(
    db_session, make_donation, build_event, deliver, monkeypatch, caplog
):
    donation = make_donation()

    def explode(db, event_id, event_object, donation_id):
        raise RuntimeError("boom")

    monkeypatch.setitem(stripe_webhook_service.EVENT_HANDLERS, COMPLETED, explode)
    event = build_event(COMPLETED, donation.id, event_id="evt_handler_boom")

    with caplog.at_level("ERROR"):
        response = deliver(event)

    assert response.status_code == 200
    assert response.text == "ok"
    assert "stripe_webhook_handler_failed" in caplog.text
    assert _processed_count(db_session) == 1
    db_session.refresh(donation)
    assert donation.status == DonationStatus.PENDING.value

    assert deliver(event).text == "ignored"


def test_webhook_outcomes_are_exported_as_metrics(client, make_donation, build_event, deliver):
    donation = make_donation()
    deliver(build_event(COMPLETED, donation.id))

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "webhook_events_total" in response.text
    assert "donation_transitions_total" in response.text


def test_concurrent_duplicate_deliveries_process_once(db_engine, db_session, make_donation, build_event, sign_payload):
    donation = make_donation()
    body = json.dumps(build_event(COMPLETED, donation.id, event_id="evt_concurrent")).encode("utf-8")
    header = sign_payload(body)
    guard = WebhookReplayGuard()
    session_factory = sessionmaker(bind=db_engine, autocommit=False, autoflush=False)
    barrier = threading.Barrier(2)

    def deliver_once() -> str:
        with session_factory() as session:
            barrier.wait()
            return stripe_webhook_service.process_stripe_webhook(
                session,
                payload_bytes=body,
                signature_header=header,
                replay_guard=guard,
            )

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = sorted(pool.map(lambda _: deliver_once(), range(2)))

    assert results == ["ignored", "ok"]
    assert _processed_count(db_session) == 1
    db_session.refresh(donation)
    assert donation.status == DonationStatus.SUCCESS.value


def test_durable_store_failure_propagates_and_allows_retry(
    db_session, make_donation, build_event, sign_payload, monkeypatch
):
    donation = make_donation()
    body = json.dumps(build_event(COMPLETED, donation.id, event_id="evt_store_down")).encode("utf-8")
    guard = WebhookReplayGuard()

    def store_down(db, **kwargs):
        raise OperationalError("INSERT INTO processed_events", {}, Exception("database unavailable"))

    with monkeypatch.context() as patch:
        patch.setattr(stripe_webhook_service, "is_replay_and_record", store_down)
        with pytest.raises(OperationalError):
            stripe_webhook_service.process_stripe_webhook(
                db_session, payload_bytes=body, signature_header=sign_payload(body), replay_guard=guard
            )

    assert len(guard) == 0
    result = stripe_webhook_service.process_stripe_webhook(
        db_session, payload_bytes=body, signature_header=sign_payload(body), replay_guard=guard
    )
    assert result == "ok"
    db_session.refresh(donation)
    assert donation.status == DonationStatus.SUCCESS.value
