from __future__ import annotations

import hashlib
import hmac
import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from sqlalchemy.orm import Session

from app.application.services.donation_service import (
    DonationNotFoundError,
    mark_donation_failed,
    mark_donation_success,
)
from app.application.services.processed_event_service import is_replay_and_record
from app.application.services.webhook_replay_guard import WebhookReplayGuard
from app.core.config import settings
from app.infrastructure.logging.context import reset_event_id, set_event_id
from app.infrastructure.observability.metrics import (
    record_handler_failure,
    record_webhook_anomaly,
    record_webhook_outcome,
)

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
ASYNC_PAYMENT_FAILED = "checkout.session.async_payment_failed"
CHECKOUT_EXPIRED = "checkout.session.expired"

SETTLED_PAYMENT_STATUSES = frozenset({"paid", "no_payment_required"})

RESULT_OK = "ok"
RESULT_IGNORED = "ignored"


class WebhookVerificationError(ValueError):
    """Inbound event rejected before any durable effect."""

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message


def _now_seconds(now: datetime | None) -> int:
    return int((now or datetime.now(UTC)).timestamp())


def verify_stripe_signature(
    *,
    payload_bytes: bytes,
    signature_header: str | None,
    secret: str | None = None,
    tolerance_seconds: int | None = None,
    now: datetime | None = None,
) -> None:
    secret = secret if secret is not None else settings.stripe_webhook_secret
    tolerance = tolerance_seconds if tolerance_seconds is not None else settings.stripe_webhook_tolerance_seconds
    if not secret:
        raise WebhookVerificationError("secret_not_configured", "Webhook secret is not configured")
    if not signature_header:
        raise WebhookVerificationError("missing_signature", "Missing Stripe signature")

    parts: dict[str, list[str]] = {}
    for chunk in signature_header.split(","):
        if "=" not in chunk:
            continue
        key, value = chunk.split("=", 1)
        parts.setdefault(key.strip(), []).append(value.strip())

    timestamps = parts.get("t") or []
    signatures = parts.get("v1") or []
    if len(timestamps) != 1 or not signatures:
        raise WebhookVerificationError("malformed_signature", "Invalid Stripe signature header")

    timestamp = timestamps[0]
    try:
        signed_at = int(timestamp)
    except ValueError as exc:
        raise WebhookVerificationError("malformed_signature", "Invalid Stripe signature timestamp") from exc

    if abs(_now_seconds(now) - signed_at) > max(1, tolerance):
        raise WebhookVerificationError("expired_signature", "Expired Stripe signature")

    signed_payload = f"{timestamp}.".encode("utf-8") + payload_bytes
    expected = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()

    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise WebhookVerificationError("invalid_signature", "Invalid Stripe signature")


def parse_stripe_webhook_payload(payload_bytes: bytes) -> dict:
    try:
        payload = json.loads(payload_bytes.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise WebhookVerificationError("malformed_payload", "Invalid Stripe payload") from exc
    if not isinstance(payload, dict):
        raise WebhookVerificationError("malformed_payload", "Invalid Stripe payload")
    return payload


def ensure_event_fresh(
    event: dict,
    *,
    tolerance_seconds: int | None = None,
    require_timestamp: bool | None = None,
    now: datetime | None = None,
) -> None:
    tolerance = tolerance_seconds if tolerance_seconds is not None else settings.stripe_webhook_tolerance_seconds
    required = (
        require_timestamp if require_timestamp is not None else settings.stripe_webhook_require_event_timestamp
    )
    created = event.get("created")
    if created is None:
        if required:
            raise WebhookVerificationError("missing_timestamp", "Missing event timestamp")
        return
    if isinstance(created, bool):
        raise WebhookVerificationError("malformed_timestamp", "Invalid event timestamp")
    try:
        created_at = int(created)
    except (TypeError, ValueError) as exc:
        raise WebhookVerificationError("malformed_timestamp", "Invalid event timestamp") from exc
    if abs(_now_seconds(now) - created_at) > tolerance:
        raise WebhookVerificationError("stale_event", "Stale event")


def _event_object(event: dict) -> dict:
    data = event.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    return obj if isinstance(obj, dict) else {}


def _donation_id(event_object: dict) -> str | None:
    metadata = event_object.get("metadata")
    if not isinstance(metadata, dict):
        return None
    raw = metadata.get("donationId")
    return str(raw) if raw else None


def _payment_intent_id(event_object: dict) -> str | None:
    raw = event_object.get("payment_intent")
    if isinstance(raw, dict):
        raw = raw.get("id")
    return str(raw) if raw else None


def _handle_checkout_completed(db: Session, event_id: str, event_object: dict, donation_id: str) -> str:
    payment_status = event_object.get("payment_status")
    if payment_status not in SETTLED_PAYMENT_STATUSES:
        logger.info(
            "checkout_completed_awaiting_async_payment event_id=%s donation_id=%s payment_status=%s",
            event_id,
            donation_id,
            payment_status,
        )
        return "awaiting_async_payment"
    outcome = mark_donation_success(db, donation_id, _payment_intent_id(event_object))
    return outcome.reason


def _handle_async_payment_succeeded(db: Session, event_id: str, event_object: dict, donation_id: str) -> str:
    payment_status = event_object.get("payment_status")
    if payment_status != "paid":
        logger.warning(
            "async_payment_succeeded_unexpected_status event_id=%s donation_id=%s payment_status=%s",
            event_id,
            donation_id,
            payment_status,
        )
        record_webhook_anomaly(ASYNC_PAYMENT_SUCCEEDED, payment_status)
        return "unexpected_payment_status"
    outcome = mark_donation_success(db, donation_id, _payment_intent_id(event_object))
    return outcome.reason


def _handle_mark_failed(db: Session, event_id: str, event_object: dict, donation_id: str) -> str:
    outcome = mark_donation_failed(db, donation_id)
    return outcome.reason


EventHandler = Callable[[Session, str, dict, str], str]

EVENT_HANDLERS: dict[str, EventHandler] = {
    CHECKOUT_COMPLETED: _handle_checkout_completed,
    ASYNC_PAYMENT_SUCCEEDED: _handle_async_payment_succeeded,
    ASYNC_PAYMENT_FAILED: _handle_mark_failed,
    CHECKOUT_EXPIRED: _handle_mark_failed,
}


def dispatch_stripe_event(db: Session, event: dict) -> str:
    """Route a verified, first-seen event to its handler.

    Never raises: handler failures are logged and rolled back so the
    provider receives an acknowledgement instead of retrying forever.
    """
    event_id = str(event.get("id") or "")
    event_type = str(event.get("type") or "unknown")

    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.info("stripe_webhook_unhandled_event_type event_id=%s event_type=%s", event_id, event_type)
        return "unhandled_event_type"

    event_object = _event_object(event)
    donation_id = _donation_id(event_object)
    if donation_id is None:
        logger.warning(
            "stripe_webhook_missing_donation_id event_id=%s event_type=%s session_id=%s",
            event_id,
            event_type,
            event_object.get("id"),
        )
        return "missing_donation_id"

    try:
        result = handler(db, event_id, event_object, donation_id)
        db.commit()
    except DonationNotFoundError:
        db.rollback()
        logger.warning(
            "stripe_webhook_donation_not_found event_id=%s event_type=%s donation_id=%s",
            event_id,
            event_type,
            donation_id,
        )
        return "donation_not_found"
    except Exception:
        db.rollback()
        record_handler_failure(event_type)
        logger.exception(
            "stripe_webhook_handler_failed event_id=%s event_type=%s donation_id=%s",
            event_id,
            event_type,
            donation_id,
        )
        return "handler_failed"

    logger.info(
        "stripe_webhook_event_handled event_id=%s event_type=%s donation_id=%s result=%s",
        event_id,
        event_type,
        donation_id,
        result,
    )
    return result


def process_stripe_webhook(
    db: Session,
    *,
    payload_bytes: bytes,
    signature_header: str | None,
    replay_guard: WebhookReplayGuard,
    now: datetime | None = None,
) -> str:
    """Verify, deduplicate and dispatch one delivery.

    Returns ``"ok"`` or ``"ignored"``; raises ``WebhookVerificationError``
    when the delivery must be answered with 400.
    """
    try:
        verify_stripe_signature(payload_bytes=payload_bytes, signature_header=signature_header, now=now)
        event = parse_stripe_webhook_payload(payload_bytes)
        ensure_event_fresh(event, now=now)
    except WebhookVerificationError as exc:
        record_webhook_outcome("rejected")
        logger.warning("stripe_webhook_rejected reason=%s", exc.reason)
        raise

    event_id = str(event.get("id") or "").strip()
    event_type = str(event.get("type") or "unknown")
    token = set_event_id(event_id or None)
    try:
        logger.info("stripe_webhook_received event_id=%s event_type=%s", event_id, event_type)

        if replay_guard.check_and_record(event_id):
            record_webhook_outcome("replay_memory", event_type)
            logger.info("stripe_webhook_replay_ignored tier=memory event_id=%s event_type=%s", event_id, event_type)
            return RESULT_IGNORED

        try:
            seen_durably = is_replay_and_record(db, event_id=event_id, event_type=event_type, now=now)
        except Exception:
            # Propagates as a 500 on purpose: the provider retries, and the
            # memory tier must not report that retry as a replay.
            replay_guard.forget(event_id)
            raise
        if seen_durably:
            record_webhook_outcome("replay_durable", event_type)
            logger.info("stripe_webhook_replay_ignored tier=durable event_id=%s event_type=%s", event_id, event_type)
            return RESULT_IGNORED

        dispatch_stripe_event(db, event)
        record_webhook_outcome("processed", event_type)
        return RESULT_OK
    finally:
        reset_event_id(token)
