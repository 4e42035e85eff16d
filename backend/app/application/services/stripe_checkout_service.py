from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

import httpx
from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.domain.models.campaign import Campaign
from app.domain.models.donation import Donation, DonationStatus

STRIPE_API_BASE = "https://api.stripe.com/v1"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutSessionResult:
    donation_id: UUID
    session_id: str
    checkout_url: str


def _headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {settings.stripe_api_key}"}


def _http_client() -> httpx.Client:
    return httpx.Client(timeout=settings.stripe_api_timeout_seconds)


def _error(status_code: int, error_code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error_code": error_code, "message": message})


def _require_stripe() -> None:
    if not settings.stripe_api_key:
        raise _error(status.HTTP_503_SERVICE_UNAVAILABLE, "payment_provider_unavailable", "Stripe is not configured")


def _resolve_active_campaign(db: Session, campaign_id: UUID) -> Campaign:
    campaign = db.execute(select(Campaign).where(Campaign.id == campaign_id)).scalar_one_or_none()
    if campaign is None:
        raise _error(status.HTTP_404_NOT_FOUND, "campaign_not_found", f"Campaign not found with id: {campaign_id}")
    if not campaign.active:
        raise _error(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "campaign_inactive",
            "This campaign is not accepting donations at this time. Please choose another campaign.",
        )
    return campaign


def _checkout_payload(
    *,
    donation: Donation,
    campaign: Campaign,
    success_url: str | None,
    cancel_url: str | None,
) -> dict[str, str]:
    payload = {
        "mode": "payment",
        "success_url": success_url or settings.stripe_checkout_success_url,
        "cancel_url": cancel_url or settings.stripe_checkout_cancel_url,
        "client_reference_id": str(donation.id),
        "line_items[0][quantity]": "1",
        "line_items[0][price_data][currency]": donation.currency,
        "line_items[0][price_data][unit_amount]": str(donation.amount),
        "line_items[0][price_data][product_data][name]": f"Donation for {campaign.title}",
        "metadata[donationId]": str(donation.id),
        "metadata[campaignId]": str(campaign.id),
    }
    if campaign.short_description:
        payload["line_items[0][price_data][product_data][description]"] = campaign.short_description
    if donation.donor_email:
        payload["customer_email"] = donation.donor_email
    return payload


def create_checkout_session(
    db: Session,
    *,
    campaign_id: UUID,
    amount: int,
    currency: str,
    donor_name: str | None = None,
    donor_email: str | None = None,
    success_url: str | None = None,
    cancel_url: str | None = None,
) -> CheckoutSessionResult:
    _require_stripe()
    campaign = _resolve_active_campaign(db, campaign_id)

    donation = Donation(
        amount=amount,
        currency=currency.lower(),
        donor_name=donor_name,
        donor_email=donor_email,
        status=DonationStatus.PENDING.value,
        campaign_id=campaign.id,
    )
    db.add(donation)
    # The PENDING row must exist before the provider can call back with its id.
    db.commit()
    db.refresh(donation)
    logger.info(
        "donation_created donation_id=%s campaign_id=%s amount=%s currency=%s",
        donation.id,
        campaign.id,
        donation.amount,
        donation.currency,
    )

    payload = _checkout_payload(donation=donation, campaign=campaign, success_url=success_url, cancel_url=cancel_url)
    try:
        with _http_client() as client:
            response = client.post(f"{STRIPE_API_BASE}/checkout/sessions", headers=_headers(), data=payload)
    except httpx.HTTPError as exc:
        logger.error("stripe_checkout_request_failed donation_id=%s error=%s", donation.id, exc)
        raise _error(
            status.HTTP_502_BAD_GATEWAY, "payment_provider_error", "Failed to create checkout session"
        ) from exc

    if response.status_code >= 400:
        logger.error(
            "stripe_checkout_rejected donation_id=%s status=%s body=%s",
            donation.id,
            response.status_code,
            response.text[:200],
        )
        raise _error(
            status.HTTP_502_BAD_GATEWAY,
            "payment_provider_error",
            f"Stripe checkout error: {response.text[:200]}",
        )

    try:
        body = response.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        body = {}
    session_id = str(body.get("id") or "")
    checkout_url = str(body.get("url") or "")
    if not session_id or not checkout_url:
        logger.error("stripe_checkout_response_invalid donation_id=%s", donation.id)
        raise _error(status.HTTP_502_BAD_GATEWAY, "payment_provider_error", "Stripe checkout response invalid")

    donation.stripe_session_id = session_id
    db.add(donation)
    db.flush()
    logger.info("stripe_checkout_session_created donation_id=%s session_id=%s", donation.id, session_id)
    return CheckoutSessionResult(donation_id=donation.id, session_id=session_id, checkout_url=checkout_url)
