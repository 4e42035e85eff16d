from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.domain.donation_transitions import DonationTransition, TransitionOutcome, resolve_transition
from app.domain.models.donation import Donation, DonationStatus
from app.infrastructure.observability.metrics import record_donation_transition

logger = logging.getLogger(__name__)


class DonationNotFoundError(LookupError):
    error_code = "donation_not_found"

    def __init__(self, donation_id: object):
        super().__init__(f"Donation not found with id: {donation_id}")
        self.donation_id = donation_id


def _parse_donation_id(donation_id: UUID | str) -> UUID:
    if isinstance(donation_id, UUID):
        return donation_id
    try:
        return UUID(str(donation_id))
    except ValueError as exc:
        raise DonationNotFoundError(donation_id) from exc


def _load_for_update(db: Session, donation_id: UUID | str) -> Donation:
    parsed_id = _parse_donation_id(donation_id)
    donation = db.execute(
        select(Donation).where(Donation.id == parsed_id).with_for_update()
    ).scalar_one_or_none()
    if donation is None:
        raise DonationNotFoundError(donation_id)
    return donation


def _apply(db: Session, donation: Donation, transition: DonationTransition) -> TransitionOutcome:
    previous = donation.status
    outcome = resolve_transition(previous, transition)
    record_donation_transition(transition.value, outcome.applied)
    if outcome.applied:
        donation.status = outcome.status.value
        db.add(donation)
        logger.info(
            "donation_transition_applied donation_id=%s from=%s to=%s",
            donation.id,
            previous,
            outcome.status.value,
        )
    return outcome


def mark_donation_success(db: Session, donation_id: UUID | str, payment_intent_id: str | None) -> TransitionOutcome:
    donation = _load_for_update(db, donation_id)
    outcome = _apply(db, donation, DonationTransition.MARK_SUCCESS)
    if not outcome.applied:
        logger.info("donation_already_success donation_id=%s reason=%s", donation.id, outcome.reason)
        return outcome

    donation.stripe_payment_intent_id = payment_intent_id
    db.add(donation)
    db.flush()
    return outcome


def mark_donation_failed(db: Session, donation_id: UUID | str) -> TransitionOutcome:
    donation = _load_for_update(db, donation_id)
    outcome = _apply(db, donation, DonationTransition.MARK_FAILED)
    if outcome.applied:
        db.flush()
    elif outcome.status == DonationStatus.SUCCESS:
        logger.warning(
            "donation_fail_ignored_for_success donation_id=%s reason=%s",
            donation.id,
            outcome.reason,
        )
    else:
        logger.info("donation_already_failed donation_id=%s", donation.id)
    return outcome
