"""Donation lifecycle rules applied by payment webhooks.

PENDING may move to SUCCESS or FAILED. FAILED may still be superseded by
SUCCESS (a retried payment on the same checkout). SUCCESS is absorbing:
nothing moves a confirmed donation out of it.
"""

from dataclasses import dataclass
from enum import StrEnum

from app.domain.models.donation import DonationStatus


class DonationTransition(StrEnum):
    MARK_SUCCESS = "mark_success"
    MARK_FAILED = "mark_failed"


@dataclass(frozen=True)
class TransitionOutcome:
    status: DonationStatus
    applied: bool
    reason: str


_TRANSITIONS: dict[tuple[DonationStatus, DonationTransition], TransitionOutcome] = {
    (DonationStatus.PENDING, DonationTransition.MARK_SUCCESS): TransitionOutcome(
        DonationStatus.SUCCESS, True, "pending_to_success"
    ),
    (DonationStatus.FAILED, DonationTransition.MARK_SUCCESS): TransitionOutcome(
        DonationStatus.SUCCESS, True, "failed_to_success"
    ),
    (DonationStatus.SUCCESS, DonationTransition.MARK_SUCCESS): TransitionOutcome(
        DonationStatus.SUCCESS, False, "already_success"
    ),
    (DonationStatus.PENDING, DonationTransition.MARK_FAILED): TransitionOutcome(
        DonationStatus.FAILED, True, "pending_to_failed"
    ),
    (DonationStatus.FAILED, DonationTransition.MARK_FAILED): TransitionOutcome(
        DonationStatus.FAILED, False, "already_failed"
    ),
    (DonationStatus.SUCCESS, DonationTransition.MARK_FAILED): TransitionOutcome(
        DonationStatus.SUCCESS, False, "success_is_terminal"
    ),
}


def resolve_transition(current: DonationStatus | str, transition: DonationTransition) -> TransitionOutcome:
    return _TRANSITIONS[(DonationStatus(current), transition)]
