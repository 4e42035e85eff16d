import logging
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from app.application.services.stripe_checkout_service import create_checkout_session
from app.infrastructure.db.session import get_db

logger = logging.getLogger("app")

router = APIRouter(prefix="/api/donations/stripe", tags=["donations"])

MAX_CHARGE_AMOUNT = 99_999_999
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class DonationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount: int = Field(gt=0, le=MAX_CHARGE_AMOUNT, description="Amount in the smallest currency unit")
    currency: str = Field(min_length=3, max_length=3, pattern=r"^[A-Za-z]{3}$")
    donor_name: str | None = Field(default=None, alias="donorName", max_length=255)
    donor_email: str | None = Field(default=None, alias="donorEmail", max_length=320, pattern=EMAIL_PATTERN)
    campaign_id: UUID = Field(alias="campaignId")


@router.post("/create", status_code=status.HTTP_200_OK)
def create_stripe_checkout_session(payload: DonationRequest, db: Session = Depends(get_db)) -> dict:
    logger.info("checkout_session_requested campaign_id=%s amount=%s", payload.campaign_id, payload.amount)
    result = create_checkout_session(
        db,
        campaign_id=payload.campaign_id,
        amount=payload.amount,
        currency=payload.currency,
        donor_name=payload.donor_name,
        donor_email=payload.donor_email,
    )
    db.commit()
    return {
        "sessionId": result.session_id,
        "url": result.checkout_url,
        "donationId": str(result.donation_id),
    }
