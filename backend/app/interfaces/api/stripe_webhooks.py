from fastapi import APIRouter, Depends, Header, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from app.application.services.stripe_webhook_service import WebhookVerificationError, process_stripe_webhook
from app.application.services.webhook_replay_guard import WebhookReplayGuard
from app.infrastructure.db.session import get_db
from app.interfaces.api.deps import get_raw_body, get_replay_guard

router = APIRouter(prefix="/api/donations/stripe", tags=["webhooks"])


@router.post("/webhook", status_code=status.HTTP_200_OK, response_class=PlainTextResponse)
def stripe_webhook(
    payload_bytes: bytes = Depends(get_raw_body),
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
    replay_guard: WebhookReplayGuard = Depends(get_replay_guard),
) -> PlainTextResponse:
    try:
        result = process_stripe_webhook(
            db,
            payload_bytes=payload_bytes,
            signature_header=stripe_signature,
            replay_guard=replay_guard,
        )
    except WebhookVerificationError as exc:
        return PlainTextResponse(exc.message, status_code=status.HTTP_400_BAD_REQUEST)
    return PlainTextResponse(result, status_code=status.HTTP_200_OK)
