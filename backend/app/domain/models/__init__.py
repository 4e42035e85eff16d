from app.domain.models.campaign import Campaign
from app.domain.models.donation import Donation, DonationStatus
from app.domain.models.processed_event import ProcessedEvent

__all__ = [
    "Campaign",
    "Donation",
    "DonationStatus",
    "ProcessedEvent",
]
