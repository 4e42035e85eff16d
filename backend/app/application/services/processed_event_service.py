from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.domain.models.processed_event import ProcessedEvent

logger = logging.getLogger(__name__)


def _event_exists(db: Session, event_id: str) -> bool:
    existing = db.execute(select(ProcessedEvent.id).where(ProcessedEvent.event_id == event_id)).scalar_one_or_none()
    return existing is not None


def is_replay_and_record(
    db: Session,
    *,
    event_id: str | None,
    event_type: str = "unknown",
    now: datetime | None = None,
) -> bool:
    """Durable check-and-record of a provider event id.

    Commits its own transaction so the record survives a later failure in
    event handling. A concurrent writer that wins the unique constraint
    makes this call report a replay instead of raising.
    """
    if event_id is None or not event_id.strip():
        return False

    if _event_exists(db, event_id):
        return True

    db.add(ProcessedEvent(event_id=event_id, event_type=event_type, received_at=now or datetime.now(UTC)))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("processed_event_insert_race event_id=%s event_type=%s", event_id, event_type)
        return True
    return False


def purge_processed_events(db: Session, *, retention_seconds: int, now: datetime | None = None) -> int:
    cutoff = (now or datetime.now(UTC)) - timedelta(seconds=retention_seconds)
    result = db.execute(delete(ProcessedEvent).where(ProcessedEvent.received_at < cutoff))
    purged = int(result.rowcount or 0)
    if purged:
        logger.info("processed_events_purged count=%s cutoff=%s", purged, cutoff.isoformat())
    return purged
