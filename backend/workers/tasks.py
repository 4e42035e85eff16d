import logging
from datetime import UTC, datetime

from app.application.services.processed_event_service import purge_processed_events as purge_processed_events_service
from app.core.config import settings
from app.infrastructure.cache.redis_client import get_redis_client
from app.infrastructure.db.session import SessionLocal
from app.infrastructure.observability.metrics import PROCESSED_EVENTS_PURGED_TOTAL, measure_redis
from workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="workers.tasks.worker_heartbeat")
def worker_heartbeat() -> dict:
    redis_client = get_redis_client()
    now = datetime.now(UTC).isoformat()
    with measure_redis("worker_heartbeat_set"):
        redis_client.set(
            settings.worker_heartbeat_key,
            now,
            ex=max(15, settings.worker_heartbeat_ttl_seconds),
        )
    return {"heartbeat_at": now}


@celery_app.task(name="workers.tasks.purge_processed_events")
def purge_processed_events() -> dict:
    with SessionLocal() as db:
        purged = purge_processed_events_service(db, retention_seconds=settings.processed_event_retention_seconds)
        db.commit()
    PROCESSED_EVENTS_PURGED_TOTAL.inc(purged)
    logger.info("processed_events_purge completed purged=%s", purged)
    return {"purged": purged}
