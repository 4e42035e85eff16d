from celery import Celery
from celery.schedules import schedule
from kombu import Queue

from app.core.config import settings

celery_app = Celery(
    "foundation",
    broker=settings.cache_redis_url,
    backend=settings.cache_redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_default_queue="maintenance",
    task_queues=(Queue("maintenance"),),
    task_routes={
        "workers.tasks.purge_processed_events": {"queue": "maintenance"},
        "workers.tasks.worker_heartbeat": {"queue": "maintenance"},
    },
    beat_schedule={
        "processed-events-purge": {
            "task": "workers.tasks.purge_processed_events",
            "schedule": schedule(float(settings.processed_event_purge_interval_seconds)),
            "options": {"queue": "maintenance"},
        },
        "worker-heartbeat-every-15s": {
            "task": "workers.tasks.worker_heartbeat",
            "schedule": schedule(15.0),
            "options": {"queue": "maintenance"},
        },
    },
)

celery_app.autodiscover_tasks(["workers"])
