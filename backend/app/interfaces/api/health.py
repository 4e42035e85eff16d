from time import perf_counter

from fastapi import APIRouter, Request, Response, status
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.infrastructure.cache.redis_client import get_redis_client
from app.infrastructure.db.session import SessionLocal
from app.infrastructure.observability.metrics import measure_redis, metrics_response

router = APIRouter()


def _database_status() -> tuple[str, float | None]:
    try:
        started_at = perf_counter()
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        return "up", round((perf_counter() - started_at) * 1000, 2)
    except SQLAlchemyError:
        return "down", None


def _redis_status() -> tuple[str, bool, float | None]:
    try:
        redis_client = get_redis_client()
        started_at = perf_counter()
        with measure_redis("health_ping"):
            redis_client.ping()
        latency_ms = round((perf_counter() - started_at) * 1000, 2)
        with measure_redis("health_worker_heartbeat_check"):
            worker_alive = bool(redis_client.exists(settings.worker_heartbeat_key))
        return "up", worker_alive, latency_ms
    except RedisError:
        return "down", False, None


@router.get("/health", status_code=status.HTTP_200_OK)
def health_check(request: Request) -> dict:
    db_status, db_latency_ms = _database_status()
    redis_status, worker_alive, redis_latency_ms = _redis_status()
    replay_guard = getattr(request.app.state, "replay_guard", None)

    overall = "ok" if db_status == "up" and redis_status == "up" and worker_alive else "degraded"

    return {
        "status": overall,
        "services": {
            "api": "up",
            "database": db_status,
            "redis": redis_status,
            "worker_alive": worker_alive,
            "db_latency_ms": db_latency_ms,
            "redis_latency_ms": redis_latency_ms,
            "replay_guard_entries": len(replay_guard) if replay_guard is not None else None,
        },
    }


@router.get("/ready", status_code=status.HTTP_200_OK)
def readiness_check(request: Request, response: Response) -> dict:
    payload = health_check(request)
    # Webhooks need the database only; redis and the worker are reported, not gated.
    if payload["services"]["database"] != "up":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not_ready", "services": payload["services"]}
    return {"status": "ready", "services": payload["services"]}


@router.get("/metrics", include_in_schema=False)
def metrics():
    return metrics_response()
