from fastapi import APIRouter

from app.interfaces.api.donations import router as donations_router
from app.interfaces.api.health import router as health_router
from app.interfaces.api.stripe_webhooks import router as stripe_webhooks_router

api_router = APIRouter()
api_router.include_router(health_router, tags=["health"])
api_router.include_router(donations_router)
api_router.include_router(stripe_webhooks_router)
