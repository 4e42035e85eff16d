from fastapi import Request

from app.application.services.webhook_replay_guard import WebhookReplayGuard


def get_replay_guard(request: Request) -> WebhookReplayGuard:
    return request.app.state.replay_guard


async def get_raw_body(request: Request) -> bytes:
    return await request.body()
