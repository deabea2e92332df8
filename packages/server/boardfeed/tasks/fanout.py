"""
Deferred job handlers and the ARQ worker that runs them.

The same handlers back both fan-out backends: the in-process ``FanOutQueue``
calls them with its own session, ARQ workers call the wrappers below.

Run a worker with: ``arq boardfeed.tasks.fanout.WorkerSettings``
"""

from __future__ import annotations

import uuid
from datetime import datetime

import structlog
from arq.worker import func

from boardfeed.core.config import get_settings
from boardfeed.core.database import get_session_context
from boardfeed.core.logging import configure_logging
from boardfeed.core.redis import redis_settings
from boardfeed.services.activity import FAN_OUT_JOB, fan_out_event
from boardfeed.services.membership import SUBSCRIBE_JOB
from boardfeed.services.subscriptions import subscribe_user_to_board

log = structlog.get_logger()
settings = get_settings()

JOB_HANDLERS = {
    FAN_OUT_JOB: fan_out_event,
    SUBSCRIBE_JOB: subscribe_user_to_board,
}


async def fan_out_event_job(ctx: dict, event_id: int) -> int:
    async with get_session_context() as session:
        return await fan_out_event(session, event_id)


async def subscribe_user_to_board_job(
    ctx: dict,
    org_id: uuid.UUID,
    board_id: uuid.UUID,
    user_id: uuid.UUID,
    at: datetime | None = None,
) -> bool:
    async with get_session_context() as session:
        return await subscribe_user_to_board(session, org_id, board_id, user_id, at)


async def on_startup(ctx: dict) -> None:
    configure_logging(settings.log_level, settings.log_format)
    log.info("fanout.worker_started")


# ARQ worker settings
class WorkerSettings:
    """ARQ worker configuration."""

    functions = [
        func(fan_out_event_job, name=FAN_OUT_JOB),
        func(subscribe_user_to_board_job, name=SUBSCRIBE_JOB),
    ]
    on_startup = on_startup
    redis_settings = redis_settings()
    max_tries = settings.fanout_max_attempts
    # One job at a time keeps per-card events in enqueue order
    max_jobs = 1
