"""Celery worker and beat schedule for the booking sweep.

Run both with:
    celery -A courtslot.worker worker --beat --loglevel=info
"""

import asyncio
import logging

from celery import Celery

from courtslot.core.config import settings
from courtslot.core.database import async_session_factory, engine
from courtslot.services.sweep import run_sweep

logger = logging.getLogger(__name__)

celery_app = Celery(
    "courtslot",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone=settings.timezone,
    enable_utc=True,
    beat_schedule={
        "booking-sweep": {
            "task": "courtslot.sweep",
            "schedule": float(settings.sweep_interval_seconds),
            # A tick that could not start before the next one is due is useless
            "options": {"expires": float(settings.sweep_interval_seconds)},
        },
    },
)


async def _tick() -> dict:
    try:
        return await run_sweep(async_session_factory)
    finally:
        # Each task runs in a fresh event loop; pooled connections must not outlive it
        await engine.dispose()


@celery_app.task(name="courtslot.sweep")
def sweep() -> dict:
    summary = asyncio.run(_tick())
    logger.info("Sweep tick: %s", summary)
    return summary
