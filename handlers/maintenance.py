"""Housekeeping jobs that keep the queue store bounded."""
from __future__ import annotations

import structlog
from pydantic import BaseModel

from handlers.context import HandlerContext
from job_queue.message_queue import JobState, QueueJob
from job_queue.payloads import CleanupPayload, Queues

logger = structlog.get_logger()

DAY_MS = 24 * 60 * 60 * 1000


class CleanupResult(BaseModel):
    grace_days: int
    removed: dict[str, int] = {}


async def handle_cleanup(ctx: HandlerContext, job: QueueJob, payload: CleanupPayload) -> CleanupResult:
    """Purge completed jobs older than the grace window from every queue."""
    grace_days = payload.grace_days if payload.grace_days is not None else ctx.cleanup_grace_days
    removed: dict[str, int] = {}
    for name in Queues.ALL:
        removed[name] = await ctx.queue.clean(name, grace_days * DAY_MS, JobState.COMPLETED)

    logger.info("old_jobs_cleaned", grace_days=grace_days, removed=removed)
    return CleanupResult(grace_days=grace_days, removed=removed)
