"""
Queue stats and job-system health.

Health levels:
  unhealthy  any queue's worker pool is not running
  degraded   every pool runs but some queue holds more failed jobs than the threshold
  healthy    otherwise
"""
from __future__ import annotations

import structlog
from typing import Any

from job_queue.message_queue import MessageQueue
from job_queue.payloads import Queues

logger = structlog.get_logger()

DEFAULT_FAILED_THRESHOLD = 10


async def get_queue_stats(queue: MessageQueue) -> dict[str, Any]:
    queues = []
    for name in Queues.ALL:
        counts = await queue.get_counts(name)
        queues.append({"name": name, **counts})
    return {"queues": queues}


async def check_job_system_health(scheduler, failed_threshold: int = DEFAULT_FAILED_THRESHOLD) -> dict[str, Any]:
    stats = await get_queue_stats(scheduler.queue)
    workers = []
    for name in Queues.ALL:
        consumer = scheduler.consumers.get(name)
        workers.append({"name": name, "status": "running" if consumer and consumer.running else "stopped"})

    if any(w["status"] != "running" for w in workers):
        status = "unhealthy"
    elif any(q["failed"] > failed_threshold for q in stats["queues"]):
        status = "degraded"
    else:
        status = "healthy"

    if status != "healthy":
        logger.warning("job_system_health_check", status=status)

    return {"status": status, "workers": workers, "queues": stats["queues"]}
