"""
Job Producer — Typed entry points for putting work on the queues.

Each helper validates its payload and stamps the retry/backoff/delay
defaults for its job kind. Nothing else happens on the caller's path:
the helper returns as soon as the job is stored.
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

from pydantic import BaseModel

from job_queue.message_queue import BackoffPolicy, MessageQueue, QueueJob
from job_queue.payloads import (
    KIND_QUEUE, JobKind, Queues,
    SosDispatchPayload, NotificationPayload, CleanupPayload,
    CaseSyncPayload, BatchCaseSyncPayload, DailyCaseSyncPayload,
    ReportTriagePayload, dump_payload,
)
from models.schemas import SosPriority

logger = structlog.get_logger()


SOS_PRIORITY_WEIGHT: dict[str, int] = {
    SosPriority.CRITICAL.value: 1,
    SosPriority.HIGH.value: 2,
    SosPriority.MEDIUM.value: 3,
    SosPriority.LOW.value: 4,
}
DEFAULT_PRIORITY = 3


def priority_weight(priority: SosPriority | str) -> int:
    """Queue priority for an SOS priority. Unknown values sit in the middle."""
    value = priority.value if isinstance(priority, SosPriority) else str(priority)
    return SOS_PRIORITY_WEIGHT.get(value, DEFAULT_PRIORITY)


class JobProducer:
    """
    Usage:
        producer = JobProducer(queue)
        job_id = await producer.schedule_notification(payload)
    """

    def __init__(self, queue: MessageQueue):
        self.queue = queue

    async def enqueue(
        self,
        queue_name: str,
        kind: JobKind,
        payload: BaseModel | dict[str, Any],
        *,
        priority: int = DEFAULT_PRIORITY,
        delay_ms: int = 0,
        max_attempts: int = 1,
        backoff: Optional[BackoffPolicy] = None,
        job_id: str = "",
    ) -> str:
        """Validate and store one job. Returns its id (the existing id for a duplicate)."""
        kind = JobKind(kind)
        expected = KIND_QUEUE[kind]
        if queue_name != expected:
            raise ValueError(f"Job kind '{kind.value}' belongs on queue '{expected}', not '{queue_name}'")

        job = QueueJob(
            queue=queue_name,
            kind=kind.value,
            payload=dump_payload(kind, payload),
            priority=priority,
            max_attempts=max_attempts,
            backoff=backoff,
            delay_ms=delay_ms,
            job_id=job_id,
        )
        return await self.queue.add(job)

    # ── typed helpers ────────────────────────────────────────

    async def schedule_sos_dispatch(self, payload: SosDispatchPayload) -> str:
        return await self.enqueue(
            Queues.SOS_DISPATCH, JobKind.DISPATCH_SOS, payload,
            priority=priority_weight(payload.priority),
            max_attempts=3,
            backoff=BackoffPolicy("exponential", 5000),
        )

    async def schedule_notification(
        self,
        payload: NotificationPayload,
        job_id: str = "",
    ) -> str:
        return await self.enqueue(
            Queues.NOTIFICATIONS, JobKind.SEND_NOTIFICATION, payload,
            max_attempts=3,
            backoff=BackoffPolicy("exponential", 2000),
            job_id=job_id,
        )

    async def schedule_case_sync(self, payload: CaseSyncPayload) -> str:
        return await self.enqueue(
            Queues.CASE_SYNC, JobKind.SYNC_CASE, payload,
            max_attempts=2,
            backoff=BackoffPolicy("exponential", 10000),
        )

    async def schedule_batch_case_sync(self, case_ids: list[str]) -> str:
        return await self.enqueue(
            Queues.CASE_SYNC, JobKind.BATCH_SYNC_CASES,
            BatchCaseSyncPayload(case_ids=case_ids),
            max_attempts=1,
            delay_ms=60000,
        )

    async def schedule_report_triage(self, payload: ReportTriagePayload) -> str:
        return await self.enqueue(
            Queues.REPORT_TRIAGE, JobKind.TRIAGE_REPORT, payload,
            max_attempts=2,
            delay_ms=5000,
            backoff=BackoffPolicy("exponential", 5000),
        )

    async def schedule_daily_case_sync(self, job_id: str = "") -> str:
        return await self.enqueue(
            Queues.CASE_SYNC, JobKind.DAILY_CASE_SYNC, DailyCaseSyncPayload(),
            job_id=job_id,
        )

    async def schedule_cleanup(self, grace_days: Optional[int] = None, job_id: str = "") -> str:
        return await self.enqueue(
            Queues.NOTIFICATIONS, JobKind.CLEANUP_OLD_JOBS,
            CleanupPayload(grace_days=grace_days),
            job_id=job_id,
        )
