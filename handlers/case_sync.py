"""
Case Sync — Refresh a stored case from the external source of record.

When any significant field changed, every follower gets a ``case-update``
email, a timeline event is appended, and the snapshot is stored. The
notifications are enqueued before the snapshot is written, under job ids
derived from the case's previous sync time and the new snapshot, so a
retried sync neither loses nor repeats them.
"""
from __future__ import annotations

import hashlib
import json
import structlog
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel

from handlers.context import HandlerContext
from job_queue.errors import CaseSyncError, RecordNotFoundError
from job_queue.message_queue import QueueJob
from job_queue.payloads import (
    BatchCaseSyncPayload, CaseSyncPayload, DailyCaseSyncPayload, NotificationPayload,
)
from models.schemas import (
    Case, CaseEvent, CaseSnapshot, NotificationChannel, SIGNIFICANT_CASE_FIELDS,
)

logger = structlog.get_logger()

UPDATE_EVENT_TITLE = "Case information updated"


class CaseSyncResult(BaseModel):
    case_id: str
    case_number: str
    has_significant_update: bool
    changed_fields: list[str] = []
    followers_notified: int = 0


class BatchCaseSyncResult(BaseModel):
    successful: int = 0
    failed: int = 0
    errors: list[str] = []


class DailyCaseSyncResult(BaseModel):
    case_count: int
    batch_job_id: str = ""


def _comparable(value: Any) -> Any:
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def diff_case(case: Case, snapshot: CaseSnapshot) -> list[str]:
    """Significant fields whose stored value differs from the snapshot."""
    return [
        f for f in SIGNIFICANT_CASE_FIELDS
        if _comparable(getattr(case, f)) != _comparable(getattr(snapshot, f))
    ]


def sync_fingerprint(case: Case, snapshot: CaseSnapshot) -> str:
    basis = {
        "case_id": case.id,
        "previous_sync": case.last_synced_at.isoformat() if case.last_synced_at else None,
        "snapshot": snapshot.model_dump(mode="json", include=set(SIGNIFICANT_CASE_FIELDS)),
    }
    return hashlib.sha256(json.dumps(basis, sort_keys=True).encode()).hexdigest()[:16]


async def sync_case(ctx: HandlerContext, case_id: str) -> CaseSyncResult:
    case = await ctx.store.get_case(case_id)
    if case is None:
        raise RecordNotFoundError("Case", case_id)

    snapshot = await ctx.case_source.fetch_case(case.case_number)
    if snapshot is None:
        raise CaseSyncError(f"Failed to sync case {case.case_number} from external API")

    changed = diff_case(case, snapshot)
    now = ctx.clock()
    notified = 0

    if changed:
        fingerprint = sync_fingerprint(case, snapshot)
        followers = await ctx.store.list_case_followers(case.id)
        for user in followers:
            await ctx.producer.schedule_notification(
                NotificationPayload(
                    user_id=user.id,
                    channel=NotificationChannel.EMAIL,
                    template="case-update",
                    data={
                        "caseId": case.id,
                        "caseNumber": snapshot.case_number,
                        "title": snapshot.title,
                        "userName": user.full_name or user.email,
                        "eventTitle": UPDATE_EVENT_TITLE,
                        "eventDate": now.isoformat(),
                    },
                ),
                job_id=f"case-update:{case.id}:{fingerprint}:{user.id}",
            )
            notified += 1

        await ctx.store.add_case_event(CaseEvent(
            id=fingerprint,
            case_id=case.id,
            title=UPDATE_EVENT_TITLE,
            description=f"Updated fields: {', '.join(changed)}",
            event_date=now,
            metadata={"changed_fields": changed, "source": "case-sync"},
        ))
        logger.info("case_update_detected",
                    case_id=case.id,
                    changed_fields=changed,
                    followers=notified)

    await ctx.store.apply_case_snapshot(case.id, snapshot, now)

    return CaseSyncResult(
        case_id=case.id,
        case_number=case.case_number,
        has_significant_update=bool(changed),
        changed_fields=changed,
        followers_notified=notified,
    )


async def handle_case_sync(ctx: HandlerContext, job: QueueJob, payload: CaseSyncPayload) -> CaseSyncResult:
    return await sync_case(ctx, payload.case_id)


async def handle_batch_case_sync(ctx: HandlerContext, job: QueueJob,
                                 payload: BatchCaseSyncPayload) -> BatchCaseSyncResult:
    result = BatchCaseSyncResult()
    for case_id in payload.case_ids:
        try:
            await sync_case(ctx, case_id)
            result.successful += 1
        except Exception as e:
            result.failed += 1
            result.errors.append(f"Case {case_id}: {e}")
            logger.warning("batch_case_sync_item_failed", case_id=case_id, error=str(e))

    logger.info("batch_case_sync_finished",
                job_id=job.job_id,
                successful=result.successful,
                failed=result.failed)
    return result


async def handle_daily_case_sync(ctx: HandlerContext, job: QueueJob,
                                 payload: DailyCaseSyncPayload) -> DailyCaseSyncResult:
    case_ids = await ctx.store.list_followed_case_ids()
    if not case_ids:
        logger.info("daily_case_sync_nothing_to_do")
        return DailyCaseSyncResult(case_count=0)

    batch_job_id = await ctx.producer.schedule_batch_case_sync(case_ids)
    logger.info("daily_case_sync_enqueued", case_count=len(case_ids), batch_job_id=batch_job_id)
    return DailyCaseSyncResult(case_count=len(case_ids), batch_job_id=batch_job_id)
