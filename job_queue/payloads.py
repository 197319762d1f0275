"""
Job kinds and their typed payloads.

Every job kind is bound to exactly one queue. Payloads form a tagged union
keyed on ``kind`` so the worker can dispatch on a closed set of types.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from job_queue.errors import UnknownJobKindError
from models.schemas import Location, NotificationChannel, SosPriority, UserContact


# ──────────────────────────────────────────────────────────────
#  Queue Names & Job Kinds
# ──────────────────────────────────────────────────────────────

class Queues:
    SOS_DISPATCH = "sos-dispatch"
    NOTIFICATIONS = "notifications"
    CASE_SYNC = "case-sync"
    REPORT_TRIAGE = "report-triage"

    ALL = (SOS_DISPATCH, NOTIFICATIONS, CASE_SYNC, REPORT_TRIAGE)


class JobKind(str, Enum):
    DISPATCH_SOS = "dispatch-sos"
    SEND_NOTIFICATION = "send-notification"
    CLEANUP_OLD_JOBS = "cleanup-old-jobs"
    SYNC_CASE = "sync-case"
    BATCH_SYNC_CASES = "batch-sync-cases"
    DAILY_CASE_SYNC = "daily-case-sync"
    TRIAGE_REPORT = "triage-report"


KIND_QUEUE: dict[JobKind, str] = {
    JobKind.DISPATCH_SOS: Queues.SOS_DISPATCH,
    JobKind.SEND_NOTIFICATION: Queues.NOTIFICATIONS,
    JobKind.CLEANUP_OLD_JOBS: Queues.NOTIFICATIONS,
    JobKind.SYNC_CASE: Queues.CASE_SYNC,
    JobKind.BATCH_SYNC_CASES: Queues.CASE_SYNC,
    JobKind.DAILY_CASE_SYNC: Queues.CASE_SYNC,
    JobKind.TRIAGE_REPORT: Queues.REPORT_TRIAGE,
}


def kinds_for_queue(queue: str) -> set[JobKind]:
    return {kind for kind, q in KIND_QUEUE.items() if q == queue}


# ──────────────────────────────────────────────────────────────
#  Payloads
# ──────────────────────────────────────────────────────────────

class SosDispatchPayload(BaseModel):
    kind: Literal["dispatch-sos"] = "dispatch-sos"
    incident_id: str
    location: Location
    description: str
    priority: SosPriority = SosPriority.MEDIUM
    user_contact: UserContact


class NotificationPayload(BaseModel):
    kind: Literal["send-notification"] = "send-notification"
    user_id: str
    channel: NotificationChannel = NotificationChannel.EMAIL
    template: str
    data: dict[str, Any] = {}


class CleanupPayload(BaseModel):
    kind: Literal["cleanup-old-jobs"] = "cleanup-old-jobs"
    grace_days: Optional[int] = None


class CaseSyncPayload(BaseModel):
    kind: Literal["sync-case"] = "sync-case"
    case_id: str
    last_sync_at: Optional[datetime] = None


class BatchCaseSyncPayload(BaseModel):
    kind: Literal["batch-sync-cases"] = "batch-sync-cases"
    case_ids: list[str]


class DailyCaseSyncPayload(BaseModel):
    kind: Literal["daily-case-sync"] = "daily-case-sync"


class ReportTriagePayload(BaseModel):
    kind: Literal["triage-report"] = "triage-report"
    report_id: str
    department: str = ""


JobPayload = Annotated[
    Union[
        SosDispatchPayload,
        NotificationPayload,
        CleanupPayload,
        CaseSyncPayload,
        BatchCaseSyncPayload,
        DailyCaseSyncPayload,
        ReportTriagePayload,
    ],
    Field(discriminator="kind"),
]

_payload_adapter: TypeAdapter = TypeAdapter(JobPayload)


def parse_payload(kind: str, data: dict[str, Any]) -> BaseModel:
    """Validate a raw payload dict against the model for ``kind``."""
    try:
        JobKind(kind)
    except ValueError:
        raise UnknownJobKindError(kind) from None
    return _payload_adapter.validate_python({**data, "kind": kind})


def dump_payload(kind: JobKind, payload: BaseModel | dict[str, Any]) -> dict[str, Any]:
    """Validate then serialise a payload into the JSON dict stored on the job."""
    raw = payload.model_dump(mode="json") if isinstance(payload, BaseModel) else dict(payload)
    model = parse_payload(kind.value, raw)
    data = model.model_dump(mode="json")
    data.pop("kind", None)
    return data
