"""
InMemoryStore — Dict-backed store for development and testing.

Features:
  - Zero dependencies (no database, no Redis)
  - Full interface compatibility with SqlStore
  - Safe under asyncio (single event loop, no awaits inside mutations)
  - All data lost on process restart

Returned models are copies; mutate them and write back through the store.
"""
from __future__ import annotations

import structlog
from collections import defaultdict
from datetime import datetime
from typing import Any, Optional

from database.store_base import BaseStore
from models.schemas import (
    User, UserRole, SosIncident, SosStatus, CorruptionReport, ReportStatus,
    MediaAsset, UploadStatus, Case, CaseEvent, CaseFollow, CaseSnapshot,
    ModeratorWorkload, _utcnow,
)

logger = structlog.get_logger()

_OPEN_REPORT_STATUSES = (ReportStatus.UNDER_REVIEW, ReportStatus.INVESTIGATING)


def _copy(model):
    return model.model_copy(deep=True) if model is not None else None


class InMemoryStore(BaseStore):

    def __init__(self):
        self._users: dict[str, User] = {}
        self._incidents: dict[str, SosIncident] = {}
        self._dispatches: dict[str, dict[str, str]] = defaultdict(dict)   # incident_id → service → reference
        self._reports: dict[str, CorruptionReport] = {}
        self._media: dict[str, MediaAsset] = {}
        self._cases: dict[str, Case] = {}
        self._events: dict[str, list[CaseEvent]] = defaultdict(list)      # case_id → timeline
        self._follows: dict[tuple[str, str], CaseFollow] = {}             # (user_id, case_id) → follow
        self._deliveries: dict[str, dict[str, Any]] = {}                  # idempotency key → log entry
        logger.info("inmemory_store_initialized")

    # ── Users ─────────────────────────────────────────────

    async def get_user(self, user_id: str) -> Optional[User]:
        return _copy(self._users.get(user_id))

    async def upsert_user(self, user: User) -> User:
        self._users[user.id] = _copy(user)
        return user

    async def list_users_by_role(self, roles: tuple[UserRole, ...], active_only: bool = True) -> list[User]:
        return [
            _copy(u) for u in self._users.values()
            if u.role in roles and (u.is_active or not active_only)
        ]

    # ── SOS incidents ─────────────────────────────────────

    async def get_sos_incident(self, incident_id: str) -> Optional[SosIncident]:
        return _copy(self._incidents.get(incident_id))

    async def create_sos_incident(self, incident: SosIncident) -> SosIncident:
        self._incidents[incident.id] = _copy(incident)
        return incident

    async def set_sos_status(self, incident_id: str, status: SosStatus) -> Optional[SosIncident]:
        incident = self._incidents.get(incident_id)
        if incident is None:
            return None
        incident.status = status
        incident.updated_at = _utcnow()
        return _copy(incident)

    async def get_dispatched_services(self, incident_id: str) -> set[str]:
        return set(self._dispatches.get(incident_id, {}))

    async def record_dispatch(self, incident_id: str, service: str, reference: str = "") -> None:
        self._dispatches[incident_id].setdefault(service, reference)

    # ── Corruption reports ────────────────────────────────

    async def get_report(self, report_id: str) -> Optional[CorruptionReport]:
        return _copy(self._reports.get(report_id))

    async def create_report(self, report: CorruptionReport) -> CorruptionReport:
        self._reports[report.id] = _copy(report)
        return report

    async def update_report(self, report_id: str, **fields: Any) -> Optional[CorruptionReport]:
        report = self._reports.get(report_id)
        if report is None:
            return None
        updated = report.model_copy(update={**fields, "updated_at": _utcnow()})
        self._reports[report_id] = updated
        return _copy(updated)

    async def add_media_asset(self, asset: MediaAsset) -> MediaAsset:
        self._media[asset.id] = _copy(asset)
        return asset

    async def count_completed_media(self, report_id: str) -> int:
        return sum(
            1 for m in self._media.values()
            if m.corruption_report_id == report_id and m.upload_status == UploadStatus.COMPLETED
        )

    async def get_moderator_workloads(self, exclude_report_id: str = "") -> list[ModeratorWorkload]:
        moderators = [u for u in self._users.values() if u.role == UserRole.MODERATOR and u.is_active]
        counts: dict[str, int] = defaultdict(int)
        for r in self._reports.values():
            if r.id != exclude_report_id and r.assigned_to and r.status in _OPEN_REPORT_STATUSES:
                counts[r.assigned_to] += 1
        return [ModeratorWorkload(moderator_id=m.id, workload=counts[m.id]) for m in moderators]

    # ── Cases ─────────────────────────────────────────────

    async def get_case(self, case_id: str) -> Optional[Case]:
        return _copy(self._cases.get(case_id))

    async def get_case_by_number(self, case_number: str) -> Optional[Case]:
        for case in self._cases.values():
            if case.case_number == case_number:
                return _copy(case)
        return None

    async def upsert_case(self, case: Case) -> Case:
        self._cases[case.id] = _copy(case)
        return case

    async def apply_case_snapshot(self, case_id: str, snapshot: CaseSnapshot, synced_at: datetime) -> Optional[Case]:
        case = self._cases.get(case_id)
        if case is None:
            return None
        updated = case.model_copy(update={
            "title": snapshot.title,
            "court": snapshot.court,
            "judge": snapshot.judge,
            "status": snapshot.status,
            "next_hearing": snapshot.next_hearing,
            "last_synced_at": synced_at,
            "updated_at": _utcnow(),
        })
        self._cases[case_id] = updated
        return _copy(updated)

    async def add_case_event(self, event: CaseEvent) -> CaseEvent:
        timeline = self._events[event.case_id]
        if all(e.id != event.id for e in timeline):
            timeline.append(_copy(event))
        return event

    async def list_case_events(self, case_id: str) -> list[CaseEvent]:
        return [_copy(e) for e in self._events.get(case_id, [])]

    async def follow_case(self, user_id: str, case_id: str) -> CaseFollow:
        key = (user_id, case_id)
        if key not in self._follows:
            self._follows[key] = CaseFollow(user_id=user_id, case_id=case_id)
        return _copy(self._follows[key])

    async def is_following(self, user_id: str, case_id: str) -> bool:
        return (user_id, case_id) in self._follows

    async def list_case_followers(self, case_id: str) -> list[User]:
        return [
            _copy(self._users[uid])
            for (uid, cid) in self._follows
            if cid == case_id and uid in self._users
        ]

    async def list_followed_case_ids(self) -> list[str]:
        seen: dict[str, None] = {}
        for _, case_id in self._follows:
            seen.setdefault(case_id, None)
        return list(seen)

    # ── Notification delivery log ─────────────────────────

    async def has_delivery(self, idempotency_key: str) -> bool:
        return idempotency_key in self._deliveries

    async def record_delivery(
        self, idempotency_key: str, user_id: str, channel: str,
        template: str, message_id: str = "",
    ) -> None:
        self._deliveries.setdefault(idempotency_key, {
            "user_id": user_id,
            "channel": channel,
            "template": template,
            "message_id": message_id,
            "sent_at": _utcnow(),
        })
