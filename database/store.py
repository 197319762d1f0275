"""
SqlStore — Portable SQL queries for PostgreSQL, MySQL, SQLite.

Every method opens its own short transaction through get_session().
SQLite hands back naive datetimes; rows are normalised to UTC on the
way out so callers can compare against timezone-aware values.
"""
from __future__ import annotations

import structlog
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select, func

from database.models import (
    UserRow, SosIncidentRow, SosDispatchRow, CorruptionReportRow,
    MediaAssetRow, CaseRow, CaseEventRow, CaseFollowRow, NotificationLogRow,
)
from database.session import get_session
from database.store_base import BaseStore
from models.schemas import (
    User, UserRole, SosIncident, SosStatus, Location, CorruptionReport,
    ReportStatus, MediaAsset, UploadStatus, Case, CaseEvent, CaseFollow,
    CaseSnapshot, ModeratorWorkload,
)

logger = structlog.get_logger()

_OPEN_REPORT_STATUSES = (ReportStatus.UNDER_REVIEW.value, ReportStatus.INVESTIGATING.value)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


class SqlStore(BaseStore):
    """
    Persistent store backed by any SQLAlchemy-supported database.
    Works with PostgreSQL, MySQL 8+, and SQLite.
    """

    # ── Users ──────────────────────────────────────────────

    async def get_user(self, user_id: str) -> Optional[User]:
        async with get_session() as db:
            row = await db.get(UserRow, user_id)
            return self._row_to_user(row) if row else None

    async def upsert_user(self, user: User) -> User:
        async with get_session() as db:
            row = await db.get(UserRow, user.id)
            if row is None:
                row = UserRow(id=user.id, created_at=user.created_at)
                db.add(row)
            row.email = user.email
            row.phone = user.phone
            row.first_name = user.first_name
            row.last_name = user.last_name
            row.role = user.role.value
            row.is_active = user.is_active
            return user

    async def list_users_by_role(self, roles: tuple[UserRole, ...], active_only: bool = True) -> list[User]:
        async with get_session() as db:
            stmt = select(UserRow).where(UserRow.role.in_([r.value for r in roles]))
            if active_only:
                stmt = stmt.where(UserRow.is_active.is_(True))
            result = await db.execute(stmt.order_by(UserRow.id))
            return [self._row_to_user(r) for r in result.scalars()]

    # ── SOS incidents ──────────────────────────────────────

    async def get_sos_incident(self, incident_id: str) -> Optional[SosIncident]:
        async with get_session() as db:
            row = await db.get(SosIncidentRow, incident_id)
            return self._row_to_incident(row) if row else None

    async def create_sos_incident(self, incident: SosIncident) -> SosIncident:
        async with get_session() as db:
            db.add(SosIncidentRow(
                id=incident.id,
                user_id=incident.user_id,
                latitude=incident.location.lat,
                longitude=incident.location.lng,
                address=incident.location.address,
                description=incident.description,
                priority=incident.priority.value,
                status=incident.status.value,
                created_at=incident.created_at,
                updated_at=incident.updated_at,
            ))
            return incident

    async def set_sos_status(self, incident_id: str, status: SosStatus) -> Optional[SosIncident]:
        async with get_session() as db:
            row = await db.get(SosIncidentRow, incident_id)
            if row is None:
                return None
            row.status = status.value
            row.updated_at = datetime.now(timezone.utc)
            await db.flush()
            return self._row_to_incident(row)

    async def get_dispatched_services(self, incident_id: str) -> set[str]:
        async with get_session() as db:
            stmt = select(SosDispatchRow.service).where(SosDispatchRow.incident_id == incident_id)
            result = await db.execute(stmt)
            return set(result.scalars())

    async def record_dispatch(self, incident_id: str, service: str, reference: str = "") -> None:
        async with get_session() as db:
            stmt = select(SosDispatchRow).where(
                SosDispatchRow.incident_id == incident_id,
                SosDispatchRow.service == service,
            )
            if (await db.execute(stmt)).scalar_one_or_none() is None:
                db.add(SosDispatchRow(incident_id=incident_id, service=service, reference=reference))

    # ── Corruption reports ─────────────────────────────────

    async def get_report(self, report_id: str) -> Optional[CorruptionReport]:
        async with get_session() as db:
            row = await db.get(CorruptionReportRow, report_id)
            return self._row_to_report(row) if row else None

    async def create_report(self, report: CorruptionReport) -> CorruptionReport:
        async with get_session() as db:
            db.add(CorruptionReportRow(
                id=report.id,
                user_id=report.user_id,
                title=report.title,
                description=report.description,
                department=report.department,
                official_name=report.official_name,
                location=report.location,
                incident_date=report.incident_date,
                status=report.status.value,
                assigned_to=report.assigned_to,
                resolution=report.resolution,
                is_anonymous=report.is_anonymous,
                created_at=report.created_at,
                updated_at=report.updated_at,
            ))
            return report

    async def update_report(self, report_id: str, **fields: Any) -> Optional[CorruptionReport]:
        async with get_session() as db:
            row = await db.get(CorruptionReportRow, report_id)
            if row is None:
                return None
            for key, value in fields.items():
                setattr(row, key, _enum_value(value))
            row.updated_at = datetime.now(timezone.utc)
            await db.flush()
            return self._row_to_report(row)

    async def add_media_asset(self, asset: MediaAsset) -> MediaAsset:
        async with get_session() as db:
            db.add(MediaAssetRow(
                id=asset.id,
                filename=asset.filename,
                content_type=asset.content_type,
                size_bytes=asset.size_bytes,
                upload_status=asset.upload_status.value,
                corruption_report_id=asset.corruption_report_id,
                sos_incident_id=asset.sos_incident_id,
                created_at=asset.created_at,
            ))
            return asset

    async def count_completed_media(self, report_id: str) -> int:
        async with get_session() as db:
            stmt = select(func.count()).select_from(MediaAssetRow).where(
                MediaAssetRow.corruption_report_id == report_id,
                MediaAssetRow.upload_status == UploadStatus.COMPLETED.value,
            )
            return int((await db.execute(stmt)).scalar_one())

    async def get_moderator_workloads(self, exclude_report_id: str = "") -> list[ModeratorWorkload]:
        async with get_session() as db:
            mods = await db.execute(
                select(UserRow.id)
                .where(UserRow.role == UserRole.MODERATOR.value, UserRow.is_active.is_(True))
                .order_by(UserRow.id)
            )
            moderator_ids = list(mods.scalars())

            stmt = (
                select(CorruptionReportRow.assigned_to, func.count())
                .where(
                    CorruptionReportRow.status.in_(_OPEN_REPORT_STATUSES),
                    CorruptionReportRow.assigned_to.is_not(None),
                )
                .group_by(CorruptionReportRow.assigned_to)
            )
            if exclude_report_id:
                stmt = stmt.where(CorruptionReportRow.id != exclude_report_id)
            counts = {assignee: n for assignee, n in (await db.execute(stmt)).all()}

            return [
                ModeratorWorkload(moderator_id=mid, workload=int(counts.get(mid, 0)))
                for mid in moderator_ids
            ]

    # ── Cases ──────────────────────────────────────────────

    async def get_case(self, case_id: str) -> Optional[Case]:
        async with get_session() as db:
            row = await db.get(CaseRow, case_id)
            return self._row_to_case(row) if row else None

    async def get_case_by_number(self, case_number: str) -> Optional[Case]:
        async with get_session() as db:
            stmt = select(CaseRow).where(CaseRow.case_number == case_number)
            row = (await db.execute(stmt)).scalar_one_or_none()
            return self._row_to_case(row) if row else None

    async def upsert_case(self, case: Case) -> Case:
        async with get_session() as db:
            row = await db.get(CaseRow, case.id)
            if row is None:
                row = CaseRow(id=case.id, created_at=case.created_at)
                db.add(row)
            row.case_number = case.case_number
            row.title = case.title
            row.description = case.description
            row.court = case.court
            row.judge = case.judge
            row.status = case.status.value
            row.filing_date = case.filing_date
            row.next_hearing = case.next_hearing
            row.last_synced_at = case.last_synced_at
            return case

    async def apply_case_snapshot(self, case_id: str, snapshot: CaseSnapshot, synced_at: datetime) -> Optional[Case]:
        async with get_session() as db:
            row = await db.get(CaseRow, case_id)
            if row is None:
                return None
            row.title = snapshot.title
            row.court = snapshot.court
            row.judge = snapshot.judge
            row.status = snapshot.status.value
            row.next_hearing = snapshot.next_hearing
            row.last_synced_at = synced_at
            await db.flush()
            return self._row_to_case(row)

    async def add_case_event(self, event: CaseEvent) -> CaseEvent:
        async with get_session() as db:
            if await db.get(CaseEventRow, event.id) is not None:
                return event
            db.add(CaseEventRow(
                id=event.id,
                case_id=event.case_id,
                title=event.title,
                description=event.description,
                event_date=event.event_date,
                metadata_=event.metadata,
            ))
            return event

    async def list_case_events(self, case_id: str) -> list[CaseEvent]:
        async with get_session() as db:
            stmt = (
                select(CaseEventRow)
                .where(CaseEventRow.case_id == case_id)
                .order_by(CaseEventRow.event_date)
            )
            result = await db.execute(stmt)
            return [
                CaseEvent(
                    id=r.id, case_id=r.case_id, title=r.title,
                    description=r.description or "",
                    event_date=_aware(r.event_date),
                    metadata=r.metadata_ or {},
                )
                for r in result.scalars()
            ]

    async def follow_case(self, user_id: str, case_id: str) -> CaseFollow:
        async with get_session() as db:
            row = await db.get(CaseFollowRow, (user_id, case_id))
            if row is None:
                row = CaseFollowRow(user_id=user_id, case_id=case_id, created_at=datetime.now(timezone.utc))
                db.add(row)
            return CaseFollow(user_id=user_id, case_id=case_id, created_at=_aware(row.created_at))

    async def is_following(self, user_id: str, case_id: str) -> bool:
        async with get_session() as db:
            return await db.get(CaseFollowRow, (user_id, case_id)) is not None

    async def list_case_followers(self, case_id: str) -> list[User]:
        async with get_session() as db:
            stmt = (
                select(UserRow)
                .join(CaseFollowRow, CaseFollowRow.user_id == UserRow.id)
                .where(CaseFollowRow.case_id == case_id)
                .order_by(UserRow.id)
            )
            result = await db.execute(stmt)
            return [self._row_to_user(r) for r in result.scalars()]

    async def list_followed_case_ids(self) -> list[str]:
        async with get_session() as db:
            stmt = select(CaseFollowRow.case_id).distinct().order_by(CaseFollowRow.case_id)
            result = await db.execute(stmt)
            return list(result.scalars())

    # ── Notification delivery log ──────────────────────────

    async def has_delivery(self, idempotency_key: str) -> bool:
        async with get_session() as db:
            return await db.get(NotificationLogRow, idempotency_key) is not None

    async def record_delivery(
        self, idempotency_key: str, user_id: str, channel: str,
        template: str, message_id: str = "",
    ) -> None:
        async with get_session() as db:
            if await db.get(NotificationLogRow, idempotency_key) is None:
                db.add(NotificationLogRow(
                    idempotency_key=idempotency_key,
                    user_id=user_id,
                    channel=channel,
                    template=template,
                    message_id=message_id,
                ))

    # ── Row → model conversion ─────────────────────────────

    @staticmethod
    def _row_to_user(row: UserRow) -> User:
        return User(
            id=row.id,
            email=row.email,
            phone=row.phone,
            first_name=row.first_name or "",
            last_name=row.last_name or "",
            role=UserRole(row.role),
            is_active=bool(row.is_active),
            created_at=_aware(row.created_at),
        )

    @staticmethod
    def _row_to_incident(row: SosIncidentRow) -> SosIncident:
        return SosIncident(
            id=row.id,
            user_id=row.user_id,
            location=Location(lat=row.latitude, lng=row.longitude, address=row.address or ""),
            description=row.description or "",
            priority=row.priority,
            status=row.status,
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )

    @staticmethod
    def _row_to_report(row: CorruptionReportRow) -> CorruptionReport:
        return CorruptionReport(
            id=row.id,
            user_id=row.user_id,
            title=row.title,
            description=row.description,
            department=row.department or "",
            official_name=row.official_name,
            location=row.location or "",
            incident_date=_aware(row.incident_date),
            status=row.status,
            assigned_to=row.assigned_to,
            resolution=row.resolution,
            is_anonymous=bool(row.is_anonymous),
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )

    @staticmethod
    def _row_to_case(row: CaseRow) -> Case:
        return Case(
            id=row.id,
            case_number=row.case_number,
            title=row.title,
            description=row.description or "",
            court=row.court or "",
            judge=row.judge,
            status=row.status,
            filing_date=_aware(row.filing_date),
            next_hearing=_aware(row.next_hearing),
            last_synced_at=_aware(row.last_synced_at),
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )
