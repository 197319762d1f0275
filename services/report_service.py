"""
Report Service — Corruption report intake and status updates.

Intake validates, stores the report as SUBMITTED and enqueues triage with
a short delay so evidence uploaded right after submission is counted.
"""
from __future__ import annotations

import structlog
from datetime import datetime, timezone
from typing import Optional

from database.store_base import BaseStore
from job_queue.payloads import NotificationPayload, ReportTriagePayload
from job_queue.producer import JobProducer
from models.lifecycle import can_advance_report
from models.schemas import CorruptionReport, NotificationChannel, ReportStatus
from services.errors import NotFoundError, ValidationError

logger = structlog.get_logger()

MIN_TITLE_LENGTH = 10
MIN_DESCRIPTION_LENGTH = 50


def validate_report(title: str, description: str, incident_date: Optional[datetime], now: datetime = None):
    if len(title or "") < MIN_TITLE_LENGTH:
        raise ValidationError(f"Title must be at least {MIN_TITLE_LENGTH} characters long")
    if len(description or "") < MIN_DESCRIPTION_LENGTH:
        raise ValidationError(f"Description must be at least {MIN_DESCRIPTION_LENGTH} characters long")
    if incident_date is not None:
        now = now or datetime.now(timezone.utc)
        if incident_date.tzinfo is None:
            incident_date = incident_date.replace(tzinfo=timezone.utc)
        if incident_date > now:
            raise ValidationError("Incident date cannot be in the future")


class ReportService:

    def __init__(self, store: BaseStore, producer: JobProducer):
        self.store = store
        self.producer = producer

    async def create_report(
        self,
        user_id: str,
        title: str,
        description: str,
        department: str,
        incident_date: Optional[datetime] = None,
        official_name: Optional[str] = None,
        location: str = "",
        is_anonymous: bool = False,
    ) -> CorruptionReport:
        validate_report(title, description, incident_date)

        report = await self.store.create_report(CorruptionReport(
            user_id=user_id,
            title=title,
            description=description,
            department=department,
            official_name=official_name,
            location=location,
            incident_date=incident_date,
            is_anonymous=is_anonymous,
            status=ReportStatus.SUBMITTED,
        ))

        job_id = await self.producer.schedule_report_triage(
            ReportTriagePayload(report_id=report.id, department=department),
        )
        logger.info("corruption_report_created",
                    report_id=report.id,
                    anonymous=is_anonymous,
                    job_id=job_id)
        return report

    async def update_status(
        self,
        report_id: str,
        status: ReportStatus,
        assigned_to: Optional[str] = None,
        resolution: Optional[str] = None,
        updated_by: str = "",
    ) -> CorruptionReport:
        report = await self.store.get_report(report_id)
        if report is None:
            raise NotFoundError("Report not found")
        if not can_advance_report(report.status, status):
            raise ValidationError(
                f"Cannot move report from {report.status.value} to {status.value}"
            )

        fields = {"status": status}
        if assigned_to is not None:
            fields["assigned_to"] = assigned_to
        if resolution is not None:
            fields["resolution"] = resolution
        updated = await self.store.update_report(report_id, **fields)

        if not report.is_anonymous:
            user = await self.store.get_user(report.user_id)
            await self.producer.schedule_notification(NotificationPayload(
                user_id=report.user_id,
                channel=NotificationChannel.EMAIL,
                template="report-status-update",
                data={
                    "reportId": report_id,
                    "title": report.title,
                    "status": status.value,
                    "resolution": resolution or "",
                    "userName": (user.full_name or user.email) if user else "",
                },
            ))

        logger.info("report_status_updated",
                    report_id=report_id,
                    status=status.value,
                    updated_by=updated_by)
        return updated
