"""
Report Triage — Score a new corruption report, assign a moderator and
move it into review.

HIGH priority reports go straight to INVESTIGATING and every active
moderator and admin gets a ``high-priority-report`` email. The report
status is only ever moved forward, so a retried triage leaves a report
that a moderator has already progressed alone.
"""
from __future__ import annotations

import structlog
from typing import Optional

from pydantic import BaseModel

from handlers.context import HandlerContext
from job_queue.errors import RecordNotFoundError
from job_queue.message_queue import QueueJob
from job_queue.payloads import NotificationPayload, ReportTriagePayload
from models.lifecycle import can_advance_report
from models.schemas import NotificationChannel, TriagePriority, UserRole
from rules.triage import score_report, select_moderator, status_for

logger = structlog.get_logger()

ALERT_ROLES = (UserRole.MODERATOR, UserRole.ADMIN)


class TriageResult(BaseModel):
    report_id: str
    priority: TriagePriority
    status: str
    assigned_to: Optional[str] = None
    reasoning: list[str] = []
    moderators_notified: int = 0


async def triage_report(ctx: HandlerContext, job: QueueJob, payload: ReportTriagePayload) -> TriageResult:
    report = await ctx.store.get_report(payload.report_id)
    if report is None:
        raise RecordNotFoundError("CorruptionReport", payload.report_id)

    evidence_count = await ctx.store.count_completed_media(report.id)
    score = score_report(
        title=report.title,
        description=report.description,
        department=report.department or payload.department,
        evidence_count=evidence_count,
        created_at=report.created_at,
        now=ctx.clock(),
        baseline=TriagePriority(ctx.triage.baseline_priority),
        recency_hours=ctx.triage.recency_hours,
    )
    reasoning = list(score.reasoning)

    workloads = await ctx.store.get_moderator_workloads(exclude_report_id=report.id)
    moderator_id = select_moderator(
        workloads, score.priority,
        rng=ctx.rng,
        workload_threshold=ctx.triage.workload_threshold,
    )
    if moderator_id:
        reasoning.append("Assigned to moderator based on workload")

    target = status_for(score.priority)
    if score.priority == TriagePriority.HIGH:
        reasoning.append("High priority - moved directly to investigation")

    status = report.status
    if can_advance_report(report.status, target):
        fields = {"status": target}
        if moderator_id:
            fields["assigned_to"] = moderator_id
        updated = await ctx.store.update_report(report.id, **fields)
        status = updated.status if updated else target
    else:
        logger.info("report_status_kept", report_id=report.id, status=report.status.value)

    notified = 0
    if score.priority == TriagePriority.HIGH:
        notified = await _alert_moderators(ctx, report.id, report.title, report.department,
                                           score.priority, reasoning, moderator_id)

    logger.info("report_triaged",
                report_id=report.id,
                priority=score.priority.value,
                status=status.value,
                assigned_to=moderator_id,
                moderators_notified=notified)

    return TriageResult(
        report_id=report.id,
        priority=score.priority,
        status=status.value,
        assigned_to=moderator_id,
        reasoning=reasoning,
        moderators_notified=notified,
    )


async def _alert_moderators(
    ctx: HandlerContext,
    report_id: str,
    title: str,
    department: str,
    priority: TriagePriority,
    reasoning: list[str],
    assigned_to: Optional[str],
) -> int:
    recipients = await ctx.store.list_users_by_role(ALERT_ROLES, active_only=True)
    assignee_name = ""
    for user in recipients:
        if user.id == assigned_to:
            assignee_name = user.full_name or user.email

    for user in recipients:
        await ctx.producer.schedule_notification(
            NotificationPayload(
                user_id=user.id,
                channel=NotificationChannel.EMAIL,
                template="high-priority-report",
                data={
                    "reportId": report_id,
                    "title": title,
                    "department": department,
                    "priority": priority.value,
                    "reasoning": "; ".join(reasoning),
                    "moderatorName": user.full_name or user.email,
                    "assignedTo": assignee_name,
                },
            ),
            job_id=f"triage:{report_id}:{user.id}",
        )
    return len(recipients)
