"""
SOS Dispatch — Notify emergency services about an incident.

Services are called one after another. Each success is recorded against
the incident so a retried job only calls the services that have not yet
been reached. Any failure puts the incident back to PENDING (if nobody
has picked it up yet) and re-raises for the queue to retry.
"""
from __future__ import annotations

import structlog
from pydantic import BaseModel

from backend.emergency import DispatchRequest
from handlers.context import HandlerContext
from job_queue.errors import RecordNotFoundError
from job_queue.message_queue import QueueJob
from job_queue.payloads import SosDispatchPayload
from models.lifecycle import can_advance_sos, can_revert_sos_to_pending
from models.schemas import SosPriority, SosStatus

logger = structlog.get_logger()

SERVICE_TIERS: dict[SosPriority, tuple[str, ...]] = {
    SosPriority.CRITICAL: ("Police", "Medical", "Fire Department"),
    SosPriority.HIGH: ("Police", "Medical", "Fire Department"),
    SosPriority.MEDIUM: ("Police",),
    SosPriority.LOW: ("Local Security",),
}


def services_for(priority: SosPriority) -> tuple[str, ...]:
    return SERVICE_TIERS[priority]


class SosDispatchResult(BaseModel):
    incident_id: str
    services_notified: list[str]
    services_skipped: list[str] = []


async def dispatch_sos(ctx: HandlerContext, job: QueueJob, payload: SosDispatchPayload) -> SosDispatchResult:
    incident = await ctx.store.get_sos_incident(payload.incident_id)
    if incident is None:
        raise RecordNotFoundError("SosIncident", payload.incident_id)

    services = services_for(payload.priority)
    already = await ctx.store.get_dispatched_services(payload.incident_id)
    request = DispatchRequest(
        incident_id=payload.incident_id,
        location=payload.location,
        description=payload.description,
        priority=payload.priority,
        contact=payload.user_contact,
    )

    logger.info("sos_dispatch_started",
                incident_id=payload.incident_id,
                priority=payload.priority.value,
                services=list(services),
                already_notified=sorted(already))

    notified: list[str] = []
    try:
        for service in services:
            if service in already:
                continue
            reference = await ctx.emergency.notify(service, request)
            await ctx.store.record_dispatch(payload.incident_id, service, reference)
            notified.append(service)
            logger.info("sos_service_notified",
                        incident_id=payload.incident_id,
                        service=service,
                        reference=reference)

        await _acknowledge(ctx, payload.incident_id)
    except Exception as e:
        logger.error("sos_dispatch_failed",
                     incident_id=payload.incident_id,
                     attempt=job.attempts_made + 1,
                     error=str(e))
        await _revert_to_pending(ctx, payload.incident_id)
        raise

    return SosDispatchResult(
        incident_id=payload.incident_id,
        services_notified=notified,
        services_skipped=[s for s in services if s in already],
    )


async def _acknowledge(ctx: HandlerContext, incident_id: str):
    incident = await ctx.store.get_sos_incident(incident_id)
    if incident is None:
        raise RecordNotFoundError("SosIncident", incident_id)
    if can_advance_sos(incident.status, SosStatus.ACKNOWLEDGED):
        await ctx.store.set_sos_status(incident_id, SosStatus.ACKNOWLEDGED)
    else:
        logger.info("sos_status_kept", incident_id=incident_id, status=incident.status.value)


async def _revert_to_pending(ctx: HandlerContext, incident_id: str):
    try:
        incident = await ctx.store.get_sos_incident(incident_id)
        if incident and incident.status != SosStatus.PENDING and can_revert_sos_to_pending(incident.status):
            await ctx.store.set_sos_status(incident_id, SosStatus.PENDING)
    except Exception as e:
        # caller re-raises the dispatch error
        logger.error("sos_revert_failed", incident_id=incident_id, error=str(e))
