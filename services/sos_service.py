"""
SOS Service — Create incidents and move them through their lifecycle.

Creating an incident stores it as PENDING and enqueues the dispatch job;
the caller gets the incident back without waiting for any service to be
reached.
"""
from __future__ import annotations

import structlog

from database.store_base import BaseStore
from job_queue.payloads import NotificationPayload, SosDispatchPayload
from job_queue.producer import JobProducer
from models.lifecycle import can_advance_sos
from models.schemas import (
    Location, NotificationChannel, SosIncident, SosPriority, SosStatus, UserContact,
)
from services.errors import NotFoundError, ValidationError

logger = structlog.get_logger()


def validate_location(location: Location):
    if not location.address or not location.address.strip():
        raise ValidationError("Valid location with coordinates and address is required")
    if not -90 <= location.lat <= 90:
        raise ValidationError("Invalid latitude")
    if not -180 <= location.lng <= 180:
        raise ValidationError("Invalid longitude")


class SosService:

    def __init__(self, store: BaseStore, producer: JobProducer):
        self.store = store
        self.producer = producer

    async def create_incident(
        self,
        user_id: str,
        location: Location,
        description: str,
        priority: SosPriority = SosPriority.MEDIUM,
    ) -> SosIncident:
        validate_location(location)
        user = await self.store.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found")

        incident = await self.store.create_sos_incident(SosIncident(
            user_id=user_id,
            location=location,
            description=description,
            priority=priority,
            status=SosStatus.PENDING,
        ))

        job_id = await self.producer.schedule_sos_dispatch(SosDispatchPayload(
            incident_id=incident.id,
            location=location,
            description=description,
            priority=priority,
            user_contact=UserContact(email=user.email, phone=user.phone),
        ))
        logger.info("sos_incident_created",
                    incident_id=incident.id,
                    user_id=user_id,
                    priority=priority.value,
                    job_id=job_id)
        return incident

    async def update_status(self, incident_id: str, status: SosStatus, updated_by: str = "") -> SosIncident:
        incident = await self.store.get_sos_incident(incident_id)
        if incident is None:
            raise NotFoundError("SOS incident not found")
        if not can_advance_sos(incident.status, status):
            raise ValidationError(
                f"Cannot move SOS incident from {incident.status.value} to {status.value}"
            )

        updated = await self.store.set_sos_status(incident_id, status)
        user = await self.store.get_user(incident.user_id)
        await self.producer.schedule_notification(NotificationPayload(
            user_id=incident.user_id,
            channel=NotificationChannel.EMAIL,
            template="sos-status-update",
            data={
                "incidentId": incident_id,
                "status": status.value,
                "userName": (user.full_name or user.email) if user else "",
            },
        ))
        logger.info("sos_status_updated",
                    incident_id=incident_id,
                    status=status.value,
                    updated_by=updated_by)
        return updated

    async def get_incident(self, incident_id: str) -> SosIncident:
        incident = await self.store.get_sos_incident(incident_id)
        if incident is None:
            raise NotFoundError("SOS incident not found")
        return incident
