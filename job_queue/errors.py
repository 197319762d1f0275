"""Exceptions raised inside job handlers and the queue layer."""
from __future__ import annotations


class JobError(Exception):
    """Base class. Any exception escaping a handler is retried by the queue."""


class UnknownJobKindError(JobError):
    def __init__(self, kind: str, queue: str = ""):
        self.kind = kind
        self.queue = queue
        super().__init__(f"Unknown job kind '{kind}'" + (f" on queue '{queue}'" if queue else ""))


class RecordNotFoundError(JobError):
    """A referenced record is missing. Still consumes retry budget."""

    def __init__(self, entity: str, record_id: str):
        self.entity = entity
        self.record_id = record_id
        super().__init__(f"{entity} {record_id} not found")


class DispatchError(JobError):
    """An emergency service could not be notified."""

    def __init__(self, service: str, incident_id: str, reason: str = ""):
        self.service = service
        self.incident_id = incident_id
        message = f"Failed to notify {service} for incident {incident_id}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class NotificationDeliveryError(JobError):
    def __init__(self, channel: str, user_id: str, reason: str = ""):
        self.channel = channel
        self.user_id = user_id
        super().__init__(f"{channel} delivery to user {user_id} failed: {reason or 'unknown error'}")


class CaseSyncError(JobError):
    pass
