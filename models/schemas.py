"""
Core data models for the NyayaMitra job pipeline.
These are the domain types shared by the store, the handlers and the API.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex[:16]


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class UserRole(str, Enum):
    CITIZEN = "CITIZEN"
    ADVOCATE = "ADVOCATE"
    ADMIN = "ADMIN"
    MODERATOR = "MODERATOR"


class SosPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class SosStatus(str, Enum):
    PENDING = "PENDING"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    DISMISSED = "DISMISSED"


class ReportStatus(str, Enum):
    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    INVESTIGATING = "INVESTIGATING"
    ACTION_TAKEN = "ACTION_TAKEN"
    CLOSED = "CLOSED"
    DISMISSED = "DISMISSED"


class CaseStatus(str, Enum):
    PENDING = "PENDING"
    ONGOING = "ONGOING"
    ADJOURNED = "ADJOURNED"
    DISPOSED = "DISPOSED"
    DISMISSED = "DISMISSED"


class UploadStatus(str, Enum):
    PENDING = "PENDING"
    UPLOADING = "UPLOADING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class NotificationChannel(str, Enum):
    EMAIL = "email"
    SMS = "sms"


class TriagePriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


# ──────────────────────────────────────────────────────────────
#  Users
# ──────────────────────────────────────────────────────────────

class User(BaseModel):
    id: str = Field(default_factory=_new_id)
    email: str
    phone: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    role: UserRole = UserRole.CITIZEN
    is_active: bool = True
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


# ──────────────────────────────────────────────────────────────
#  SOS incidents
# ──────────────────────────────────────────────────────────────

class Location(BaseModel):
    lat: float
    lng: float
    address: str


class UserContact(BaseModel):
    email: str
    phone: Optional[str] = None


class SosIncident(BaseModel):
    id: str = Field(default_factory=_new_id)
    user_id: str
    location: Location
    description: str
    priority: SosPriority = SosPriority.MEDIUM
    status: SosStatus = SosStatus.PENDING
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


# ──────────────────────────────────────────────────────────────
#  Corruption reports & evidence
# ──────────────────────────────────────────────────────────────

class CorruptionReport(BaseModel):
    id: str = Field(default_factory=_new_id)
    user_id: str
    title: str
    description: str
    department: str
    official_name: Optional[str] = None
    location: str = ""
    incident_date: Optional[datetime] = None
    status: ReportStatus = ReportStatus.SUBMITTED
    assigned_to: Optional[str] = None
    resolution: Optional[str] = None
    is_anonymous: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class MediaAsset(BaseModel):
    id: str = Field(default_factory=_new_id)
    filename: str
    content_type: str = "application/octet-stream"
    size_bytes: int = 0
    upload_status: UploadStatus = UploadStatus.PENDING
    corruption_report_id: Optional[str] = None
    sos_incident_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


# ──────────────────────────────────────────────────────────────
#  Cases
# ──────────────────────────────────────────────────────────────

class Case(BaseModel):
    id: str = Field(default_factory=_new_id)
    case_number: str
    title: str
    description: str = ""
    court: str = ""
    judge: Optional[str] = None
    status: CaseStatus = CaseStatus.PENDING
    filing_date: Optional[datetime] = None
    next_hearing: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class CaseEvent(BaseModel):
    """One entry in a case's append-only timeline."""
    id: str = Field(default_factory=_new_id)
    case_id: str
    title: str
    description: str = ""
    event_date: datetime = Field(default_factory=_utcnow)
    metadata: dict[str, Any] = {}


class CaseFollow(BaseModel):
    user_id: str
    case_id: str
    created_at: datetime = Field(default_factory=_utcnow)


class CaseSnapshot(BaseModel):
    """Case data as returned by the external source of record."""
    case_number: str
    title: str
    court: str = ""
    judge: Optional[str] = None
    status: CaseStatus = CaseStatus.ONGOING
    next_hearing: Optional[datetime] = None


# Fields whose change is worth telling followers about
SIGNIFICANT_CASE_FIELDS = ("status", "next_hearing", "judge", "court", "title")


# ──────────────────────────────────────────────────────────────
#  Derived views
# ──────────────────────────────────────────────────────────────

class ModeratorWorkload(BaseModel):
    """Open-report count for one moderator. Computed per assignment, never stored."""
    moderator_id: str
    workload: int
