"""
Abstract Store — Interface for all persistence backends.

Implementations:
  - SqlStore      (PostgreSQL / MySQL / SQLite via SQLAlchemy)
  - InMemoryStore (dict-based, single-process, no persistence)

Handlers and services only ever talk to this interface. Status
lifecycle rules live in models/lifecycle.py; the store writes whatever
it is told.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from models.schemas import (
    User, UserRole, SosIncident, SosStatus, CorruptionReport, MediaAsset,
    Case, CaseEvent, CaseFollow, CaseSnapshot, ModeratorWorkload,
)


class BaseStore(ABC):
    """Interface that all store backends must implement."""

    # ── Users ─────────────────────────────────────────────────

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        ...

    @abstractmethod
    async def upsert_user(self, user: User) -> User:
        ...

    @abstractmethod
    async def list_users_by_role(self, roles: tuple[UserRole, ...], active_only: bool = True) -> list[User]:
        ...

    # ── SOS incidents ─────────────────────────────────────────

    @abstractmethod
    async def get_sos_incident(self, incident_id: str) -> Optional[SosIncident]:
        ...

    @abstractmethod
    async def create_sos_incident(self, incident: SosIncident) -> SosIncident:
        ...

    @abstractmethod
    async def set_sos_status(self, incident_id: str, status: SosStatus) -> Optional[SosIncident]:
        ...

    @abstractmethod
    async def get_dispatched_services(self, incident_id: str) -> set[str]:
        """Services already notified for this incident."""
        ...

    @abstractmethod
    async def record_dispatch(self, incident_id: str, service: str, reference: str = "") -> None:
        """Record a successful service notification. Recording twice is a no-op."""
        ...

    # ── Corruption reports ────────────────────────────────────

    @abstractmethod
    async def get_report(self, report_id: str) -> Optional[CorruptionReport]:
        ...

    @abstractmethod
    async def create_report(self, report: CorruptionReport) -> CorruptionReport:
        ...

    @abstractmethod
    async def update_report(self, report_id: str, **fields: Any) -> Optional[CorruptionReport]:
        ...

    @abstractmethod
    async def add_media_asset(self, asset: MediaAsset) -> MediaAsset:
        ...

    @abstractmethod
    async def count_completed_media(self, report_id: str) -> int:
        ...

    @abstractmethod
    async def get_moderator_workloads(self, exclude_report_id: str = "") -> list[ModeratorWorkload]:
        """
        Every active moderator with the number of reports assigned to them
        in UNDER_REVIEW or INVESTIGATING.
        """
        ...

    # ── Cases ─────────────────────────────────────────────────

    @abstractmethod
    async def get_case(self, case_id: str) -> Optional[Case]:
        ...

    @abstractmethod
    async def get_case_by_number(self, case_number: str) -> Optional[Case]:
        ...

    @abstractmethod
    async def upsert_case(self, case: Case) -> Case:
        ...

    @abstractmethod
    async def apply_case_snapshot(self, case_id: str, snapshot: CaseSnapshot, synced_at: datetime) -> Optional[Case]:
        ...

    @abstractmethod
    async def add_case_event(self, event: CaseEvent) -> CaseEvent:
        """Append to the case timeline. An event id that already exists is not added again."""
        ...

    @abstractmethod
    async def list_case_events(self, case_id: str) -> list[CaseEvent]:
        ...

    @abstractmethod
    async def follow_case(self, user_id: str, case_id: str) -> CaseFollow:
        ...

    @abstractmethod
    async def is_following(self, user_id: str, case_id: str) -> bool:
        ...

    @abstractmethod
    async def list_case_followers(self, case_id: str) -> list[User]:
        ...

    @abstractmethod
    async def list_followed_case_ids(self) -> list[str]:
        ...

    # ── Notification delivery log ─────────────────────────────

    @abstractmethod
    async def has_delivery(self, idempotency_key: str) -> bool:
        ...

    @abstractmethod
    async def record_delivery(
        self, idempotency_key: str, user_id: str, channel: str,
        template: str, message_id: str = "",
    ) -> None:
        ...
