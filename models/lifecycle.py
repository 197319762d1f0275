"""
Status lifecycles for SOS incidents and corruption reports.

Externally visible statuses only move forward. DISMISSED closes any
non-terminal record. The one permitted backward move is an SOS incident
returning to PENDING after a failed dispatch, and only while nobody has
started working on it yet.
"""
from __future__ import annotations

from models.schemas import ReportStatus, SosStatus

_SOS_ORDER = {
    SosStatus.PENDING: 0,
    SosStatus.ACKNOWLEDGED: 1,
    SosStatus.IN_PROGRESS: 2,
    SosStatus.RESOLVED: 3,
}
SOS_TERMINAL = {SosStatus.RESOLVED, SosStatus.DISMISSED}

_REPORT_ORDER = {
    ReportStatus.SUBMITTED: 0,
    ReportStatus.UNDER_REVIEW: 1,
    ReportStatus.INVESTIGATING: 2,
    ReportStatus.ACTION_TAKEN: 3,
    ReportStatus.CLOSED: 4,
}
REPORT_TERMINAL = {ReportStatus.CLOSED, ReportStatus.DISMISSED}


def can_advance_sos(current: SosStatus, target: SosStatus) -> bool:
    if current in SOS_TERMINAL:
        return False
    if target == SosStatus.DISMISSED:
        return True
    return _SOS_ORDER[target] > _SOS_ORDER[current]


def can_revert_sos_to_pending(current: SosStatus) -> bool:
    """Dispatch failure may only undo the dispatcher's own acknowledgement."""
    return current in (SosStatus.PENDING, SosStatus.ACKNOWLEDGED)


def can_advance_report(current: ReportStatus, target: ReportStatus) -> bool:
    if current in REPORT_TERMINAL:
        return False
    if target == ReportStatus.DISMISSED:
        return True
    return _REPORT_ORDER[target] > _REPORT_ORDER[current]
