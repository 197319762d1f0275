"""
Report Triage Rules — Keyword/department/evidence heuristics and
moderator selection for incoming corruption reports.

Everything here is pure: the report handler gathers the inputs
(evidence count, moderator workloads) and applies the outcome.
Every rule can only raise the priority, never lower it.
"""
from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from models.schemas import ModeratorWorkload, ReportStatus, TriagePriority

HIGH_PRIORITY_KEYWORDS = (
    "bribe", "extortion", "fraud", "embezzlement", "money laundering",
    "large amount", "minister", "senior official", "urgent", "ongoing",
)
MEDIUM_PRIORITY_KEYWORDS = (
    "nepotism", "favoritism", "misuse", "irregularity", "violation",
)
HIGH_IMPACT_DEPARTMENTS = (
    "police", "judiciary", "revenue", "customs", "banking",
)

_RANK = {TriagePriority.LOW: 0, TriagePriority.MEDIUM: 1, TriagePriority.HIGH: 2}


def _at_least(current: TriagePriority, floor: TriagePriority) -> TriagePriority:
    return floor if _RANK[floor] > _RANK[current] else current


def _bump(current: TriagePriority) -> TriagePriority:
    if current == TriagePriority.LOW:
        return TriagePriority.MEDIUM
    return TriagePriority.HIGH


@dataclass
class TriageScore:
    priority: TriagePriority
    reasoning: list[str] = field(default_factory=list)


def score_report(
    title: str,
    description: str,
    department: str,
    evidence_count: int,
    created_at: datetime,
    now: datetime,
    baseline: TriagePriority = TriagePriority.MEDIUM,
    recency_hours: int = 24,
) -> TriageScore:
    content = f"{title} {description}".lower()
    priority = baseline
    reasoning: list[str] = []

    high = [k for k in HIGH_PRIORITY_KEYWORDS if k in content]
    if high:
        priority = TriagePriority.HIGH
        reasoning.append(f"High priority keywords detected: {', '.join(high)}")

    medium = [k for k in MEDIUM_PRIORITY_KEYWORDS if k in content]
    if medium and priority != TriagePriority.HIGH:
        priority = _at_least(priority, TriagePriority.MEDIUM)
        reasoning.append(f"Medium priority keywords detected: {', '.join(medium)}")

    dept = (department or "").lower()
    if any(d in dept for d in HIGH_IMPACT_DEPARTMENTS):
        priority = _bump(priority)
        reasoning.append(f"High-impact department: {department}")

    if evidence_count > 0:
        reasoning.append(f"{evidence_count} evidence file(s) attached")
        priority = _at_least(priority, TriagePriority.MEDIUM)

    if now - created_at < timedelta(hours=recency_hours) and "ongoing" in content:
        if priority == TriagePriority.MEDIUM:
            priority = TriagePriority.HIGH
        reasoning.append("Recent report mentioning ongoing corruption")

    return TriageScore(priority=priority, reasoning=reasoning)


def select_moderator(
    workloads: list[ModeratorWorkload],
    priority: TriagePriority,
    rng: Optional[random.Random] = None,
    workload_threshold: int = 10,
) -> Optional[str]:
    """
    HIGH goes to the least busy moderator (ties broken by id). Anything
    else is a uniform pick among moderators under the threshold, falling
    back to the least busy one.
    """
    if not workloads:
        return None

    ranked = sorted(workloads, key=lambda w: (w.workload, w.moderator_id))
    if priority == TriagePriority.HIGH:
        return ranked[0].moderator_id

    available = [w for w in ranked if w.workload < workload_threshold]
    if available:
        return (rng or random).choice(available).moderator_id
    return ranked[0].moderator_id


def status_for(priority: TriagePriority) -> ReportStatus:
    return ReportStatus.INVESTIGATING if priority == TriagePriority.HIGH else ReportStatus.UNDER_REVIEW
