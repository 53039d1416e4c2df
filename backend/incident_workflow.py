"""
TaskFlow - Incident command workflow
Incidents, their append-only timeline and follow-up actions.

Every status change and every follow-up change appends exactly one timeline
event and bumps the incident's last_updated_at watermark.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from auth import CurrentUser
from models import (
    Incident, IncidentEvent, IncidentFollowUp,
    IncidentSeverity, IncidentStatus, FollowUpStatus, utcnow,
)

logger = logging.getLogger("taskflow.incidents")

DASHBOARD_LIMIT = 50
SYSTEM_ACTOR = "System"

STATUS_EVENT_TYPES = {
    IncidentStatus.INVESTIGATING.value: "triage",
    IncidentStatus.MITIGATING.value: "mitigation",
    IncidentStatus.MONITORING.value: "monitoring",
    IncidentStatus.RESOLVED.value: "resolved",
}


# ============================================================
# PAYLOADS
# ============================================================

class IncidentCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    system: str = Field(..., min_length=1, max_length=255)
    severity: IncidentSeverity
    summary: Optional[str] = None
    impacted_users: Optional[str] = Field(None, max_length=255)
    impacted_regions: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)


class IncidentStatusUpdate(BaseModel):
    status: IncidentStatus
    status_actor: Optional[str] = Field(None, max_length=255)
    status_note: Optional[str] = None


class FollowUpCreate(BaseModel):
    label: str = Field(..., min_length=1, max_length=255)
    owner: Optional[str] = Field(None, max_length=255)


class FollowUpStatusUpdate(BaseModel):
    status: FollowUpStatus


# ============================================================
# HELPERS
# ============================================================

def resolve_actor(explicit: Optional[str], user: Optional[CurrentUser]) -> str:
    """Explicit actor, else the signed-in user's name, else System"""
    if explicit:
        return explicit
    if user is not None and user.name:
        return user.name
    return SYSTEM_ACTOR


def status_to_event_type(status: str) -> str:
    return STATUS_EVENT_TYPES.get(status, "update")


async def next_incident_key(db: AsyncSession, now: Optional[datetime] = None) -> str:
    """INC-YYYYMMDD-HHMMSS, suffixed -2, -3... when the second is already taken"""
    base = f"INC-{(now or utcnow()).strftime('%Y%m%d-%H%M%S')}"
    result = await db.execute(select(Incident.key).where(Incident.key.like(f"{base}%")))
    taken = set(result.scalars().all())
    if base not in taken:
        return base
    n = 2
    while f"{base}-{n}" in taken:
        n += 1
    return f"{base}-{n}"


def _incident_query():
    return select(Incident).options(
        selectinload(Incident.events),
        selectinload(Incident.follow_ups),
    )


async def load_incident(db: AsyncSession, incident_id: int) -> Optional[Incident]:
    result = await db.execute(
        _incident_query()
        .where(Incident.id == incident_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _append_event(
    db: AsyncSession, incident: Incident, type_: str, actor: str, label: str, detail: str,
) -> IncidentEvent:
    now = utcnow()
    last = await db.scalar(
        select(func.max(IncidentEvent.sort_order)).where(IncidentEvent.incident_id == incident.id)
    )
    event = IncidentEvent(
        incident_id=incident.id,
        occurred_at=now,
        type=type_,
        actor=actor,
        label=label,
        detail=detail,
        sort_order=(last or 0) + 1,
    )
    db.add(event)
    incident.last_updated_at = now
    return event


def _ts(dt):
    return dt.isoformat() if dt else None


def incident_to_dashboard_dict(incident: Incident) -> Dict[str, Any]:
    """Presentation projection used by the page and the JSON dashboard"""
    timeline = sorted(incident.events, key=lambda e: (e.occurred_at, e.sort_order, e.id))
    return {
        "id": incident.id,
        "key": incident.key,
        "title": incident.title,
        "severity": incident.severity,
        "status": incident.status,
        "system": incident.system,
        "startedAt": _ts(incident.started_at),
        "lastUpdatedAt": _ts(incident.last_updated_at),
        "impactedRegions": incident.impacted_regions or [],
        "impactedUsers": incident.impacted_users,
        "owner": incident.owner,
        "summary": incident.summary,
        "tags": incident.tags or [],
        "timeline": [
            {
                "id": e.id,
                "at": _ts(e.occurred_at),
                "type": e.type,
                "actor": e.actor,
                "label": e.label,
                "detail": e.detail,
            }
            for e in timeline
        ],
        "followUps": [
            {"id": f.id, "owner": f.owner, "label": f.label, "status": f.status}
            for f in incident.follow_ups
        ],
    }


# ============================================================
# OPERATIONS
# ============================================================

async def list_dashboard(db: AsyncSession) -> List[Dict[str, Any]]:
    result = await db.execute(
        _incident_query()
        .order_by(Incident.started_at.desc(), Incident.id.desc())
        .limit(DASHBOARD_LIMIT)
    )
    return [incident_to_dashboard_dict(i) for i in result.scalars().all()]


async def create_incident(
    db: AsyncSession, user: Optional[CurrentUser], data: IncidentCreate,
    actor: Optional[str] = None,
) -> Incident:
    actor = resolve_actor(actor, user)
    now = utcnow()

    incident = Incident(
        key=await next_incident_key(db, now),
        title=data.title,
        severity=data.severity.value,
        status=IncidentStatus.INVESTIGATING.value,
        system=data.system,
        started_at=now,
        last_updated_at=now,
        impacted_regions=list(data.impacted_regions),
        impacted_users=data.impacted_users,
        owner=actor,
        summary=data.summary or "",
        tags=list(data.tags),
    )
    db.add(incident)
    await db.flush()

    await _append_event(
        db,
        incident,
        "detected",
        actor,
        "Incident opened",
        f"Incident created and set to investigating by {actor}.",
    )
    await db.commit()

    logger.info(f"Incident {incident.key} opened by {actor}")
    return await load_incident(db, incident.id)


async def update_incident_status(
    db: AsyncSession, user: Optional[CurrentUser], incident: Incident, data: IncidentStatusUpdate,
) -> Incident:
    actor = resolve_actor(data.status_actor, user)
    old_status = incident.status
    new_status = data.status.value

    incident.status = new_status
    await _append_event(
        db,
        incident,
        status_to_event_type(new_status),
        actor,
        f"Status changed to {new_status.capitalize()}",
        data.status_note or f"Status changed from {old_status} to {new_status} by {actor}.",
    )
    await db.commit()

    logger.info(f"Incident {incident.key} status {old_status} -> {new_status} by {actor}")
    return await load_incident(db, incident.id)


async def create_follow_up(
    db: AsyncSession, user: Optional[CurrentUser], incident: Incident, data: FollowUpCreate,
) -> IncidentFollowUp:
    actor = resolve_actor(None, user)

    follow_up = IncidentFollowUp(
        incident_id=incident.id,
        label=data.label,
        owner=data.owner,
        status=FollowUpStatus.OPEN.value,
    )
    db.add(follow_up)
    await _append_event(
        db,
        incident,
        "follow_up",
        actor,
        f"Follow up created: {follow_up.label}",
        f"New follow up created by {actor}.",
    )
    await db.commit()

    logger.info(f"Follow up {follow_up.id} added to incident {incident.key} by {actor}")
    return follow_up


async def update_follow_up_status(
    db: AsyncSession, user: Optional[CurrentUser], follow_up: IncidentFollowUp, data: FollowUpStatusUpdate,
) -> IncidentFollowUp:
    actor = resolve_actor(None, user)
    old_status = follow_up.status
    new_status = data.status.value

    follow_up.status = new_status

    incident = await db.get(Incident, follow_up.incident_id) if follow_up.incident_id else None
    if incident is not None:
        await _append_event(
            db,
            incident,
            "follow_up",
            actor,
            f"Follow up updated: {follow_up.label}",
            f"Follow up status changed from {old_status} to {new_status} by {actor}.",
        )
    await db.commit()

    logger.info(f"Follow up {follow_up.id} status {old_status} -> {new_status} by {actor}")
    return follow_up
