"""
Incident Command Router
Public dashboard (page + JSON) and session-authenticated form actions.
Every form action answers with a 303 back to the dashboard and a flash message.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser, get_session_user, require_session_user
from database import get_db_session
from incident_workflow import (
    IncidentCreate, IncidentStatusUpdate, FollowUpCreate, FollowUpStatusUpdate,
    list_dashboard, create_incident, update_incident_status,
    create_follow_up, update_follow_up_status, load_incident,
)
from models import Incident, IncidentFollowUp
from web import render, redirect

router = APIRouter(tags=["Incident Command"])
api_router = APIRouter(prefix="/api/v1/incidents", tags=["Incident Command"])

DASHBOARD_URL = "/incident-command"


async def _get_incident(incident_id: int, db: AsyncSession = Depends(get_db_session)) -> Incident:
    incident = await load_incident(db, incident_id)
    if not incident:
        raise HTTPException(status_code=404, detail="Incident not found")
    return incident


async def _get_follow_up(follow_up_id: int, db: AsyncSession = Depends(get_db_session)) -> IncidentFollowUp:
    follow_up = await db.get(IncidentFollowUp, follow_up_id)
    if not follow_up:
        raise HTTPException(status_code=404, detail="Follow up not found")
    return follow_up


def _validate(model, **fields):
    """Build a payload model from form fields, reporting failures like body validation"""
    try:
        return model(**fields)
    except ValidationError as e:
        raise RequestValidationError(e.errors(include_url=False))


def _split_list(values: List[str]) -> List[str]:
    """Form lists arrive as repeated fields or one comma separated field"""
    out = []
    for value in values:
        out.extend(v.strip() for v in value.split(",") if v.strip())
    return out


# ============================================================
# DASHBOARD
# ============================================================

@router.get("/incident-command")
async def dashboard_page(
    request: Request,
    user: Optional[CurrentUser] = Depends(get_session_user),
    db: AsyncSession = Depends(get_db_session),
):
    incidents = await list_dashboard(db)
    return render(request, "incidents/dashboard.html", incidents=incidents, user=user)


@api_router.get("/dashboard")
async def dashboard_json(db: AsyncSession = Depends(get_db_session)):
    return {"incidents": await list_dashboard(db)}


# ============================================================
# FORM ACTIONS
# ============================================================

@router.post("/incident-command/incidents")
async def store_incident(
    request: Request,
    title: str = Form(...),
    system: str = Form(...),
    severity: str = Form(...),
    summary: Optional[str] = Form(None),
    impacted_users: Optional[str] = Form(None),
    impacted_regions: List[str] = Form([]),
    tags: List[str] = Form([]),
    user: CurrentUser = Depends(require_session_user),
    db: AsyncSession = Depends(get_db_session),
):
    data = _validate(
        IncidentCreate,
        title=title,
        system=system,
        severity=severity,
        summary=summary or None,
        impacted_users=impacted_users or None,
        impacted_regions=_split_list(impacted_regions),
        tags=_split_list(tags),
    )
    await create_incident(db, user, data)
    return redirect(DASHBOARD_URL, request, "Incident created.")


@router.api_route("/incident-command/incidents/{incident_id}", methods=["PATCH", "POST"])
async def update_incident(
    request: Request,
    status: str = Form(...),
    status_actor: Optional[str] = Form(None),
    status_note: Optional[str] = Form(None),
    user: CurrentUser = Depends(require_session_user),
    incident: Incident = Depends(_get_incident),
    db: AsyncSession = Depends(get_db_session),
):
    data = _validate(
        IncidentStatusUpdate,
        status=status,
        status_actor=status_actor or None,
        status_note=status_note or None,
    )
    await update_incident_status(db, user, incident, data)
    return redirect(DASHBOARD_URL, request, "Incident updated")


@router.post("/incident-command/incidents/{incident_id}/follow-ups")
async def store_follow_up(
    request: Request,
    label: str = Form(...),
    owner: Optional[str] = Form(None),
    user: CurrentUser = Depends(require_session_user),
    incident: Incident = Depends(_get_incident),
    db: AsyncSession = Depends(get_db_session),
):
    data = _validate(FollowUpCreate, label=label, owner=owner or None)
    await create_follow_up(db, user, incident, data)
    return redirect(DASHBOARD_URL, request, "Follow up created.")


@router.api_route("/incident-command/follow-ups/{follow_up_id}", methods=["PATCH", "POST"])
async def update_follow_up(
    request: Request,
    status: str = Form(...),
    user: CurrentUser = Depends(require_session_user),
    follow_up: IncidentFollowUp = Depends(_get_follow_up),
    db: AsyncSession = Depends(get_db_session),
):
    data = _validate(FollowUpStatusUpdate, status=status)
    await update_follow_up_status(db, user, follow_up, data)
    return redirect(DASHBOARD_URL, request, "Follow up updated.")
