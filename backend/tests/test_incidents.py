# tests/test_incidents.py — Incident command workflow and page tests
import re
from datetime import datetime

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from auth import CurrentUser
from incident_workflow import (
    IncidentCreate, IncidentStatusUpdate, create_incident, update_incident_status,
    next_incident_key, resolve_actor, status_to_event_type,
)
from models import Incident, utcnow
from tests.conftest import login_session

NEW_INCIDENT = {
    "title": "Checkout failures",
    "system": "Payments",
    "severity": "SEV1",
    "impacted_users": "~30 percent",
    "impacted_regions": "US-East, US-West",
    "tags": "payments",
}


async def _dashboard(client: AsyncClient) -> list:
    resp = await client.get("/api/v1/incidents/dashboard")
    assert resp.status_code == 200
    return resp.json()["incidents"]


async def _open_incident(client: AsyncClient, **overrides) -> dict:
    resp = await client.post("/incident-command/incidents", data={**NEW_INCIDENT, **overrides})
    assert resp.status_code == 303
    return (await _dashboard(client))[0]


# ============================================================
# CREATE
# ============================================================

@pytest.mark.asyncio
async def test_dashboard_starts_empty(client: AsyncClient):
    assert await _dashboard(client) == []


@pytest.mark.asyncio
async def test_form_actions_require_login(client: AsyncClient):
    resp = await client.post("/incident-command/incidents", data=NEW_INCIDENT)
    assert resp.status_code == 303
    assert resp.headers["location"].startswith("/login")
    assert await _dashboard(client) == []


@pytest.mark.asyncio
async def test_create_incident_opens_investigation(client: AsyncClient, test_user):
    await login_session(client, test_user)
    resp = await client.post("/incident-command/incidents", data={**NEW_INCIDENT, "status": "resolved"})
    assert resp.status_code == 303
    assert resp.headers["location"] == "/incident-command"

    incident = (await _dashboard(client))[0]
    assert re.fullmatch(r"INC-\d{8}-\d{6}", incident["key"])
    assert incident["status"] == "investigating"
    assert incident["owner"] == "Test User"
    assert incident["summary"] == ""
    assert incident["impactedRegions"] == ["US-East", "US-West"]
    assert incident["tags"] == ["payments"]
    assert incident["followUps"] == []

    assert len(incident["timeline"]) == 1
    event = incident["timeline"][0]
    assert event["type"] == "detected"
    assert event["actor"] == "Test User"
    assert event["label"] == "Incident opened"
    assert event["detail"] == "Incident created and set to investigating by Test User."


@pytest.mark.asyncio
async def test_create_incident_validates_severity(client: AsyncClient, test_user):
    await login_session(client, test_user)
    resp = await client.post("/incident-command/incidents", data={**NEW_INCIDENT, "severity": "SEV9"})
    assert resp.status_code == 422
    assert await _dashboard(client) == []


@pytest.mark.asyncio
async def test_page_renders_incidents_and_flash(client: AsyncClient, test_user):
    await login_session(client, test_user)
    await client.post("/incident-command/incidents", data=NEW_INCIDENT)

    resp = await client.get("/incident-command")
    assert resp.status_code == 200
    assert "Checkout failures" in resp.text
    assert "Incident created." in resp.text

    # Flash messages are shown once
    resp = await client.get("/incident-command")
    assert "Incident created." not in resp.text


# ============================================================
# STATUS CHANGES
# ============================================================

@pytest.mark.asyncio
async def test_status_change_appends_one_event(client: AsyncClient, test_user):
    await login_session(client, test_user)
    incident = await _open_incident(client)
    before = datetime.fromisoformat(incident["lastUpdatedAt"])

    resp = await client.post(f"/incident-command/incidents/{incident['id']}", data={"status": "resolved"})
    assert resp.status_code == 303

    incident = (await _dashboard(client))[0]
    assert incident["status"] == "resolved"
    assert len(incident["timeline"]) == 2
    event = incident["timeline"][-1]
    assert event["type"] == "resolved"
    assert event["label"] == "Status changed to Resolved"
    assert event["detail"] == "Status changed from investigating to resolved by Test User."
    assert datetime.fromisoformat(incident["lastUpdatedAt"]) >= before


@pytest.mark.asyncio
async def test_status_change_uses_explicit_actor_and_note(client: AsyncClient, test_user):
    await login_session(client, test_user)
    incident = await _open_incident(client)

    resp = await client.patch(
        f"/incident-command/incidents/{incident['id']}",
        data={"status": "mitigating", "status_actor": "Payments on call", "status_note": "Failover started"},
    )
    assert resp.status_code == 303

    event = (await _dashboard(client))[0]["timeline"][-1]
    assert event["type"] == "mitigation"
    assert event["actor"] == "Payments on call"
    assert event["detail"] == "Failover started"


@pytest.mark.asyncio
async def test_same_status_still_appends_event(client: AsyncClient, test_user):
    await login_session(client, test_user)
    incident = await _open_incident(client)

    await client.post(f"/incident-command/incidents/{incident['id']}", data={"status": "investigating"})
    timeline = (await _dashboard(client))[0]["timeline"]
    assert [e["type"] for e in timeline] == ["detected", "triage"]


@pytest.mark.asyncio
async def test_status_change_rejects_unknown_status(client: AsyncClient, test_user):
    await login_session(client, test_user)
    incident = await _open_incident(client)

    resp = await client.post(f"/incident-command/incidents/{incident['id']}", data={"status": "panicking"})
    assert resp.status_code == 422
    assert len((await _dashboard(client))[0]["timeline"]) == 1


@pytest.mark.asyncio
async def test_unknown_incident_is_404(client: AsyncClient, test_user):
    await login_session(client, test_user)
    resp = await client.post("/incident-command/incidents/999", data={"status": "resolved"})
    assert resp.status_code == 404


# ============================================================
# FOLLOW UPS
# ============================================================

@pytest.mark.asyncio
async def test_follow_up_lifecycle(client: AsyncClient, test_user):
    await login_session(client, test_user)
    incident = await _open_incident(client)

    resp = await client.post(
        f"/incident-command/incidents/{incident['id']}/follow-ups",
        data={"label": "Add synthetic checks", "owner": "Payments team"},
    )
    assert resp.status_code == 303

    incident = (await _dashboard(client))[0]
    follow_up = incident["followUps"][0]
    assert follow_up["status"] == "open"
    assert follow_up["owner"] == "Payments team"
    event = incident["timeline"][-1]
    assert event["type"] == "follow_up"
    assert event["label"] == "Follow up created: Add synthetic checks"
    assert event["detail"] == "New follow up created by Test User."
    created_at = datetime.fromisoformat(incident["lastUpdatedAt"])

    resp = await client.post(f"/incident-command/follow-ups/{follow_up['id']}", data={"status": "done"})
    assert resp.status_code == 303

    incident = (await _dashboard(client))[0]
    assert incident["followUps"][0]["status"] == "done"
    assert len(incident["timeline"]) == 3
    event = incident["timeline"][-1]
    assert event["label"] == "Follow up updated: Add synthetic checks"
    assert event["detail"] == "Follow up status changed from open to done by Test User."
    assert datetime.fromisoformat(incident["lastUpdatedAt"]) >= created_at


@pytest.mark.asyncio
async def test_follow_up_rejects_unknown_status(client: AsyncClient, test_user):
    await login_session(client, test_user)
    incident = await _open_incident(client)
    await client.post(f"/incident-command/incidents/{incident['id']}/follow-ups", data={"label": "Check"})
    follow_up = (await _dashboard(client))[0]["followUps"][0]

    resp = await client.post(f"/incident-command/follow-ups/{follow_up['id']}", data={"status": "blocked"})
    assert resp.status_code == 422


# ============================================================
# WORKFLOW HELPERS
# ============================================================

def test_resolve_actor_precedence():
    user = CurrentUser(id=1, name="Ada", email="ada@taskflow.dev")
    assert resolve_actor("Pager", user) == "Pager"
    assert resolve_actor(None, user) == "Ada"
    assert resolve_actor(None, None) == "System"


def test_status_event_types():
    assert status_to_event_type("investigating") == "triage"
    assert status_to_event_type("mitigating") == "mitigation"
    assert status_to_event_type("monitoring") == "monitoring"
    assert status_to_event_type("resolved") == "resolved"
    assert status_to_event_type("escalated") == "update"


@pytest.mark.asyncio
async def test_incident_key_gets_suffix_on_collision(db_session):
    now = utcnow()
    first = await next_incident_key(db_session, now)
    db_session.add(Incident(key=first, title="A", severity="SEV3", system="X", started_at=now))
    await db_session.commit()

    second = await next_incident_key(db_session, now)
    assert second == f"{first}-2"
    db_session.add(Incident(key=second, title="B", severity="SEV3", system="X", started_at=now))
    await db_session.commit()

    assert await next_incident_key(db_session, now) == f"{first}-3"


@pytest.mark.asyncio
async def test_anonymous_status_change_is_attributed_to_system(db_session):
    incident = await create_incident(
        db_session, None, IncidentCreate(title="Queue lag", system="Workers", severity="SEV3"),
    )
    assert incident.owner == "System"

    incident = await update_incident_status(
        db_session, None, incident, IncidentStatusUpdate(status="monitoring"),
    )
    assert incident.status == "monitoring"
    assert [e.type for e in incident.events] == ["detected", "monitoring"]
    assert incident.events[-1].actor == "System"

    stored = (await db_session.execute(select(Incident.status).where(Incident.id == incident.id))).scalar_one()
    assert stored == "monitoring"


@pytest.mark.asyncio
async def test_timeline_events_are_numbered_per_incident(db_session):
    first = await create_incident(
        db_session, None, IncidentCreate(title="Queue lag", system="Workers", severity="SEV3"),
    )
    second = await create_incident(
        db_session, None, IncidentCreate(title="DNS flap", system="Edge", severity="SEV2"),
    )
    first = await update_incident_status(db_session, None, first, IncidentStatusUpdate(status="mitigating"))
    first = await update_incident_status(db_session, None, first, IncidentStatusUpdate(status="resolved"))

    assert [e.sort_order for e in first.events] == [1, 2, 3]
    assert [e.sort_order for e in second.events] == [1]
