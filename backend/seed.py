#!/usr/bin/env python3
"""
TaskFlow — Demo Data Seeder
Loads demo teams, incidents, leaderboard scores and task tags.
Safe to run repeatedly: teams and scores are upserted, incidents are skipped
when their key already exists, and only untagged tasks receive tags.

Usage:
    python seed.py
    python seed.py --no-incidents --no-scores
"""

import asyncio
import argparse
import logging
from datetime import timedelta
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from database import init_db, close_db, get_db_context
from leaderboard import ORBITAL_DODGE
from models import (
    Team, Task, TaskTag, Incident, IncidentEvent, IncidentFollowUp, GameScore, utcnow,
)

logger = logging.getLogger("taskflow.seed")


# ── Demo content ────────────────────────────────────────────

TEAMS = [
    {"slug": "mediahaus-squad", "name": "MediaHaus Squad", "color": "#2563eb"},
    {"slug": "design-team", "name": "Design Team", "color": "#ec4899"},
    {"slug": "sre-guild", "name": "SRE Guild", "color": "#22c55e"},
    {"slug": "incident-command", "name": "Incident Command", "color": "#0ea5e9"},
]

SCORES = [
    {"game_key": ORBITAL_DODGE, "name": "Nova", "score": 4200},
    {"game_key": ORBITAL_DODGE, "name": "Comet", "score": 3650},
    {"game_key": ORBITAL_DODGE, "name": "Pulsar", "score": 3100},
    {"game_key": ORBITAL_DODGE, "name": "Meteor", "score": 2750},
    {"game_key": ORBITAL_DODGE, "name": "Echo", "score": 2300},
    {"game_key": "incident_sim", "name": "OnCallOps", "score": 1800},
    {"game_key": "incident_sim", "name": "PagerDutyHero", "score": 1550},
]

# Offsets are minutes relative to "now"
INCIDENTS = [
    {
        "base": {
            "key": "IC-2471",
            "title": "Checkout failures for credit card payments",
            "severity": "SEV1",
            "status": "investigating",
            "system": "Payments",
            "impacted_regions": ["US-East", "US-West"],
            "impacted_users": "~32 percent of active sessions",
            "owner": "On call payments",
            "summary": "Elevated failure rate on credit card charges. PayPal and ACH remain healthy.",
            "tags": ["payments", "checkout", "stripe-gateway", "revenue-impact"],
            "started": -45,
            "last_updated": -5,
        },
        "events": [
            ("detected", -45, "Alert: payments_error_rate", "Alert fired for spike in 5xx from payment service",
             "Error rate went from 0.3 percent to 7.8 percent over 5 minutes."),
            ("triage", -40, "On call payments", "Initial triage and dashboard review",
             "Confirmed spike in credit card failures. Other payment methods look healthy."),
            ("mitigation", -25, "Payments engineer", "Traffic shifted away from degraded gateway",
             "Routing 80 percent of traffic to secondary processor while investigating primary."),
        ],
        "follow_ups": [
            ("Payments team", "Add synthetic monitoring for credit card only path", "open"),
            ("Data team", "Quantify revenue impact and add dashboard view", "open"),
        ],
    },
    {
        "base": {
            "key": "IC-2472",
            "title": "Delayed incident timeline updates",
            "severity": "SEV3",
            "status": "monitoring",
            "system": "Incident Command Center",
            "impacted_regions": ["US-East"],
            "impacted_users": "On call and commanders",
            "owner": "Platform team",
            "summary": "Incident event stream was lagging behind by 3 to 5 minutes for some users.",
            "tags": ["incidents", "realtime", "websockets"],
            "started": -180,
            "last_updated": -60,
        },
        "events": [
            ("detected", -180, "Synthetic monitor", "Timeline updates delayed by more than 3 minutes",
             "Websocket clients still connected but not receiving fresh events."),
            ("triage", -170, "Platform on call", "Rolled logs for websocket fanout service",
             "Found backlog building on one node after deployment."),
            ("mitigation", -160, "Platform on call", "Drained traffic from unhealthy node",
             "Restarted pod and drained connections while monitoring error rate."),
            ("communication", -70, "Comms lead", "Posted internal status update",
             "Explained partial impact and expected recovery time to responders."),
        ],
        "follow_ups": [
            ("Platform team", "Add alert on websocket backlog depth", "in_progress"),
        ],
    },
    {
        "base": {
            "key": "IC-2473",
            "title": "Login latency spike for EU users",
            "severity": "SEV2",
            "status": "resolved",
            "system": "Auth",
            "impacted_regions": ["EU-Central", "EU-West"],
            "impacted_users": "Up to 18 percent of login attempts in EU",
            "owner": "Auth team",
            "summary": "Increased login latency due to misconfigured rate limiting on EU edge.",
            "tags": ["auth", "latency", "eu-region"],
            "started": -420,
            "last_updated": -300,
        },
        "events": [
            ("detected", -420, "Alert: login_p95_latency", "Login p95 latency above 2.5 seconds in EU",
             "Correlated with rollout of updated rate limiting policy."),
            ("triage", -400, "Auth on call", "Identified EU edge node as shared factor",
             "US and APAC not impacted. EU-only config change suspected."),
            ("mitigation", -390, "Auth engineer", "Rolled back rate limit policy",
             "Reverted to previous configuration, latency trending down."),
            ("resolved", -360, "Incident commander", "Declared incident resolved",
             "p95 latency back within normal range for 30 minutes."),
        ],
        "follow_ups": [
            ("Auth team", "Add safe rollout guardrails for rate limits", "open"),
            ("SRE", "Codify regional config checks in preflight", "open"),
        ],
    },
]

STATUS_TAGS = {
    "todo": {"name": "Backlog", "color": "#64748b"},
    "in_progress": {"name": "In flight", "color": "#0ea5e9"},
    "done": {"name": "Shipped", "color": "#22c55e"},
}
PRIORITY_TAGS = {
    "high": {"name": "High impact", "color": "#ef4444"},
    "low": {"name": "Nice to have", "color": "#a855f7"},
}
TEAM_TAGS = {
    "design-team": {"name": "Design", "color": "#ec4899"},
    "mediahaus-squad": {"name": "MediaHaus", "color": "#2563eb"},
}


# ── Seeder ──────────────────────────────────────────────────

class DemoSeeder:
    """Idempotent demo data loader bound to one session"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def seed_teams(self) -> int:
        for data in TEAMS:
            result = await self.db.execute(select(Team).where(Team.slug == data["slug"]))
            team = result.scalar_one_or_none()
            if team is None:
                team = Team(slug=data["slug"])
                self.db.add(team)
            team.name = data["name"]
            team.color = data["color"]
        await self.db.flush()
        return len(TEAMS)

    async def seed_incidents(self) -> int:
        now = utcnow()
        created = 0
        for data in INCIDENTS:
            base = dict(data["base"])
            existing = await self.db.execute(select(Incident.id).where(Incident.key == base["key"]))
            if existing.scalar_one_or_none() is not None:
                logger.info(f"Incident {base['key']} already present, skipping")
                continue

            started = base.pop("started")
            last_updated = base.pop("last_updated")
            incident = Incident(
                **base,
                started_at=now + timedelta(minutes=started),
                last_updated_at=now + timedelta(minutes=last_updated),
            )
            self.db.add(incident)
            await self.db.flush()

            for index, (type_, offset, actor, label, detail) in enumerate(data["events"], start=1):
                self.db.add(IncidentEvent(
                    incident_id=incident.id,
                    occurred_at=now + timedelta(minutes=offset),
                    type=type_,
                    actor=actor,
                    label=label,
                    detail=detail,
                    sort_order=index,
                ))
            for owner, label, status in data["follow_ups"]:
                self.db.add(IncidentFollowUp(
                    incident_id=incident.id, owner=owner, label=label, status=status,
                ))
            created += 1
        await self.db.flush()
        return created

    async def seed_scores(self) -> int:
        for data in SCORES:
            result = await self.db.execute(
                select(GameScore).where(
                    GameScore.game_key == data["game_key"],
                    GameScore.name == data["name"],
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                self.db.add(GameScore(**data))
            else:
                row.score = data["score"]
        await self.db.flush()
        return len(SCORES)

    async def seed_task_tags(self) -> int:
        result = await self.db.execute(
            select(Task).options(selectinload(Task.tags), selectinload(Task.team))
        )
        tasks = result.scalars().all()
        if not tasks:
            logger.warning("No tasks found, skipping task tags")
            return 0

        tagged = 0
        for task in tasks:
            if task.tags:
                continue
            for tag in self.tags_for(task.status, task.priority, task.team.slug if task.team else None):
                self.db.add(TaskTag(task_id=task.id, **tag))
            tagged += 1
        await self.db.flush()
        return tagged

    @staticmethod
    def tags_for(status: str, priority: str, team_slug: Optional[str]) -> List[Dict[str, str]]:
        tags = []
        for lookup, key in ((STATUS_TAGS, status), (PRIORITY_TAGS, priority), (TEAM_TAGS, team_slug)):
            if key in lookup:
                tags.append(dict(lookup[key]))
        return tags

    async def run(self, incidents: bool = True, scores: bool = True) -> Dict[str, int]:
        counts = {"teams": await self.seed_teams()}
        if incidents:
            counts["incidents"] = await self.seed_incidents()
        if scores:
            counts["scores"] = await self.seed_scores()
        counts["tagged_tasks"] = await self.seed_task_tags()
        return counts


async def _seed(args) -> Dict[str, int]:
    await init_db()
    try:
        async with get_db_context() as db:
            return await DemoSeeder(db).run(incidents=not args.no_incidents, scores=not args.no_scores)
    finally:
        await close_db()


def main():
    parser = argparse.ArgumentParser(description="TaskFlow demo data seeder")
    parser.add_argument("--no-incidents", action="store_true", help="Skip demo incidents")
    parser.add_argument("--no-scores", action="store_true", help="Skip leaderboard scores")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s %(message)s")
    counts = asyncio.run(_seed(args))

    print("✅ Demo data seeded")
    for name, count in counts.items():
        print(f"   {name.replace('_', ' ').title()}: {count}")


if __name__ == "__main__":
    main()
