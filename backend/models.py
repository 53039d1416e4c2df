# models.py — Database models for TaskFlow
# Tables:
# - Teams and users (tenant boundary, api keys)
# - Kanban tasks and their tags, ordered per (team, status) column
# - Incidents with append-only timeline events and follow-ups
# - Game leaderboard scores

from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, Integer, ForeignKey, Text, Index,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


# ============================================================
# ENUMS
# ============================================================

class TaskStatus(str, PyEnum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class TaskPriority(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class IncidentSeverity(str, PyEnum):
    SEV1 = "SEV1"
    SEV2 = "SEV2"
    SEV3 = "SEV3"


class IncidentStatus(str, PyEnum):
    INVESTIGATING = "investigating"
    MITIGATING = "mitigating"
    MONITORING = "monitoring"
    RESOLVED = "resolved"


class FollowUpStatus(str, PyEnum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    DONE = "done"


# ============================================================
# TEAMS
# ============================================================

class Team(Base):
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=False, index=True)
    color = Column(String, nullable=True)
    owner_id = Column(Integer, nullable=True)  # plain column, no FK (users reference teams)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    users = relationship("User", back_populates="team", foreign_keys="User.team_id")
    tasks = relationship("Task", back_populates="team", cascade="all, delete-orphan")


# ============================================================
# USERS
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="SET NULL"), nullable=True, index=True)
    current_team_id = Column(Integer, ForeignKey("teams.id", ondelete="SET NULL"), nullable=True)
    api_key = Column(String, unique=True, nullable=True, index=True)
    api_key_expires_at = Column(DateTime(timezone=True), nullable=True)
    api_key_last_used_at = Column(DateTime(timezone=True), nullable=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    team = relationship("Team", back_populates="users", foreign_keys=[team_id])


# ============================================================
# KANBAN TASKS
# ============================================================

class Task(Base):
    """Task card; `position` orders it inside its (team_id, status) column"""
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, nullable=False, default=TaskStatus.TODO.value)
    priority = Column(String, nullable=False, default=TaskPriority.MEDIUM.value)
    assigned_to = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    position = Column(Integer, nullable=False, default=0)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    team = relationship("Team", back_populates="tasks")
    assigned_user = relationship("User", foreign_keys=[assigned_to])
    creator = relationship("User", foreign_keys=[created_by])
    tags = relationship(
        "TaskTag", back_populates="task", cascade="all, delete-orphan", order_by="TaskTag.id",
    )

    __table_args__ = (
        Index("idx_task_team_status_pos", "team_id", "status", "position"),
    )


class TaskTag(Base):
    __tablename__ = "task_tags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(50), nullable=False)
    color = Column(String(20), nullable=False, default="#0ea5e9")
    created_at = Column(DateTime(timezone=True), default=utcnow)

    task = relationship("Task", back_populates="tags")


# ============================================================
# INCIDENTS
# ============================================================

class Incident(Base):
    __tablename__ = "incidents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String, unique=True, nullable=False)  # e.g. "INC-20250101-120000"
    title = Column(String(255), nullable=False)
    severity = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default=IncidentStatus.INVESTIGATING.value, index=True)
    system = Column(String(255), nullable=False, index=True)
    impacted_regions = Column(JSON, default=list)
    impacted_users = Column(String(255), nullable=True)
    owner = Column(String, nullable=True)
    summary = Column(Text, nullable=True)
    tags = Column(JSON, default=list)
    started_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    last_updated_at = Column(DateTime(timezone=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    events = relationship(
        "IncidentEvent",
        back_populates="incident",
        cascade="all, delete-orphan",
        order_by=lambda: [IncidentEvent.occurred_at, IncidentEvent.sort_order, IncidentEvent.id],
    )
    follow_ups = relationship(
        "IncidentFollowUp",
        back_populates="incident",
        cascade="all, delete-orphan",
        order_by="IncidentFollowUp.id",
    )


class IncidentEvent(Base):
    """Append-only timeline entry"""
    __tablename__ = "incident_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    incident_id = Column(Integer, ForeignKey("incidents.id", ondelete="CASCADE"), nullable=False, index=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    type = Column(String, nullable=False, index=True)  # detected, triage, mitigation, follow_up, resolved...
    actor = Column(String, nullable=True)
    label = Column(String, nullable=False)
    detail = Column(Text, nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    incident = relationship("Incident", back_populates="events")


class IncidentFollowUp(Base):
    __tablename__ = "incident_follow_ups"

    id = Column(Integer, primary_key=True, autoincrement=True)
    incident_id = Column(Integer, ForeignKey("incidents.id", ondelete="CASCADE"), nullable=False, index=True)
    owner = Column(String, nullable=True)  # team or person
    label = Column(String(255), nullable=False)
    status = Column(String, nullable=False, default=FollowUpStatus.OPEN.value, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    incident = relationship("Incident", back_populates="follow_ups")


# ============================================================
# LEADERBOARD
# ============================================================

class GameScore(Base):
    __tablename__ = "game_scores"

    id = Column(Integer, primary_key=True, autoincrement=True)
    game_key = Column(String(50), nullable=False)
    name = Column(String(50), nullable=False)
    score = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_score_game_rank", "game_key", "score"),
    )
