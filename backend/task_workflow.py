"""
TaskFlow - Kanban task workflow
Team-scoped task mutations: create, patch, column moves, assignment and delete.

Positions order tasks inside a (team_id, status) column. A move opens a gap
in the target column only; the source column keeps whatever gaps it has.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select, update, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from auth import CurrentUser
from models import Task, TaskTag, Team, User, TaskStatus, TaskPriority, utcnow

logger = logging.getLogger("taskflow.tasks")

DEFAULT_TAG_COLOR = "#0ea5e9"
LEGACY_STATUS_ALIASES = {"doing": TaskStatus.IN_PROGRESS.value}
NO_TEAM_MESSAGE = "No team could be resolved for this user. Please create or select a team first."


# ============================================================
# RESULT TYPES
# ============================================================

class WorkflowError(Exception):
    """Hard failure, surfaced to the client as a non-2xx response"""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class OutcomeKind(str, Enum):
    OK = "ok"
    SOFT_ERROR = "soft_error"


@dataclass
class TaskOutcome:
    """Result of an ownership-checked operation.

    A soft error is a domain refusal reported with a success status code and
    ``{"success": false, "error": ...}`` in the body.
    """
    kind: OutcomeKind
    task: Optional[Task] = None
    message: Optional[str] = None
    error: Optional[str] = None
    status_changed_to: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.kind == OutcomeKind.OK

    @staticmethod
    def success(task: Optional[Task] = None, message: Optional[str] = None,
                status_changed_to: Optional[str] = None) -> "TaskOutcome":
        return TaskOutcome(OutcomeKind.OK, task=task, message=message,
                           status_changed_to=status_changed_to)

    @staticmethod
    def soft_error(error: str) -> "TaskOutcome":
        return TaskOutcome(OutcomeKind.SOFT_ERROR, error=error)


# ============================================================
# PAYLOADS
# ============================================================

class TagIn(BaseModel):
    name: Optional[str] = Field(None, max_length=50)
    color: Optional[str] = Field(None, max_length=20)


class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    status: str
    priority: TaskPriority
    assigned_to: Optional[int] = None
    team_id: Optional[int] = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        allowed = {s.value for s in TaskStatus} | set(LEGACY_STATUS_ALIASES)
        if v not in allowed:
            raise ValueError(f"status must be one of: {', '.join(sorted(allowed))}")
        return v


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None
    assigned_to: Optional[int] = None
    position: Optional[int] = None
    tags: Optional[List[TagIn]] = None

    @field_validator("title")
    @classmethod
    def title_not_null(cls, v: Optional[str]) -> str:
        if v is None:
            raise ValueError("The title field must be a string.")
        return v


class TaskMove(BaseModel):
    status: TaskStatus
    position: int = Field(..., ge=1)


class TaskAssign(BaseModel):
    user_id: Optional[int] = None


# ============================================================
# HELPERS
# ============================================================

def _task_query():
    return select(Task).options(
        selectinload(Task.assigned_user),
        selectinload(Task.creator),
        selectinload(Task.tags),
    )


async def load_task(db: AsyncSession, task_id: int) -> Optional[Task]:
    """Fetch a task with assignee, creator and tags attached"""
    result = await db.execute(
        _task_query()
        .where(Task.id == task_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _apply_completion(task: Task, status: str) -> None:
    if status == TaskStatus.DONE.value:
        if task.completed_at is None:
            task.completed_at = utcnow()
    else:
        task.completed_at = None


def _same_team(task: Task, actor: CurrentUser) -> bool:
    return actor.team_id is not None and task.team_id == actor.team_id


def _parse(model, data):
    if isinstance(data, model):
        return data
    return model.model_validate(data or {})


async def _require_exists(db: AsyncSession, model, pk: Optional[int], field_name: str) -> None:
    if pk is None:
        return
    if await db.get(model, pk) is None:
        raise WorkflowError(422, f"The selected {field_name} is invalid.")


def task_to_dict(task: Task) -> Dict[str, Any]:
    def _ts(dt):
        return dt.isoformat() if dt else None

    def _user(u: Optional[User]):
        if u is None:
            return None
        return {"id": u.id, "name": u.name, "email": u.email}

    return {
        "id": task.id,
        "team_id": task.team_id,
        "title": task.title,
        "description": task.description,
        "status": task.status,
        "priority": task.priority,
        "assigned_to": task.assigned_to,
        "created_by": task.created_by,
        "position": task.position,
        "completed_at": _ts(task.completed_at),
        "created_at": _ts(task.created_at),
        "updated_at": _ts(task.updated_at),
        "assigned_user": _user(task.assigned_user),
        "creator": _user(task.creator),
        "tags": [{"id": t.id, "name": t.name, "color": t.color} for t in task.tags],
    }


# ============================================================
# OPERATIONS
# ============================================================

async def list_tasks(
    db: AsyncSession,
    actor: CurrentUser,
    assigned_to: Optional[int] = None,
    search: Optional[str] = None,
) -> List[Task]:
    query = _task_query().where(Task.team_id == actor.team_id)
    if assigned_to:
        query = query.where(Task.assigned_to == assigned_to)
    if search:
        pattern = f"%{search}%"
        query = query.where(or_(
            Task.title.ilike(pattern),
            Task.description.ilike(pattern),
        ))
    result = await db.execute(query.order_by(Task.position))
    return list(result.scalars().all())


async def create_task(db: AsyncSession, actor: CurrentUser, data: TaskCreate) -> Task:
    logger.info(f"create_task called by user={actor.id} team={actor.team_id}")

    await _require_exists(db, User, data.assigned_to, "assigned to")
    await _require_exists(db, Team, data.team_id, "team id")

    team_id = data.team_id or actor.current_team_id or actor.team_id
    if not team_id:
        logger.warning(f"create_task: no team resolved for user={actor.id}")
        raise WorkflowError(422, NO_TEAM_MESSAGE)

    status = data.status
    if status in LEGACY_STATUS_ALIASES:
        status = LEGACY_STATUS_ALIASES[status]
        logger.info(f"create_task: normalised legacy status '{data.status}' to '{status}'")

    task = Task(
        team_id=team_id,
        title=data.title,
        description=data.description,
        status=status,
        priority=data.priority.value,
        assigned_to=data.assigned_to,
        created_by=actor.id,
        position=1,
        completed_at=None,
    )
    db.add(task)
    await db.commit()

    logger.info(f"create_task: task {task.id} created in team {task.team_id}")
    return await load_task(db, task.id)


async def update_task(
    db: AsyncSession, actor: CurrentUser, task: Task, data: TaskUpdate,
) -> TaskOutcome:
    if not _same_team(task, actor):
        raise WorkflowError(403, "Forbidden")

    updates = data.model_dump(exclude_unset=True)
    tags_payload = updates.pop("tags", None)
    if "assigned_to" in updates:
        await _require_exists(db, User, updates["assigned_to"], "assigned to")

    original_status = task.status
    for key, value in updates.items():
        if key in ("status", "priority"):
            if value is None:
                continue
            value = value.value
        elif key == "position" and value is None:
            continue
        setattr(task, key, value)

    if "status" in updates and updates["status"] is not None:
        _apply_completion(task, task.status)

    if tags_payload is not None:
        existing = await db.execute(select(TaskTag).where(TaskTag.task_id == task.id))
        for tag in existing.scalars().all():
            await db.delete(tag)
        for tag in tags_payload:
            if not tag.get("name"):
                continue
            db.add(TaskTag(
                task_id=task.id,
                name=tag["name"],
                color=tag.get("color") or DEFAULT_TAG_COLOR,
            ))

    await db.commit()

    task = await load_task(db, task.id)
    changed = task.status if task.status != original_status else None
    return TaskOutcome.success(task=task, status_changed_to=changed)


async def move_task(
    db: AsyncSession, actor: CurrentUser, task: Task, data: Union[TaskMove, Dict[str, Any]],
) -> TaskOutcome:
    """Raw request bodies are validated only after the ownership check passes"""
    if not _same_team(task, actor):
        return TaskOutcome.soft_error("You cannot move tasks from another team.")
    data = _parse(TaskMove, data)

    old_status = task.status
    target = data.status.value

    # Open a gap at the requested slot in the target column
    await db.execute(
        update(Task)
        .where(
            Task.team_id == task.team_id,
            Task.status == target,
            Task.id != task.id,
            Task.position >= data.position,
        )
        .values(position=Task.position + 1)
        .execution_options(synchronize_session=False)
    )

    task.status = target
    task.position = data.position
    _apply_completion(task, target)
    await db.commit()

    task = await load_task(db, task.id)
    changed = task.status if task.status != old_status else None
    return TaskOutcome.success(task=task, message="Task moved successfully", status_changed_to=changed)


async def assign_task(
    db: AsyncSession, actor: CurrentUser, task: Task, data: Union[TaskAssign, Dict[str, Any]],
) -> TaskOutcome:
    if not _same_team(task, actor):
        return TaskOutcome.soft_error("You cannot assign tasks from another team.")
    data = _parse(TaskAssign, data)

    if data.user_id:
        await _require_exists(db, User, data.user_id, "user id")
        result = await db.execute(
            select(User).where(User.id == data.user_id, User.team_id == task.team_id)
        )
        assignee = result.scalar_one_or_none()
        if assignee is None:
            return TaskOutcome.soft_error("User must belong to the same team.")
        task.assigned_to = assignee.id
    else:
        task.assigned_to = None

    await db.commit()
    task = await load_task(db, task.id)
    return TaskOutcome.success(task=task, message="Task assignment updated.")


async def delete_task(db: AsyncSession, actor: CurrentUser, task: Task) -> TaskOutcome:
    if not _same_team(task, actor):
        return TaskOutcome.soft_error("You cannot delete tasks from another team.")

    # Tags come along through the relationship cascade
    task = await load_task(db, task.id)
    await db.delete(task)
    await db.commit()
    logger.info(f"delete_task: task {task.id} removed by user={actor.id}")
    return TaskOutcome.success(message="Task deleted with a smooth goodbye.")
