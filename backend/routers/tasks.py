# routers/tasks.py — Team-scoped kanban task API
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from models import Task
from task_workflow import (
    TaskCreate, TaskUpdate, TaskOutcome,
    list_tasks, create_task, update_task, move_task, assign_task, delete_task,
    load_task, task_to_dict,
)

router = APIRouter(prefix="/api/v1/tasks", tags=["Tasks"])


async def _get_task(task_id: int, db: AsyncSession = Depends(get_db_session)) -> Task:
    task = await load_task(db, task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


def _soft_error(outcome: TaskOutcome) -> JSONResponse:
    return JSONResponse(status_code=200, content={"success": False, "error": outcome.error})


async def _run(workflow, *args):
    """Body validation errors raised inside a workflow surface as request validation errors"""
    try:
        return await workflow(*args)
    except ValidationError as e:
        raise RequestValidationError(e.errors(include_url=False))


# ============================================================
# ROUTES
# ============================================================

@router.get("")
async def index(
    assigned_to: Optional[int] = Query(None),
    search: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    tasks = await list_tasks(db, user, assigned_to=assigned_to, search=search)
    return {"success": True, "tasks": [task_to_dict(t) for t in tasks]}


@router.post("", status_code=201)
async def store(
    data: TaskCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    task = await create_task(db, user, data)
    return {"success": True, "task": task_to_dict(task)}


@router.patch("/{task_id}")
async def update(
    data: TaskUpdate,
    user: CurrentUser = Depends(get_current_user),
    task: Task = Depends(_get_task),
    db: AsyncSession = Depends(get_db_session),
):
    outcome = await update_task(db, user, task, data)
    return {
        "success": True,
        "task": task_to_dict(outcome.task),
        "status_changed_to": outcome.status_changed_to,
    }


@router.post("/{task_id}/move")
async def move(
    payload: Optional[Dict[str, Any]] = Body(None),
    user: CurrentUser = Depends(get_current_user),
    task: Task = Depends(_get_task),
    db: AsyncSession = Depends(get_db_session),
):
    outcome = await _run(move_task, db, user, task, payload)
    if not outcome.ok:
        return _soft_error(outcome)
    return {
        "success": True,
        "message": outcome.message,
        "task": task_to_dict(outcome.task),
        "status_changed_to": outcome.status_changed_to,
    }


@router.post("/{task_id}/assign")
async def assign(
    payload: Optional[Dict[str, Any]] = Body(None),
    user: CurrentUser = Depends(get_current_user),
    task: Task = Depends(_get_task),
    db: AsyncSession = Depends(get_db_session),
):
    outcome = await _run(assign_task, db, user, task, payload)
    if not outcome.ok:
        return _soft_error(outcome)
    return {"success": True, "message": outcome.message, "task": task_to_dict(outcome.task)}


@router.delete("/{task_id}")
async def destroy(
    user: CurrentUser = Depends(get_current_user),
    task: Task = Depends(_get_task),
    db: AsyncSession = Depends(get_db_session),
):
    outcome = await delete_task(db, user, task)
    if not outcome.ok:
        return _soft_error(outcome)
    return {"success": True, "message": outcome.message}
