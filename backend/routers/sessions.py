# routers/sessions.py — Browser login/register/logout backed by the signed session cookie
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import AuthService, UserRegister, CurrentUser, get_session_user
from database import get_db_session
from models import Team, User, utcnow
from web import render, redirect

logger = logging.getLogger("taskflow.auth")

router = APIRouter(tags=["Sessions"])

HOME_URL = "/incident-command"


def _safe_next(next_path: Optional[str]) -> str:
    if next_path and next_path.startswith("/") and not next_path.startswith("//"):
        return next_path
    return HOME_URL


@router.get("/login")
async def show_login(
    request: Request,
    next: Optional[str] = None,
    user: Optional[CurrentUser] = Depends(get_session_user),
):
    if user is not None:
        return redirect(_safe_next(next))
    return render(request, "auth/login.html", next=_safe_next(next))


@router.post("/login")
async def login(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    next: Optional[str] = Form(None),
    db: AsyncSession = Depends(get_db_session),
):
    try:
        user = await AuthService.authenticate_user(email, password, db)
    except HTTPException as e:
        return redirect("/login", request, e.detail, "error")
    if not user:
        return redirect("/login", request, "These credentials do not match our records.", "error")

    request.session["user_id"] = user.id
    logger.info(f"Session login for user {user.id}")
    return redirect(_safe_next(next), request, f"Welcome back, {user.name}.")


@router.get("/register")
async def show_register(
    request: Request,
    user: Optional[CurrentUser] = Depends(get_session_user),
    db: AsyncSession = Depends(get_db_session),
):
    if user is not None:
        return redirect(HOME_URL)
    result = await db.execute(select(Team).order_by(Team.name))
    return render(request, "auth/register.html", teams=result.scalars().all())


@router.post("/register")
async def register(
    request: Request,
    name: str = Form(...),
    email: str = Form(...),
    password: str = Form(...),
    password_confirmation: str = Form(...),
    team_id: Optional[str] = Form(None),
    db: AsyncSession = Depends(get_db_session),
):
    try:
        data = UserRegister(
            name=name,
            email=email,
            password=password,
            password_confirmation=password_confirmation,
            team_id=int(team_id) if team_id else None,
        )
    except (ValidationError, ValueError) as e:
        message = e.errors()[0]["msg"] if isinstance(e, ValidationError) else "The team id must be a number."
        return redirect("/register", request, message, "error")

    try:
        user = await AuthService.register_user(data, db)
    except HTTPException as e:
        return redirect("/register", request, e.detail, "error")

    request.session["user_id"] = user.id
    return redirect(HOME_URL, request, "Account created.")


@router.get("/api-token")
async def api_token(
    user: Optional[CurrentUser] = Depends(get_session_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Hand the signed-in browser the bearer key it uses for the task API"""
    if user is None:
        return {"success": False, "error": "Not authenticated."}

    user_obj = await db.get(User, user.id)
    api_key = AuthService.ensure_api_key(user_obj)
    user_obj.api_key_last_used_at = utcnow()
    await db.commit()
    return {"success": True, "api_key": api_key}


@router.post("/logout")
async def logout(request: Request):
    request.session.clear()
    return redirect("/", request, "You have been logged out.")
