# routers/auth.py — Authentication endpoints (JWT + api keys)
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    AuthService, UserRegister, UserLogin, TokenResponse,
    get_current_user, CurrentUser, ACCESS_TOKEN_EXPIRE_MINUTES,
)
from database import get_db_session
from models import User, Team, utcnow

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


def _build_token_response(user_obj: User) -> TokenResponse:
    """Build token response from a user ORM instance"""
    token_data = {
        "sub": str(user_obj.id),
        "email": user_obj.email,
        "team_id": user_obj.team_id,
    }
    return TokenResponse(
        access_token=AuthService.create_access_token(token_data),
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        api_key=user_obj.api_key,
        user={
            "id": user_obj.id,
            "name": user_obj.name,
            "email": user_obj.email,
            "team_id": user_obj.team_id,
            "current_team_id": user_obj.current_team_id,
        },
    )


@router.post("/register", response_model=TokenResponse, status_code=201)
async def register(
    user_data: UserRegister,
    db: AsyncSession = Depends(get_db_session),
):
    """Register a new user account and attach it to a team"""
    user = await AuthService.register_user(user_data, db)
    return _build_token_response(user)


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: UserLogin,
    db: AsyncSession = Depends(get_db_session),
):
    """Authenticate and receive an access token plus the user's api key"""
    user = await AuthService.authenticate_user(credentials.email, credentials.password, db)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return _build_token_response(user)


@router.get("/me")
async def get_current_user_info(user: CurrentUser = Depends(get_current_user)):
    """Get current authenticated user information"""
    return user.model_dump()


@router.get("/api-token")
async def api_token(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Return the caller's api key, creating one if missing"""
    user_obj = await db.get(User, user.id)
    api_key = AuthService.ensure_api_key(user_obj)
    user_obj.api_key_last_used_at = utcnow()
    await db.commit()
    return {
        "api_key": api_key,
        "expires_at": user_obj.api_key_expires_at.isoformat() if user_obj.api_key_expires_at else None,
    }


@router.get("/teams")
async def list_teams(db: AsyncSession = Depends(get_db_session)):
    """Teams a new user can join at registration"""
    result = await db.execute(select(Team).order_by(Team.name))
    return {"teams": [{"id": t.id, "name": t.name} for t in result.scalars().all()]}
