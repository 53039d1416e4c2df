# auth.py — Authentication for TaskFlow
# Features:
# - bcrypt password hashing
# - JWT access tokens with JTI
# - Per-user API keys (bearer), stamped on use
# - Signed-cookie sessions for the server-rendered pages
# - Transactional registration (user + team membership)
# - Brute force protection

import os
import re
import uuid
import secrets
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from collections import defaultdict

import bcrypt
from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import HTTPException, Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from models import User, Team, utcnow

logger = logging.getLogger("taskflow.auth")

# ============================================================
# CONFIGURATION
# ============================================================

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
if not SECRET_KEY:
    SECRET_KEY = secrets.token_urlsafe(64)
    logger.warning(
        "JWT_SECRET_KEY not set. Generated ephemeral key. "
        "Set JWT_SECRET_KEY in production!"
    )

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))
API_KEY_TTL_DAYS = int(os.getenv("API_KEY_TTL_DAYS", "0"))
API_KEY_PREFIX = "tf_"
MIN_PASSWORD_LENGTH = 8
MAX_LOGIN_ATTEMPTS = 5
LOGIN_LOCKOUT_MINUTES = 15

security = HTTPBearer()

# In-memory brute force tracker (per process)
_login_attempts: Dict[str, list] = defaultdict(list)


# ============================================================
# PYDANTIC SCHEMAS
# ============================================================

class UserRegister(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str
    password_confirmation: str
    team_id: Optional[int] = None

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if len(v) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        return v

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.password_confirmation:
            raise ValueError("Password confirmation does not match")
        return self


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    api_key: Optional[str] = None
    user: Dict[str, Any]


class CurrentUser(BaseModel):
    """The acting identity handed to every workflow call"""
    id: int
    name: str
    email: str
    team_id: Optional[int] = None
    current_team_id: Optional[int] = None


class LoginRequired(Exception):
    """Raised by page routes that need a session user; rendered as a redirect to /login"""

    def __init__(self, next_path: str = "/"):
        self.next_path = next_path


# ============================================================
# AUTH SERVICE
# ============================================================

def slugify(value: str) -> str:
    slug = re.sub(r'[^a-z0-9]+', '-', value.lower()).strip('-')
    return slug[:100]


class AuthService:
    """Password, token, api key and registration helpers"""

    @staticmethod
    def hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=12)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))

    @staticmethod
    def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
        to_encode = data.copy()
        now = datetime.now(timezone.utc)
        to_encode.update({
            "exp": now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)),
            "iat": now,
            "type": "access",
            "jti": str(uuid.uuid4()),
        })
        return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

    @staticmethod
    def verify_token(token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Token expired")
        except JWTError:
            raise HTTPException(status_code=401, detail="Invalid token")

    @staticmethod
    def _check_brute_force(email: str) -> None:
        """Check if login attempts exceed threshold"""
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(minutes=LOGIN_LOCKOUT_MINUTES)
        _login_attempts[email] = [t for t in _login_attempts[email] if t > cutoff]
        if len(_login_attempts[email]) >= MAX_LOGIN_ATTEMPTS:
            raise HTTPException(
                status_code=429,
                detail=f"Too many login attempts. Try again in {LOGIN_LOCKOUT_MINUTES} minutes.",
            )

    @staticmethod
    def _record_failed_attempt(email: str) -> None:
        _login_attempts[email].append(datetime.now(timezone.utc))

    @staticmethod
    def _clear_attempts(email: str) -> None:
        _login_attempts.pop(email, None)

    @staticmethod
    def generate_api_key() -> str:
        return f"{API_KEY_PREFIX}{secrets.token_urlsafe(45)}"

    @staticmethod
    def ensure_api_key(user: User) -> str:
        """Give the user an api key if they have none; returns the key"""
        if not user.api_key:
            user.api_key = AuthService.generate_api_key()
            if API_KEY_TTL_DAYS > 0:
                user.api_key_expires_at = utcnow() + timedelta(days=API_KEY_TTL_DAYS)
        return user.api_key

    @staticmethod
    def to_current_user(user: User) -> CurrentUser:
        return CurrentUser(
            id=user.id,
            name=user.name,
            email=user.email,
            team_id=user.team_id,
            current_team_id=user.current_team_id,
        )

    @staticmethod
    async def register_user(user_data: UserRegister, db: AsyncSession) -> User:
        """Create the user and attach them to an existing or a new personal team.

        Runs as a single transaction: any failure rolls back every write and
        re-raises to the caller.
        """
        existing = await db.execute(select(User).where(User.email == user_data.email))
        if existing.scalar_one_or_none():
            raise HTTPException(status_code=409, detail="User already exists")

        try:
            user = User(
                name=user_data.name,
                email=user_data.email,
                password_hash=AuthService.hash_password(user_data.password),
            )
            AuthService.ensure_api_key(user)
            db.add(user)
            await db.flush()

            if user_data.team_id:
                team = await db.get(Team, user_data.team_id)
                if team is None:
                    raise HTTPException(status_code=422, detail="The selected team id is invalid.")
            else:
                team_name = f"{user.name}'s Team"
                team = Team(
                    name=team_name,
                    slug=slugify(f"{team_name}-{user.id}-{secrets.token_hex(3)}"),
                    owner_id=user.id,
                )
                db.add(team)
                await db.flush()

            user.team_id = team.id
            user.current_team_id = team.id
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        await db.refresh(user)
        logger.info(f"Registered user {user.id} on team {user.team_id}")
        return user

    @staticmethod
    async def authenticate_user(email: str, password: str, db: AsyncSession) -> Optional[User]:
        AuthService._check_brute_force(email)

        result = await db.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()

        if not user or not AuthService.verify_password(password, user.password_hash):
            AuthService._record_failed_attempt(email)
            return None

        AuthService._clear_attempts(email)

        user.last_login_at = utcnow()
        AuthService.ensure_api_key(user)
        await db.commit()
        await db.refresh(user)
        return user

    @staticmethod
    async def user_from_api_key(api_key: str, db: AsyncSession) -> Optional[User]:
        result = await db.execute(select(User).where(User.api_key == api_key))
        user = result.scalar_one_or_none()
        if user is None:
            return None
        if user.api_key_expires_at is not None:
            expires_at = user.api_key_expires_at
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            if expires_at <= utcnow():
                raise HTTPException(status_code=401, detail="API key expired")
        user.api_key_last_used_at = utcnow()
        await db.commit()
        return user


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db_session),
) -> CurrentUser:
    """Resolve the bearer credential (api key or JWT access token) to a user"""
    token = credentials.credentials

    if token.startswith(API_KEY_PREFIX):
        user = await AuthService.user_from_api_key(token, db)
        if not user:
            raise HTTPException(status_code=401, detail="Invalid API key")
        return AuthService.to_current_user(user)

    payload = AuthService.verify_token(token)
    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    user = await db.get(User, int(user_id))
    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    return AuthService.to_current_user(user)


async def get_session_user(
    request: Request,
    db: AsyncSession = Depends(get_db_session),
) -> Optional[CurrentUser]:
    """The user logged in through the web session, if any"""
    user_id = request.session.get("user_id")
    if not user_id:
        return None
    user = await db.get(User, user_id)
    if not user:
        request.session.pop("user_id", None)
        return None
    return AuthService.to_current_user(user)


async def require_session_user(
    request: Request,
    user: Optional[CurrentUser] = Depends(get_session_user),
) -> CurrentUser:
    if user is None:
        raise LoginRequired(next_path=request.url.path)
    return user
