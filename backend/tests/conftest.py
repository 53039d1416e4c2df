# tests/conftest.py — Shared test fixtures
import os

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["SESSION_SECRET_KEY"] = "test-session-secret-for-unit-tests-only"
os.environ["ENVIRONMENT"] = "test"

from models import Base, Team, User, Task
import auth as auth_module
from auth import AuthService
from database import get_db_session
from main import app

TEST_PASSWORD = "TestPassword123!"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_engine):
    """HTTP test client with overridden DB dependency"""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_login_attempts():
    auth_module._login_attempts.clear()
    yield
    auth_module._login_attempts.clear()


async def _make_team(db_session, name: str, slug: str) -> Team:
    team = Team(name=name, slug=slug, color="#2563eb")
    db_session.add(team)
    await db_session.commit()
    await db_session.refresh(team)
    return team


async def _make_user(db_session, name: str, email: str, team: Team = None) -> User:
    user = User(
        name=name,
        email=email,
        password_hash=AuthService.hash_password(TEST_PASSWORD),
        team_id=team.id if team else None,
        current_team_id=team.id if team else None,
        api_key=AuthService.generate_api_key(),
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_team(db_session):
    """Create the home team"""
    return await _make_team(db_session, "MediaHaus Squad", "mediahaus-squad")


@pytest_asyncio.fixture
async def other_team(db_session):
    """Create a second, unrelated team"""
    return await _make_team(db_session, "Design Team", "design-team")


@pytest_asyncio.fixture
async def test_user(db_session, test_team):
    """Create a test user on the home team"""
    return await _make_user(db_session, "Test User", "testuser@taskflow.dev", test_team)


@pytest_asyncio.fixture
async def teammate(db_session, test_team):
    """Another member of the home team"""
    return await _make_user(db_session, "Team Mate", "teammate@taskflow.dev", test_team)


@pytest_asyncio.fixture
async def outsider(db_session, other_team):
    """A member of the other team"""
    return await _make_user(db_session, "Out Sider", "outsider@taskflow.dev", other_team)


@pytest_asyncio.fixture
async def teamless_user(db_session):
    """A user with no team at all"""
    return await _make_user(db_session, "No Team", "noteam@taskflow.dev")


async def make_task(db_session, team: Team, creator: User, title: str = "Task",
                    status: str = "todo", priority: str = "medium", position: int = 1,
                    **extra) -> Task:
    task = Task(
        team_id=team.id,
        title=title,
        status=status,
        priority=priority,
        position=position,
        created_by=creator.id,
        **extra,
    )
    db_session.add(task)
    await db_session.commit()
    await db_session.refresh(task)
    return task


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token_data = {
        "sub": str(user.id),
        "email": user.email,
        "team_id": user.team_id,
    }
    token = AuthService.create_access_token(token_data)
    return {"Authorization": f"Bearer {token}"}


async def login_session(client: AsyncClient, user: User, password: str = TEST_PASSWORD):
    """Log the client in through the browser form so it carries a session cookie"""
    resp = await client.post("/login", data={"email": user.email, "password": password})
    assert resp.status_code == 303
    return resp
