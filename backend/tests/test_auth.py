# tests/test_auth.py — Authentication, registration and session tests
import pytest
from httpx import AsyncClient
from sqlalchemy import select

from auth import AuthService
from models import Team, User, utcnow
from tests.conftest import get_auth_headers, login_session, TEST_PASSWORD

REGISTRATION = {
    "name": "Grace Hopper",
    "email": "grace@taskflow.dev",
    "password": "SecurePass123!",
    "password_confirmation": "SecurePass123!",
}


@pytest.mark.asyncio
class TestRegistration:
    async def test_register_creates_personal_team(self, client: AsyncClient, db_session):
        res = await client.post("/api/v1/auth/register", json=REGISTRATION)
        assert res.status_code == 201
        data = res.json()
        assert "access_token" in data
        assert data["api_key"].startswith("tf_")
        assert data["user"]["email"] == "grace@taskflow.dev"

        team = (await db_session.execute(select(Team).where(Team.id == data["user"]["team_id"]))).scalar_one()
        assert team.name == "Grace Hopper's Team"
        assert team.slug.startswith(f"grace-hopper-s-team-{data['user']['id']}-")
        assert team.owner_id == data["user"]["id"]
        assert data["user"]["current_team_id"] == team.id

    async def test_register_joins_existing_team(self, client: AsyncClient, db_session, test_team):
        res = await client.post("/api/v1/auth/register", json={**REGISTRATION, "team_id": test_team.id})
        assert res.status_code == 201
        assert res.json()["user"]["team_id"] == test_team.id
        teams = (await db_session.execute(select(Team))).scalars().all()
        assert len(teams) == 1

    async def test_register_unknown_team_rolls_back(self, client: AsyncClient, db_session):
        res = await client.post("/api/v1/auth/register", json={**REGISTRATION, "team_id": 4242})
        assert res.status_code == 422
        users = (await db_session.execute(select(User))).scalars().all()
        assert users == []

    async def test_register_weak_password(self, client: AsyncClient):
        res = await client.post("/api/v1/auth/register", json={
            **REGISTRATION, "password": "short", "password_confirmation": "short",
        })
        assert res.status_code == 422

    async def test_register_password_mismatch(self, client: AsyncClient):
        res = await client.post("/api/v1/auth/register", json={
            **REGISTRATION, "password_confirmation": "SomethingElse1!",
        })
        assert res.status_code == 422

    async def test_register_duplicate_email(self, client: AsyncClient):
        await client.post("/api/v1/auth/register", json=REGISTRATION)
        res = await client.post("/api/v1/auth/register", json=REGISTRATION)
        assert res.status_code == 409

    async def test_register_invalid_email(self, client: AsyncClient):
        res = await client.post("/api/v1/auth/register", json={**REGISTRATION, "email": "not-an-email"})
        assert res.status_code == 422


@pytest.mark.asyncio
class TestLogin:
    async def test_login_success(self, client: AsyncClient, test_user):
        res = await client.post("/api/v1/auth/login", json={
            "email": "testuser@taskflow.dev",
            "password": TEST_PASSWORD,
        })
        assert res.status_code == 200
        data = res.json()
        assert "access_token" in data
        assert data["api_key"] == test_user.api_key
        assert data["user"]["email"] == "testuser@taskflow.dev"

    async def test_login_generates_missing_api_key(self, client: AsyncClient, db_session, test_user):
        test_user.api_key = None
        await db_session.commit()

        res = await client.post("/api/v1/auth/login", json={
            "email": "testuser@taskflow.dev",
            "password": TEST_PASSWORD,
        })
        assert res.json()["api_key"].startswith("tf_")

    async def test_login_wrong_password(self, client: AsyncClient, test_user):
        res = await client.post("/api/v1/auth/login", json={
            "email": "testuser@taskflow.dev",
            "password": "WrongPassword123!",
        })
        assert res.status_code == 401

    async def test_login_brute_force_lockout(self, client: AsyncClient, test_user):
        for _ in range(5):
            await client.post("/api/v1/auth/login", json={
                "email": "testuser@taskflow.dev",
                "password": "WrongPassword123!",
            })
        res = await client.post("/api/v1/auth/login", json={
            "email": "testuser@taskflow.dev",
            "password": TEST_PASSWORD,
        })
        assert res.status_code == 429


@pytest.mark.asyncio
class TestTokens:
    async def test_me(self, client: AsyncClient, test_user):
        res = await client.get("/api/v1/auth/me", headers=get_auth_headers(test_user))
        assert res.status_code == 200
        assert res.json()["team_id"] == test_user.team_id

    async def test_invalid_token(self, client: AsyncClient):
        res = await client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-token"})
        assert res.status_code == 401

    async def test_api_key_use_is_stamped(self, client: AsyncClient, db_session, test_user):
        res = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {test_user.api_key}"})
        assert res.status_code == 200
        stamped = (await db_session.execute(
            select(User.api_key_last_used_at).where(User.id == test_user.id)
        )).scalar_one()
        assert stamped is not None

    async def test_expired_api_key_is_rejected(self, client: AsyncClient, db_session, test_user):
        test_user.api_key_expires_at = utcnow().replace(year=2000)
        await db_session.commit()
        res = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {test_user.api_key}"})
        assert res.status_code == 401

    async def test_unknown_api_key_is_rejected(self, client: AsyncClient):
        res = await client.get("/api/v1/auth/me", headers={"Authorization": "Bearer tf_nope"})
        assert res.status_code == 401

    async def test_api_token_endpoint(self, client: AsyncClient, test_user):
        res = await client.get("/api/v1/auth/api-token", headers=get_auth_headers(test_user))
        assert res.status_code == 200
        assert res.json()["api_key"] == test_user.api_key

    async def test_list_teams(self, client: AsyncClient, test_team, other_team):
        res = await client.get("/api/v1/auth/teams")
        assert [t["name"] for t in res.json()["teams"]] == ["Design Team", "MediaHaus Squad"]


@pytest.mark.asyncio
class TestBrowserSession:
    async def test_login_form_sets_session(self, client: AsyncClient, test_user):
        res = await login_session(client, test_user)
        assert res.headers["location"] == "/incident-command"
        page = await client.get("/incident-command")
        assert "Test User" in page.text

    async def test_login_form_rejects_bad_password(self, client: AsyncClient, test_user):
        res = await client.post("/login", data={"email": test_user.email, "password": "nope-nope"})
        assert res.status_code == 303
        assert res.headers["location"] == "/login"
        page = await client.get("/login")
        assert "These credentials do not match our records." in page.text

    async def test_login_redirects_to_safe_next(self, client: AsyncClient, test_user):
        res = await client.post("/login", data={
            "email": test_user.email, "password": TEST_PASSWORD, "next": "//evil.example",
        })
        assert res.headers["location"] == "/incident-command"

    async def test_register_form_logs_in(self, client: AsyncClient, db_session):
        res = await client.post("/register", data=REGISTRATION)
        assert res.status_code == 303
        assert res.headers["location"] == "/incident-command"
        user = (await db_session.execute(select(User).where(User.email == REGISTRATION["email"]))).scalar_one()
        assert user.team_id is not None

    async def test_api_token_from_session(self, client: AsyncClient, db_session, test_user):
        test_user.api_key = None
        await db_session.commit()
        await login_session(client, test_user)

        res = await client.get("/api-token")
        assert res.status_code == 200
        data = res.json()
        assert data["success"] is True
        assert data["api_key"].startswith("tf_")

        stamped = (await db_session.execute(
            select(User.api_key_last_used_at).where(User.id == test_user.id)
        )).scalar_one()
        assert stamped is not None

        tasks = await client.get("/api/v1/tasks", headers={"Authorization": f"Bearer {data['api_key']}"})
        assert tasks.status_code == 200

    async def test_api_token_without_session(self, client: AsyncClient):
        res = await client.get("/api-token")
        assert res.status_code == 200
        assert res.json() == {"success": False, "error": "Not authenticated."}

    async def test_logout_clears_session(self, client: AsyncClient, test_user):
        await login_session(client, test_user)
        await client.post("/logout")
        res = await client.post("/incident-command/incidents", data={
            "title": "x", "system": "y", "severity": "SEV3",
        })
        assert res.status_code == 303
        assert res.headers["location"].startswith("/login")


def test_password_hashing_round_trip():
    hashed = AuthService.hash_password("CorrectHorse1!")
    assert AuthService.verify_password("CorrectHorse1!", hashed)
    assert not AuthService.verify_password("WrongHorse1!", hashed)
