# tests/test_leaderboard.py — Orbital Dodge leaderboard tests
import pytest
from httpx import AsyncClient

from leaderboard import ScoreSubmit, submit_score, top_scores


@pytest.mark.asyncio
async def test_submit_score(client: AsyncClient):
    resp = await client.post("/api/leaderboard/orbital-dodge", json={"name": "Nova", "score": 4200})
    assert resp.status_code == 201
    data = resp.json()
    assert data["name"] == "Nova"
    assert data["score"] == 4200
    assert data["game_key"] == "orbital_dodge"
    assert data["id"] is not None


@pytest.mark.asyncio
async def test_equal_scores_keep_submission_order(client: AsyncClient):
    await client.post("/api/leaderboard/orbital-dodge", json={"name": "A", "score": 100})
    await client.post("/api/leaderboard/orbital-dodge", json={"name": "B", "score": 100})
    await client.post("/api/leaderboard/orbital-dodge", json={"name": "C", "score": 250})

    resp = await client.get("/api/leaderboard/orbital-dodge")
    assert resp.status_code == 200
    assert [row["name"] for row in resp.json()] == ["C", "A", "B"]
    assert set(resp.json()[0]) == {"id", "name", "score", "created_at"}


@pytest.mark.asyncio
async def test_duplicate_names_are_not_merged(client: AsyncClient):
    for score in (10, 20):
        await client.post("/api/leaderboard/orbital-dodge", json={"name": "Echo", "score": score})
    resp = await client.get("/api/leaderboard/orbital-dodge")
    assert [row["score"] for row in resp.json()] == [20, 10]


@pytest.mark.asyncio
async def test_top_ten_only(client: AsyncClient):
    for i in range(12):
        await client.post("/api/leaderboard/orbital-dodge", json={"name": f"P{i}", "score": i + 1})
    resp = await client.get("/api/leaderboard/orbital-dodge")
    scores = [row["score"] for row in resp.json()]
    assert len(scores) == 10
    assert scores[0] == 12
    assert scores[-1] == 3


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [
    {"name": "Zero", "score": 0},
    {"name": "Neg", "score": -5},
    {"name": "x" * 51, "score": 10},
    {"score": 10},
    {"name": "NoScore"},
])
async def test_invalid_submissions_are_rejected(client: AsyncClient, payload):
    resp = await client.post("/api/leaderboard/orbital-dodge", json=payload)
    assert resp.status_code == 422
    assert (await client.get("/api/leaderboard/orbital-dodge")).json() == []


@pytest.mark.asyncio
async def test_other_games_are_kept_apart(db_session):
    await submit_score(db_session, ScoreSubmit(name="OnCallOps", score=1800), game_key="incident_sim")
    await submit_score(db_session, ScoreSubmit(name="Nova", score=10))

    rows = await top_scores(db_session)
    assert [r.name for r in rows] == ["Nova"]
