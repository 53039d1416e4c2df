# routers/leaderboard.py — Public Orbital Dodge leaderboard
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from leaderboard import ScoreSubmit, top_scores, submit_score, score_to_dict

router = APIRouter(prefix="/api/leaderboard", tags=["Leaderboard"])


@router.get("/orbital-dodge")
async def index(db: AsyncSession = Depends(get_db_session)):
    """Top 10 scores"""
    return [score_to_dict(row) for row in await top_scores(db)]


@router.post("/orbital-dodge", status_code=201)
async def store(data: ScoreSubmit, db: AsyncSession = Depends(get_db_session)):
    row = await submit_score(db, data)
    return score_to_dict(row, full=True)
