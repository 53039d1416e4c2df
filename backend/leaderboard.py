# leaderboard.py — Append-only game score board
import logging
from typing import Any, Dict, List

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import GameScore

logger = logging.getLogger("taskflow.leaderboard")

ORBITAL_DODGE = "orbital_dodge"
TOP_N = 10


class ScoreSubmit(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    score: int = Field(..., ge=1)


def score_to_dict(row: GameScore, full: bool = False) -> Dict[str, Any]:
    out = {
        "id": row.id,
        "name": row.name,
        "score": row.score,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }
    if full:
        out["game_key"] = row.game_key
        out["updated_at"] = row.updated_at.isoformat() if row.updated_at else None
    return out


async def top_scores(db: AsyncSession, game_key: str = ORBITAL_DODGE, limit: int = TOP_N) -> List[GameScore]:
    """Highest first; on equal score the earlier submission wins"""
    result = await db.execute(
        select(GameScore)
        .where(GameScore.game_key == game_key)
        .order_by(GameScore.score.desc(), GameScore.created_at.asc(), GameScore.id.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def submit_score(db: AsyncSession, data: ScoreSubmit, game_key: str = ORBITAL_DODGE) -> GameScore:
    row = GameScore(game_key=game_key, name=data.name, score=data.score)
    db.add(row)
    await db.commit()
    await db.refresh(row)
    logger.info(f"Score {row.score} submitted for {game_key} by '{row.name}'")
    return row
