"""
Module routes/leaderboard.py
Rôle:
- Expose un classement simple (nom affiché optionnel + score).

Notes:
- `sort=score` → du meilleur score au plus faible ; `sort=recent` (défaut) → plus récents d'abord.
- `limit` plafonné à 100.
"""
from typing import Literal, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from app.services.session_recorder import LEADERBOARD

router = APIRouter(prefix="/leaderboard", tags=["leaderboard"])


class LeaderboardEntryPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    display_name: str = Field(..., alias="displayName", max_length=60)
    score: int = Field(..., ge=0)
    team_name: Optional[str] = Field(None, alias="teamName")
    session_id: Optional[str] = Field(None, alias="sessionId")


@router.get("")
async def leaderboard(
    limit: int = Query(10, ge=1, le=100),
    sort: Literal["score", "recent"] = Query("recent"),
):
    """Retourne le classement trié selon `sort`."""
    return {"entries": LEADERBOARD.top(limit, sort)}


@router.post("", status_code=201)
async def add_entry(payload: LeaderboardEntryPayload):
    try:
        return LEADERBOARD.add(payload.display_name, payload.score, payload.team_name, payload.session_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
