"""Progression routes: stats, XP ledger and leaderboard."""
from dataclasses import asdict
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from productsense.db.sessions import get_db
from productsense.core.security import get_current_user
from productsense.services.progression_service import ProgressionEngine


router = APIRouter(prefix="/progression", tags=["Progression"])


class StatsResponse(BaseModel):
    level: int
    total_xp: int
    xp_to_next_level: int
    progress_percentage: int
    current_streak: int
    best_streak: int
    sessions_scored: int
    average_score: Optional[float]


class XpEventOut(BaseModel):
    amount: int
    reason: str
    created_at: Optional[datetime]


class XpHistoryResponse(BaseModel):
    events: List[XpEventOut]
    total: int


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: str
    display_name: Optional[str]
    level: int
    total_xp: int
    best_streak: int


class LeaderboardResponse(BaseModel):
    metric: str
    entries: List[LeaderboardEntry]


@router.get("/stats", response_model=StatsResponse)
def get_stats(db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    return asdict(ProgressionEngine(db).get_stats(current_user.id))


@router.get("/xp-history", response_model=XpHistoryResponse)
def get_xp_history(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    events, total = ProgressionEngine(db).get_xp_history(current_user.id, limit=limit, offset=offset)
    return {
        "events": [{"amount": e.amount, "reason": e.reason, "created_at": e.created_at} for e in events],
        "total": total,
    }


@router.get("/leaderboard", response_model=LeaderboardResponse)
def get_leaderboard(
    metric: str = Query("xp"),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    entries = ProgressionEngine(db).get_leaderboard(metric=metric, limit=limit)
    return {"metric": metric, "entries": entries}
