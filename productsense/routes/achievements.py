"""Achievement routes."""
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from productsense.db.sessions import get_db
from productsense.core.security import get_current_user
from productsense.services.achievements_service import AchievementEvaluator
from productsense.services.progression_service import ProgressionEngine


router = APIRouter(prefix="/achievements", tags=["Achievements"])


class AchievementItem(BaseModel):
    code: str
    name: str
    description: str
    icon: Optional[str]
    xp_reward: int
    unlocked: bool
    unlocked_at: Optional[datetime] = None


class AchievementListResponse(BaseModel):
    achievements: List[AchievementItem]
    unlocked_count: int


@router.get("", response_model=AchievementListResponse)
def list_achievements(db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    """Full achievement catalog with the caller's unlock state."""
    evaluator = AchievementEvaluator(db, ProgressionEngine(db))
    items = evaluator.get_user_achievements(current_user.id)
    return {"achievements": items, "unlocked_count": sum(1 for a in items if a["unlocked"])}
