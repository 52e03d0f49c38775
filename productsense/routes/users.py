"""User routes."""
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from productsense.core.security import get_current_user
from productsense.models.user import User
from productsense.services.progression_service import xp_progress


router = APIRouter(prefix="/users", tags=["Users"])


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    display_name: Optional[str]
    level: int
    total_xp: int
    best_streak: int
    xp_to_next_level: int
    created_at: Optional[datetime]


@router.get("/me", response_model=UserResponse)
def get_me(current_user: User = Depends(get_current_user)):
    """Get the current user's profile and XP totals."""
    return UserResponse(
        id=str(current_user.id),
        email=current_user.email,
        display_name=current_user.display_name,
        level=current_user.level,
        total_xp=current_user.total_xp,
        best_streak=current_user.best_streak,
        xp_to_next_level=xp_progress(current_user.total_xp)["xp_to_next_level"],
        created_at=current_user.created_at,
    )
