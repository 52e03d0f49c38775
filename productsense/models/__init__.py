"""Database models."""
from productsense.models.user import User
from productsense.models.prompt import Prompt
from productsense.models.practice_session import PracticeSession, SessionStatus, TOTAL_STEPS
from productsense.models.step import Step, STEP_NAMES
from productsense.models.progression import Streak, XpEvent
from productsense.models.achievement import Achievement, UserAchievement

__all__ = [
    "User",
    "Prompt",
    "PracticeSession",
    "SessionStatus",
    "TOTAL_STEPS",
    "Step",
    "STEP_NAMES",
    "Streak",
    "XpEvent",
    "Achievement",
    "UserAchievement",
]
