"""Achievement evaluator.

Each catalog rule listens to exactly one progression event and reads the
user's current state to decide whether to unlock. The ``user_achievements``
row is the only idempotency guard: it is written before the bonus XP is
granted, and a rule whose row already exists is skipped.

Bonus XP is granted through ``ProgressionEngine.award_xp``, which never
triggers an evaluation itself, so one event produces at most one pass.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from productsense.core.errors import InvalidArgumentError
from productsense.models import Achievement, PracticeSession, SessionStatus, Streak, User, UserAchievement

logger = logging.getLogger(__name__)


class AchievementEvent(str, Enum):
    SESSION_COMPLETED = "SESSION_COMPLETED"
    STREAK_UPDATED = "STREAK_UPDATED"
    XP_AWARDED = "XP_AWARDED"


@dataclass(frozen=True)
class AchievementRule:
    event: AchievementEvent
    is_met: Callable[[Session, Any, Dict[str, Any]], bool]


def _scored_sessions(db: Session, user_id) -> int:
    return db.query(func.count(PracticeSession.id)).filter(
        PracticeSession.user_id == user_id,
        PracticeSession.status == SessionStatus.SCORED.value,
    ).scalar() or 0


def _current_streak(db: Session, user_id) -> int:
    streak = db.query(Streak).filter(Streak.user_id == user_id).first()
    return streak.current_streak if streak else 0


def _total_xp(db: Session, user_id) -> int:
    user = db.query(User).filter(User.id == user_id).first()
    return user.total_xp if user else 0


ACHIEVEMENT_RULES: Dict[str, AchievementRule] = {
    "FIRST_SESSION": AchievementRule(AchievementEvent.SESSION_COMPLETED, lambda db, uid, meta: _scored_sessions(db, uid) >= 1),
    "STREAK_3": AchievementRule(AchievementEvent.STREAK_UPDATED, lambda db, uid, meta: _current_streak(db, uid) >= 3),
    "STREAK_7": AchievementRule(AchievementEvent.STREAK_UPDATED, lambda db, uid, meta: _current_streak(db, uid) >= 7),
    "XP_1000": AchievementRule(AchievementEvent.XP_AWARDED, lambda db, uid, meta: _total_xp(db, uid) >= 1000),
}

DEFAULT_ACHIEVEMENTS = [
    {"code": "FIRST_SESSION", "name": "First Steps", "description": "Complete your first practice session", "icon": "Footprints", "xp_reward": 100},
    {"code": "STREAK_3", "name": "Consistency is Key", "description": "Reach a 3-day streak", "icon": "Flame", "xp_reward": 300},
    {"code": "STREAK_7", "name": "Unstoppable", "description": "Reach a 7-day streak", "icon": "Zap", "xp_reward": 1000},
    {"code": "XP_1000", "name": "Rising Star", "description": "Earn 1000 total XP", "icon": "Star", "xp_reward": 500},
]


@dataclass
class UnlockedAchievement:
    code: str
    name: str
    description: str
    icon: Optional[str]
    xp_reward: int
    unlocked_at: datetime


class AchievementEvaluator:
    def __init__(self, db: Session, progression):
        self.db = db
        self.progression = progression

    def check_achievements(self, user_id, event, metadata: Optional[Dict[str, Any]] = None) -> List[UnlockedAchievement]:
        """Run one evaluation pass for ``event`` and return what it unlocked."""
        try:
            event = AchievementEvent(event)
        except ValueError as exc:
            raise InvalidArgumentError(f"Unknown achievement event: {event}") from exc

        unlocked_ids = {
            row.achievement_id
            for row in self.db.query(UserAchievement.achievement_id).filter(UserAchievement.user_id == user_id)
        }
        catalog = self.db.query(Achievement).order_by(Achievement.xp_reward, Achievement.code).all()

        results: List[UnlockedAchievement] = []
        for achievement in catalog:
            if achievement.id in unlocked_ids:
                continue
            rule = ACHIEVEMENT_RULES.get(achievement.code)
            if rule is None or rule.event != event:
                continue
            if not rule.is_met(self.db, user_id, metadata or {}):
                continue

            record = UserAchievement(user_id=user_id, achievement_id=achievement.id)
            self.db.add(record)
            try:
                self.db.flush()
            except IntegrityError:
                self.db.rollback()
                logger.info("Achievement %s already unlocked for user %s", achievement.code, user_id)
                continue
            if achievement.xp_reward > 0:
                self.progression.award_xp(
                    user_id, achievement.xp_reward, f"Achievement Unlocked: {achievement.name}", commit=False
                )
            self.db.commit()

            logger.info("User %s unlocked achievement %s (+%s XP)", user_id, achievement.code, achievement.xp_reward)
            results.append(UnlockedAchievement(
                code=achievement.code,
                name=achievement.name,
                description=achievement.description,
                icon=achievement.icon,
                xp_reward=achievement.xp_reward,
                unlocked_at=record.unlocked_at,
            ))
        return results

    def get_user_achievements(self, user_id) -> List[Dict[str, Any]]:
        """Every catalog entry, flagged with whether and when the user unlocked it."""
        catalog = self.db.query(Achievement).order_by(Achievement.xp_reward, Achievement.code).all()
        unlocked = {
            ua.achievement_id: ua.unlocked_at
            for ua in self.db.query(UserAchievement).filter(UserAchievement.user_id == user_id)
        }
        return [
            {
                "code": a.code,
                "name": a.name,
                "description": a.description,
                "icon": a.icon,
                "xp_reward": a.xp_reward,
                "unlocked": a.id in unlocked,
                "unlocked_at": unlocked.get(a.id),
            }
            for a in catalog
        ]
