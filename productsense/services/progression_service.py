"""Progression engine: XP, levels and daily streaks.

``award_xp`` and ``update_streak`` are the only writers of a user's XP,
level and streak fields. Level is always recomputed from total XP, so the
stored level can never drift from the curve.
"""
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Tuple
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from productsense.core.errors import InvalidArgumentError, InvalidStateError, NotFoundError
from productsense.models import PracticeSession, SessionStatus, Streak, User, XpEvent
from productsense.services.achievements_service import AchievementEvaluator, AchievementEvent, UnlockedAchievement
from productsense.utils.dates import calendar_days_between, today_utc

logger = logging.getLogger(__name__)


def xp_for_level(level: int) -> int:
    """Cumulative XP needed to reach ``level``; level 1 needs none."""
    if level <= 1:
        return 0
    return level * level * 100


def level_from_xp(total_xp: int) -> int:
    level = 1
    while xp_for_level(level + 1) <= total_xp:
        level += 1
    return level


def xp_progress(total_xp: int) -> Dict[str, int]:
    level = level_from_xp(total_xp)
    current_level_xp = xp_for_level(level)
    next_level_xp = xp_for_level(level + 1)
    return {
        "level": level,
        "current_level_xp": current_level_xp,
        "next_level_xp": next_level_xp,
        "xp_to_next_level": next_level_xp - total_xp,
        "progress_percentage": round((total_xp - current_level_xp) * 100 / (next_level_xp - current_level_xp)),
    }


@dataclass
class XpResult:
    xp_earned: int
    total_xp: int
    level_up: bool
    previous_level: int
    new_level: int
    xp_to_next_level: int


@dataclass
class StreakResult:
    current_streak: int
    best_streak: int
    streak_updated: bool


@dataclass
class SessionProgressionResult:
    xp_result: XpResult
    streak_result: StreakResult
    achievements: List[UnlockedAchievement] = field(default_factory=list)
    bonus_xp: int = 0
    total_xp: int = 0
    level: int = 1


@dataclass
class ProgressionStats:
    level: int
    total_xp: int
    xp_to_next_level: int
    progress_percentage: int
    current_streak: int
    best_streak: int
    sessions_scored: int
    average_score: Optional[float]


class ProgressionEngine:
    def __init__(self, db: Session):
        self.db = db

    def _user(self, user_id, lock: bool = False) -> User:
        query = self.db.query(User).filter(User.id == user_id)
        if lock:
            query = query.with_for_update()
        user = query.first()
        if not user:
            raise NotFoundError("User not found")
        return user

    def award_xp(self, user_id, amount: int, reason: str, commit: bool = True) -> XpResult:
        """Add ``amount`` XP, recompute the level and write a ledger entry."""
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidArgumentError(f"XP amount must be a positive integer, got {amount!r}")
        if not reason or not reason.strip():
            raise InvalidArgumentError("XP award needs a reason")

        user = self._user(user_id, lock=True)
        previous_level = user.level
        user.total_xp = user.total_xp + amount
        user.level = level_from_xp(user.total_xp)
        self.db.add(XpEvent(user_id=user.id, amount=amount, reason=reason.strip()[:255]))
        if commit:
            self.db.commit()
        else:
            self.db.flush()

        result = XpResult(
            xp_earned=amount,
            total_xp=user.total_xp,
            level_up=user.level > previous_level,
            previous_level=previous_level,
            new_level=user.level,
            xp_to_next_level=xp_for_level(user.level + 1) - user.total_xp,
        )
        logger.info("Awarded %s XP to user %s (%s); total=%s", amount, user_id, reason, result.total_xp)
        if result.level_up:
            logger.info("User %s levelled up: %s -> %s", user_id, previous_level, result.new_level)
        return result

    def update_streak(self, user_id, activity_date: Optional[date] = None, commit: bool = True) -> StreakResult:
        """Count ``activity_date`` toward the daily streak.

        Same day as the last activity is a no-op, the next day extends the
        streak, and any longer gap restarts it at 1.
        """
        activity_date = activity_date or today_utc()
        user = self._user(user_id)
        streak = self.db.query(Streak).filter(Streak.user_id == user_id).with_for_update().first()

        updated = True
        if streak is None or streak.last_activity_date is None:
            if streak is None:
                streak = Streak(user_id=user_id, current_streak=0, best_streak=0)
                self.db.add(streak)
            streak.current_streak = 1
            streak.last_activity_date = activity_date
        else:
            days = calendar_days_between(streak.last_activity_date, activity_date)
            if days == 0:
                updated = False
            elif days < 0:
                logger.warning(
                    "Ignoring activity on %s for user %s; last activity was %s",
                    activity_date, user_id, streak.last_activity_date,
                )
                updated = False
            else:
                streak.current_streak = streak.current_streak + 1 if days == 1 else 1
                streak.last_activity_date = activity_date

        streak.best_streak = max(streak.best_streak or 0, streak.current_streak)
        user.best_streak = max(user.best_streak or 0, streak.best_streak)
        if commit:
            self.db.commit()
        else:
            self.db.flush()

        if updated:
            logger.info("Streak for user %s is now %s (best %s)", user_id, streak.current_streak, streak.best_streak)
        return StreakResult(current_streak=streak.current_streak, best_streak=streak.best_streak, streak_updated=updated)

    def process_session_completion(
        self,
        user_id,
        session_id,
        xp_earned: int,
        activity_date: Optional[date] = None,
    ) -> SessionProgressionResult:
        """Grant a scored session's XP and streak once, then run achievement checks.

        Raises:
            NotFoundError: unknown session or not owned by the user.
            InvalidStateError: session not SCORED, or already processed.
        """
        session = self.db.query(PracticeSession).filter(
            PracticeSession.id == session_id,
            PracticeSession.user_id == user_id,
        ).first()
        if not session:
            raise NotFoundError("Session not found")
        if session.status != SessionStatus.SCORED.value:
            raise InvalidStateError(f"Session is {session.status}; only SCORED sessions earn progression")

        claimed = self.db.query(PracticeSession).filter(
            PracticeSession.id == session.id,
            PracticeSession.status == SessionStatus.SCORED.value,
            PracticeSession.progression_applied.is_(False),
        ).update({PracticeSession.progression_applied: True}, synchronize_session=False)
        if claimed != 1:
            self.db.rollback()
            raise InvalidStateError("Progression was already applied for this session")

        try:
            xp_result = self.award_xp(user_id, xp_earned, f"Completed session {session_id}", commit=False)
            streak_result = self.update_streak(user_id, activity_date, commit=False)
        except Exception:
            self.db.rollback()
            raise
        self.db.commit()

        evaluator = AchievementEvaluator(self.db, self)
        metadata = {"session_id": str(session_id), "xp_earned": xp_earned}
        unlocked = evaluator.check_achievements(user_id, AchievementEvent.SESSION_COMPLETED, metadata)
        unlocked += evaluator.check_achievements(user_id, AchievementEvent.XP_AWARDED, metadata)
        if streak_result.streak_updated:
            unlocked += evaluator.check_achievements(user_id, AchievementEvent.STREAK_UPDATED, metadata)

        user = self._user(user_id)
        return SessionProgressionResult(
            xp_result=xp_result,
            streak_result=streak_result,
            achievements=unlocked,
            bonus_xp=sum(a.xp_reward for a in unlocked),
            total_xp=user.total_xp,
            level=user.level,
        )

    def get_streak(self, user_id) -> Optional[StreakResult]:
        streak = self.db.query(Streak).filter(Streak.user_id == user_id).first()
        if not streak:
            return None
        return StreakResult(current_streak=streak.current_streak, best_streak=streak.best_streak, streak_updated=False)

    def get_stats(self, user_id) -> ProgressionStats:
        user = self._user(user_id)
        streak = self.get_streak(user_id)
        count, average = self.db.query(
            func.count(PracticeSession.id), func.avg(PracticeSession.overall_score)
        ).filter(
            PracticeSession.user_id == user_id,
            PracticeSession.status == SessionStatus.SCORED.value,
        ).one()
        progress = xp_progress(user.total_xp)
        return ProgressionStats(
            level=user.level,
            total_xp=user.total_xp,
            xp_to_next_level=progress["xp_to_next_level"],
            progress_percentage=progress["progress_percentage"],
            current_streak=streak.current_streak if streak else 0,
            best_streak=max(user.best_streak or 0, streak.best_streak if streak else 0),
            sessions_scored=count or 0,
            average_score=round(float(average), 1) if count else None,
        )

    def get_xp_history(self, user_id, limit: int = 20, offset: int = 0) -> Tuple[List[XpEvent], int]:
        query = self.db.query(XpEvent).filter(XpEvent.user_id == user_id)
        total = query.with_entities(func.count(XpEvent.id)).scalar()
        events = query.order_by(XpEvent.created_at.desc()).offset(offset).limit(limit).all()
        return events, total

    def get_leaderboard(self, metric: str = "xp", limit: int = 10) -> List[Dict[str, Any]]:
        if metric == "xp":
            order = (User.total_xp.desc(), User.level.desc())
        elif metric == "streak":
            order = (User.best_streak.desc(), User.total_xp.desc())
        else:
            raise InvalidArgumentError(f"Unknown leaderboard metric: {metric}")
        users = self.db.query(User).order_by(*order, User.created_at).limit(limit).all()
        return [
            {
                "rank": rank,
                "user_id": str(u.id),
                "display_name": u.display_name,
                "level": u.level,
                "total_xp": u.total_xp,
                "best_streak": u.best_streak,
            }
            for rank, u in enumerate(users, 1)
        ]
