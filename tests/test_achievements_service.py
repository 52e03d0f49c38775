from datetime import date

import pytest

from productsense.core.errors import InvalidArgumentError
from productsense.models import Achievement, UserAchievement, XpEvent
from productsense.services.achievements_service import AchievementEvaluator, AchievementEvent
from productsense.services.progression_service import ProgressionEngine
from productsense.services.seeding import seed_achievements


@pytest.fixture
def progression(catalog):
    return ProgressionEngine(catalog)


@pytest.fixture
def evaluator(catalog, progression):
    return AchievementEvaluator(catalog, progression)


def _streak(progression, user_id, days):
    for day in range(1, days + 1):
        progression.update_streak(user_id, date(2026, 5, day))


def test_seeding_is_idempotent(catalog):
    assert seed_achievements(catalog) == 0
    assert catalog.query(Achievement).count() == 4


def test_streak_achievement_unlocks_once(evaluator, progression, user, db):
    _streak(progression, user.id, 3)

    unlocked = evaluator.check_achievements(user.id, AchievementEvent.STREAK_UPDATED)
    assert [a.code for a in unlocked] == ["STREAK_3"]
    assert unlocked[0].xp_reward == 300

    assert evaluator.check_achievements(user.id, AchievementEvent.STREAK_UPDATED) == []
    db.refresh(user)
    assert user.total_xp == 300
    assert db.query(UserAchievement).filter(UserAchievement.user_id == user.id).count() == 1


def test_rules_only_fire_for_their_event(evaluator, progression, user):
    _streak(progression, user.id, 3)
    assert evaluator.check_achievements(user.id, AchievementEvent.XP_AWARDED) == []
    assert evaluator.check_achievements(user.id, "SESSION_COMPLETED") == []


def test_xp_milestone(evaluator, progression, user, db):
    progression.award_xp(user.id, 1000, "Practice")
    unlocked = evaluator.check_achievements(user.id, AchievementEvent.XP_AWARDED)
    assert [a.code for a in unlocked] == ["XP_1000"]
    db.refresh(user)
    assert user.total_xp == 1500
    assert user.level == 3


def test_bonus_xp_does_not_cascade(evaluator, progression, user, db):
    _streak(progression, user.id, 7)

    unlocked = evaluator.check_achievements(user.id, AchievementEvent.STREAK_UPDATED)
    assert [a.code for a in unlocked] == ["STREAK_3", "STREAK_7"]

    db.refresh(user)
    assert user.total_xp == 1300
    codes = {ua.achievement.code for ua in db.query(UserAchievement).filter(UserAchievement.user_id == user.id)}
    assert "XP_1000" not in codes

    reasons = sorted(e.reason for e in db.query(XpEvent).filter(XpEvent.user_id == user.id))
    assert reasons == ["Achievement Unlocked: Consistency is Key", "Achievement Unlocked: Unstoppable"]


def test_unknown_event(evaluator, user):
    with pytest.raises(InvalidArgumentError):
        evaluator.check_achievements(user.id, "LEVEL_UP")


def test_user_achievement_view(evaluator, progression, user):
    _streak(progression, user.id, 3)
    evaluator.check_achievements(user.id, AchievementEvent.STREAK_UPDATED)

    view = {a["code"]: a for a in evaluator.get_user_achievements(user.id)}
    assert set(view) == {"FIRST_SESSION", "STREAK_3", "STREAK_7", "XP_1000"}
    assert view["STREAK_3"]["unlocked"] is True
    assert view["STREAK_3"]["unlocked_at"] is not None
    assert view["FIRST_SESSION"]["unlocked"] is False
    assert view["FIRST_SESSION"]["unlocked_at"] is None
