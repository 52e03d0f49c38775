import random
import uuid

import pytest

from conftest import make_user
from productsense.core.errors import (
    ConflictError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
    OutOfOrderError,
    ValidationFailedError,
)
from productsense.models import PracticeSession, Step
from productsense.services import session_service
from productsense.services.session_service import PromptSelector, SessionLifecycleManager


class FixedRandom(random.Random):
    def __init__(self, value):
        super().__init__(0)
        self.value = value

    def random(self):
        return self.value


@pytest.fixture
def manager(catalog):
    return SessionLifecycleManager(catalog, PromptSelector(random.Random(7)))


def test_start_creates_active_session_at_step_one(manager, user):
    result = manager.start(user.id)
    assert result.session.status == "ACTIVE"
    assert result.session.current_step == 1
    assert result.session.prompt_id == result.prompt.id
    assert manager.get_active(user.id).id == result.session.id


def test_only_one_active_session(manager, user):
    manager.start(user.id)
    with pytest.raises(ConflictError):
        manager.start(user.id)


def test_start_with_empty_catalog(db, user):
    with pytest.raises(NotFoundError):
        SessionLifecycleManager(db).start(user.id)


def test_start_for_unknown_user(manager):
    with pytest.raises(NotFoundError):
        manager.start(uuid.uuid4())


def test_steps_must_be_saved_in_order(manager, user, valid_steps):
    session = manager.start(user.id).session
    with pytest.raises(OutOfOrderError):
        manager.save_step(session.id, user.id, 2, valid_steps[2])

    result = manager.save_step(session.id, user.id, 1, valid_steps[1])
    assert result.advanced
    assert result.next_step == 2
    assert result.session.current_step == 2


def test_resaving_earlier_step_does_not_advance(manager, user, valid_steps):
    session = manager.start(user.id).session
    manager.save_step(session.id, user.id, 1, valid_steps[1])
    manager.save_step(session.id, user.id, 2, valid_steps[2])

    edited = dict(valid_steps[1], objective="ACTIVATION")
    result = manager.save_step(session.id, user.id, 1, edited)
    assert not result.advanced
    assert result.session.current_step == 3
    assert result.step.payload["objective"] == "ACTIVATION"
    assert manager.db.query(Step).filter(Step.session_id == session.id).count() == 2


def test_invalid_step_leaves_session_untouched(manager, user):
    session = manager.start(user.id).session
    with pytest.raises(ValidationFailedError) as exc_info:
        manager.save_step(session.id, user.id, 1, {"objective": "RETENTION", "goal_sentence": "short"})
    assert exc_info.value.errors == {"goal_sentence": "Goal must be at least 20 characters"}
    assert manager.get_session(session.id, user.id).current_step == 1
    assert manager.db.query(Step).count() == 0


@pytest.mark.parametrize("step_number", [0, 9, -1])
def test_step_number_out_of_range(manager, user, step_number):
    session = manager.start(user.id).session
    with pytest.raises(InvalidArgumentError):
        manager.save_step(session.id, user.id, step_number, {})


def test_step_eight_stays_on_eight(manager, user, valid_steps):
    session = manager.start(user.id).session
    for number in range(1, 9):
        result = manager.save_step(session.id, user.id, number, valid_steps[number])
    assert result.session.current_step == 8
    assert not result.advanced
    assert result.next_step is None
    assert result.step.payload["summary"].startswith("# Practice Session Summary")


def test_complete_requires_all_steps(manager, user, valid_steps):
    session = manager.start(user.id).session
    manager.save_step(session.id, user.id, 1, valid_steps[1])
    with pytest.raises(InvalidStateError) as exc_info:
        manager.complete(session.id, user.id)
    assert exc_info.value.details == {"missing_steps": [2, 3, 4, 5, 6, 7, 8]}


def test_completed_session_rejects_saves(completed_session, catalog, user, valid_steps):
    assert completed_session.status == "COMPLETED"
    assert completed_session.completed_at is not None

    manager = SessionLifecycleManager(catalog)
    with pytest.raises(InvalidStateError):
        manager.save_step(completed_session.id, user.id, 1, valid_steps[1])
    with pytest.raises(InvalidStateError):
        manager.complete(completed_session.id, user.id)


def test_new_session_allowed_after_completion(completed_session, catalog, user):
    manager = SessionLifecycleManager(catalog)
    assert manager.get_active(user.id) is None
    assert manager.start(user.id).session.id != completed_session.id


def test_sessions_are_private(manager, user, db, valid_steps):
    other = make_user(db, email="other@example.com")
    session = manager.start(user.id).session
    with pytest.raises(NotFoundError):
        manager.get_session(session.id, other.id)
    with pytest.raises(NotFoundError):
        manager.save_step(session.id, other.id, 1, valid_steps[1])


def test_list_sessions(completed_session, catalog, user):
    manager = SessionLifecycleManager(catalog)
    manager.start(user.id)

    sessions, total = manager.list_sessions(user.id)
    assert total == 2

    sessions, total = manager.list_sessions(user.id, status="COMPLETED")
    assert total == 1
    assert sessions[0].id == completed_session.id

    with pytest.raises(InvalidArgumentError):
        manager.list_sessions(user.id, status="DONE")


def test_prompt_difficulty_bands():
    assert PromptSelector(FixedRandom(0.1)).difficulty_for_level(1) == 1
    assert PromptSelector(FixedRandom(0.9)).difficulty_for_level(3) == 2
    assert PromptSelector(FixedRandom(0.1)).difficulty_for_level(5) == 2
    assert PromptSelector(FixedRandom(0.9)).difficulty_for_level(7) == 3
    assert PromptSelector(FixedRandom(0.1)).difficulty_for_level(12) == 3


def test_prompt_selection_is_reproducible(catalog):
    first = PromptSelector(random.Random(42)).select(catalog, 1)
    second = PromptSelector(random.Random(42)).select(catalog, 1)
    assert first.id == second.id


def test_start_race_on_the_active_slot(manager, user, db):
    manager.start(user.id)
    # a second request whose active-session check ran before the first commit
    manager.get_active = lambda user_id: None
    with pytest.raises(ConflictError):
        manager.start(user.id)
    assert db.query(PracticeSession).filter(PracticeSession.status == "ACTIVE").count() == 1


def _concurrent_write(monkeypatch, db, session_id, values):
    """Apply ``values`` to the session row after validation, before the guarded update."""
    validate = session_service.validate_step

    def validate_then_write(*args, **kwargs):
        result = validate(*args, **kwargs)
        db.query(PracticeSession).filter(PracticeSession.id == session_id).update(
            values, synchronize_session=False
        )
        db.commit()
        return result

    monkeypatch.setattr(session_service, "validate_step", validate_then_write)


def test_save_losing_step_race_is_out_of_order(monkeypatch, manager, user, db, valid_steps):
    session = manager.start(user.id).session
    _concurrent_write(monkeypatch, db, session.id, {PracticeSession.current_step: 2})

    with pytest.raises(OutOfOrderError):
        manager.save_step(session.id, user.id, 1, valid_steps[1])
    assert db.query(Step).count() == 0
    assert manager.get_session(session.id, user.id).current_step == 2


def test_save_after_concurrent_completion_is_invalid_state(monkeypatch, manager, user, db, valid_steps):
    session = manager.start(user.id).session
    _concurrent_write(monkeypatch, db, session.id, {PracticeSession.status: "COMPLETED"})

    with pytest.raises(InvalidStateError):
        manager.save_step(session.id, user.id, 1, valid_steps[1])
    assert db.query(Step).count() == 0
