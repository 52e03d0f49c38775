"""Session lifecycle manager.

Owns the ACTIVE part of a practice session: starting a session on a catalog
prompt, saving the eight steps in order, and handing the finished session
over for scoring. State checks double as optimistic guards: every
transition is a conditional UPDATE, so a concurrent loser gets
INVALID_STATE or OUT_OF_ORDER instead of corrupting step order.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
import logging
import random

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from productsense.core.config import settings
from productsense.core.errors import (
    ConflictError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
    OutOfOrderError,
    ValidationFailedError,
)
from productsense.models import PracticeSession, Prompt, SessionStatus, Step, STEP_NAMES, TOTAL_STEPS, User
from productsense.services.step_validator import validate_step
from productsense.utils.dates import utcnow

logger = logging.getLogger(__name__)

ACTIVE_SESSION_EXISTS = "You already have an active session. Complete it before starting a new one."
SESSION_NOT_FOUND = "Session not found"


@dataclass
class StartSessionResult:
    session: PracticeSession
    prompt: Prompt


@dataclass
class SaveStepResult:
    session: PracticeSession
    step: Step
    advanced: bool
    next_step: Optional[int]


class PromptSelector:
    """Picks a catalog prompt whose difficulty fits the user's level.

    Level 1-3 mostly gets difficulty 1, level 4-7 mostly difficulty 2, and
    level 8+ difficulty 3. The random source is injectable so selection is
    reproducible for a given seed.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random(settings.PROMPT_SELECTION_SEED)

    def difficulty_for_level(self, level: int) -> int:
        if level <= 3:
            return 1 if self.rng.random() < 0.7 else 2
        if level <= 7:
            return 2 if self.rng.random() < 0.7 else 3
        return 3

    def select(self, db: Session, level: int) -> Prompt:
        difficulty = self.difficulty_for_level(level)
        prompts = db.query(Prompt).filter(Prompt.difficulty == difficulty).order_by(Prompt.name).all()
        if not prompts:
            logger.info("No prompts at difficulty %s; falling back to full catalog", difficulty)
            prompts = db.query(Prompt).order_by(Prompt.name).all()
        if not prompts:
            raise NotFoundError("No prompts available in the catalog")
        return self.rng.choice(prompts)


class SessionLifecycleManager:
    def __init__(self, db: Session, prompt_selector: Optional[PromptSelector] = None):
        self.db = db
        self.prompt_selector = prompt_selector or PromptSelector()

    # ------------------------------------------------------------------ queries
    def get_active(self, user_id) -> Optional[PracticeSession]:
        """Return the user's ACTIVE session, or None."""
        return self.db.query(PracticeSession).filter(
            PracticeSession.user_id == user_id,
            PracticeSession.status == SessionStatus.ACTIVE.value,
        ).first()

    def get_session(self, session_id, user_id) -> PracticeSession:
        session = self.db.query(PracticeSession).filter(
            PracticeSession.id == session_id,
            PracticeSession.user_id == user_id,
        ).first()
        if not session:
            raise NotFoundError(SESSION_NOT_FOUND)
        return session

    def list_sessions(
        self,
        user_id,
        status: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[PracticeSession], int]:
        query = self.db.query(PracticeSession).filter(PracticeSession.user_id == user_id)
        if status:
            if status not in SessionStatus.__members__:
                raise InvalidArgumentError(f"Unknown session status: {status}")
            query = query.filter(PracticeSession.status == status)
        total = query.with_entities(func.count(PracticeSession.id)).scalar()
        sessions = query.order_by(PracticeSession.started_at.desc()).offset(offset).limit(limit).all()
        return sessions, total

    # ---------------------------------------------------------------- commands
    def start(self, user_id) -> StartSessionResult:
        """Create a new ACTIVE session at step 1 on a freshly selected prompt."""
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFoundError("User not found")
        if self.get_active(user_id):
            raise ConflictError(ACTIVE_SESSION_EXISTS)

        prompt = self.prompt_selector.select(self.db, user.level)
        session = PracticeSession(
            user_id=user_id,
            prompt_id=prompt.id,
            status=SessionStatus.ACTIVE.value,
            current_step=1,
        )
        self.db.add(session)
        try:
            self.db.commit()
        except IntegrityError as exc:
            # another request won the race for the single ACTIVE slot
            self.db.rollback()
            raise ConflictError(ACTIVE_SESSION_EXISTS) from exc
        self.db.refresh(session)
        logger.info("Started session %s for user %s on prompt %s", session.id, user_id, prompt.name)
        return StartSessionResult(session=session, prompt=prompt)

    def save_step(self, session_id, user_id, step_number: int, raw_payload) -> SaveStepResult:
        """Validate and persist one step; advance ``current_step`` when it is the frontier.

        Re-saving an earlier step overwrites it and leaves ``current_step`` alone.
        """
        if not isinstance(step_number, int) or isinstance(step_number, bool) or not 1 <= step_number <= TOTAL_STEPS:
            raise InvalidArgumentError(f"Invalid step number: {step_number}")

        session = self.get_session(session_id, user_id)
        if session.status != SessionStatus.ACTIVE.value:
            raise InvalidStateError(f"Session is {session.status}; steps can only be saved while ACTIVE")
        expected_step = session.current_step
        if step_number > expected_step:
            raise OutOfOrderError(f"Step {step_number} cannot be saved before step {expected_step}")

        saved: Dict[int, Step] = {s.step_number: s for s in session.steps}
        previous = {n: s.payload for n, s in saved.items()}
        result = validate_step(step_number, raw_payload, previous)
        if not result.ok:
            logger.debug("Step %s of session %s rejected: %s", step_number, session_id, result.errors)
            raise ValidationFailedError(result.errors)

        now = utcnow()
        advances = step_number == expected_step and expected_step < TOTAL_STEPS
        guard = self.db.query(PracticeSession).filter(
            PracticeSession.id == session.id,
            PracticeSession.status == SessionStatus.ACTIVE.value,
            PracticeSession.current_step == expected_step,
        )
        values = {PracticeSession.updated_at: now}
        if advances:
            values[PracticeSession.current_step] = expected_step + 1
        if guard.update(values, synchronize_session=False) != 1:
            self.db.rollback()
            raise self._lost_race(session.id, step_number)

        step = saved.get(step_number)
        if step is None:
            step = Step(
                session_id=session.id,
                step_number=step_number,
                step_name=STEP_NAMES[step_number - 1],
                payload=result.data,
            )
            self.db.add(step)
        else:
            step.payload = result.data
            step.updated_at = now
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise OutOfOrderError(f"Step {step_number} was saved concurrently; reload the session") from exc

        self.db.refresh(session)
        logger.info(
            "Saved step %s (%s) for session %s; current_step=%s",
            step_number, result.step_name, session.id, session.current_step,
        )
        next_step = step_number + 1 if step_number < TOTAL_STEPS else None
        return SaveStepResult(session=session, step=step, advanced=advances, next_step=next_step)

    def complete(self, session_id, user_id) -> PracticeSession:
        """Mark a fully answered session COMPLETED, ready for scoring."""
        session = self.get_session(session_id, user_id)
        if session.status != SessionStatus.ACTIVE.value:
            raise InvalidStateError(f"Session is {session.status}; only ACTIVE sessions can be completed")
        saved = {s.step_number for s in session.steps}
        missing = [n for n in range(1, TOTAL_STEPS + 1) if n not in saved]
        if missing or session.current_step != TOTAL_STEPS:
            raise InvalidStateError(
                f"All {TOTAL_STEPS} steps must be completed before finishing the session",
                details={"missing_steps": missing},
            )

        now = utcnow()
        updated = self.db.query(PracticeSession).filter(
            PracticeSession.id == session.id,
            PracticeSession.status == SessionStatus.ACTIVE.value,
        ).update(
            {
                PracticeSession.status: SessionStatus.COMPLETED.value,
                PracticeSession.completed_at: now,
                PracticeSession.updated_at: now,
            },
            synchronize_session=False,
        )
        if updated != 1:
            self.db.rollback()
            raise InvalidStateError("Session is no longer ACTIVE")
        self.db.commit()
        self.db.refresh(session)
        logger.info("Completed session %s for user %s", session.id, user_id)
        return session

    def _lost_race(self, session_id, step_number: int):
        current = self.db.query(PracticeSession).filter(PracticeSession.id == session_id).first()
        if current is None or current.status != SessionStatus.ACTIVE.value:
            return InvalidStateError("Session is no longer ACTIVE")
        return OutOfOrderError(f"Step {step_number} conflicts with a concurrent save; current step is {current.current_step}")
