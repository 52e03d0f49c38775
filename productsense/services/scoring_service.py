"""Scoring orchestrator.

Turns a COMPLETED (or previously FAILED) session into one request to the
external judge, validates the answer, and records the result:

    COMPLETED|FAILED --score--> SCORING --ok--> SCORED
                                        --error--> FAILED

The judge call is the only long-latency operation in the core, so ``score``
is a coroutine and the call is bounded by ``SCORING_TIMEOUT_SECONDS``. A
SCORED session can never be scored again, which is what keeps XP issuance
to one grant per session.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import asyncio
import logging
import math

from pydantic import ValidationError
from sqlalchemy.orm import Session

from productsense.core.config import settings
from productsense.core.errors import InvalidStateError, NotFoundError, UpstreamFailureError
from productsense.models import PracticeSession, SessionStatus, TOTAL_STEPS
from productsense.schemas.scoring import JudgeResponse
from productsense.utils.dates import utcnow

logger = logging.getLogger(__name__)

SCOREABLE_STATUSES = (SessionStatus.COMPLETED.value, SessionStatus.FAILED.value)

# (minimum overall score, XP awarded)
XP_TIERS = ((90, 250), (80, 200), (70, 150), (60, 100), (0, 50))

PERFORMANCE_LABELS = ((90, "Exceptional"), (80, "Strong"), (70, "Good"), (60, "Adequate"), (0, "Needs Improvement"))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def xp_for_score(overall_score: int) -> int:
    """XP reward for a scored session; monotonic in the score, between 50 and 250."""
    for floor, xp in XP_TIERS:
        if overall_score >= floor:
            return xp
    return XP_TIERS[-1][1]


def performance_label(overall_score: int) -> str:
    for floor, label in PERFORMANCE_LABELS:
        if overall_score >= floor:
            return label
    return PERFORMANCE_LABELS[-1][1]


def compute_overall_score(step_scores: List[int], judge_overall: Optional[float] = None) -> int:
    """The judge's aggregate when it is present and in range, else the rounded mean."""
    if judge_overall is not None and 0 <= judge_overall <= 100:
        return round_half_up(judge_overall)
    return round_half_up(sum(step_scores) / len(step_scores))


def build_scoring_summary(step_scores: List[Dict[str, Any]], overall_score: int) -> str:
    strengths = [s for step in step_scores for s in step["strengths"]][:3]
    improvements = [s for step in step_scores for s in step["improvements"]][:3]
    return "\n".join([
        f"**Overall Score: {overall_score}/100 ({performance_label(overall_score)})**",
        "",
        "**Top Strengths:**",
        ", ".join(strengths) or "N/A",
        "",
        "**Areas for Improvement:**",
        ", ".join(improvements) or "N/A",
    ])


@dataclass
class ScoringOutcome:
    session: PracticeSession
    overall_score: int
    xp_earned: int
    summary: str
    step_scores: List[Dict[str, Any]] = field(default_factory=list)


class ScoringOrchestrator:
    def __init__(self, db: Session, judge, timeout: Optional[float] = None):
        self.db = db
        self.judge = judge
        self.timeout = timeout if timeout is not None else settings.SCORING_TIMEOUT_SECONDS

    async def score(self, session_id, user_id=None) -> ScoringOutcome:
        """Score a session once; on judge failure the session becomes FAILED.

        Raises:
            NotFoundError: unknown session (or not owned by ``user_id``).
            InvalidStateError: status is not COMPLETED or FAILED.
            UpstreamFailureError: the judge errored, timed out or answered malformed.
        """
        query = self.db.query(PracticeSession).filter(PracticeSession.id == session_id)
        if user_id is not None:
            query = query.filter(PracticeSession.user_id == user_id)
        session = query.first()
        if not session:
            raise NotFoundError("Session not found")

        self._begin(session)
        prompt = session.prompt.to_dict()
        steps = [
            {"step_number": s.step_number, "step_name": s.step_name, "payload": s.payload}
            for s in session.steps
        ]
        logger.info("Scoring session %s (attempt %s)", session.id, session.scoring_attempts)

        try:
            raw = await asyncio.wait_for(self.judge.evaluate(prompt, steps), timeout=self.timeout)
            response = JudgeResponse.model_validate(raw)
        except asyncio.TimeoutError as exc:
            reason = f"Scoring timed out after {self.timeout:g} seconds"
            self._fail(session, reason)
            raise UpstreamFailureError(reason) from exc
        except ValidationError as exc:
            reason = f"Malformed scoring response: {exc.error_count()} validation error(s)"
            self._fail(session, f"{reason}\n{exc}")
            problems = {".".join(str(p) for p in err["loc"]): err["msg"] for err in exc.errors()}
            raise UpstreamFailureError(reason, details={"fields": problems}) from exc
        except asyncio.CancelledError:
            # SCORING must not outlive the request that started it
            self._fail(session, "Scoring cancelled")
            raise
        except Exception as exc:
            reason = str(exc) or exc.__class__.__name__
            self._fail(session, reason)
            raise UpstreamFailureError(reason) from exc

        return self._record(session, response)

    def pending_progression(self, session_id, user_id) -> Optional[ScoringOutcome]:
        """The stored outcome of a SCORED session whose XP was never applied, else None."""
        session = self.db.query(PracticeSession).filter(
            PracticeSession.id == session_id,
            PracticeSession.user_id == user_id,
            PracticeSession.status == SessionStatus.SCORED.value,
            PracticeSession.progression_applied.is_(False),
        ).first()
        if not session:
            return None
        stored = session.scoring_json or {}
        logger.info("Session %s was scored without progression; reusing stored result", session.id)
        return ScoringOutcome(
            session=session,
            overall_score=session.overall_score,
            xp_earned=xp_for_score(session.overall_score),
            summary=stored.get("summary", ""),
            step_scores=list(stored.get("step_scores", [])),
        )

    def _begin(self, session: PracticeSession) -> None:
        if len(session.steps) != TOTAL_STEPS:
            raise InvalidStateError(f"All {TOTAL_STEPS} steps must be saved before scoring")
        updated = self.db.query(PracticeSession).filter(
            PracticeSession.id == session.id,
            PracticeSession.status.in_(SCOREABLE_STATUSES),
        ).update(
            {
                PracticeSession.status: SessionStatus.SCORING.value,
                PracticeSession.scoring_error: None,
                PracticeSession.scoring_attempts: PracticeSession.scoring_attempts + 1,
                PracticeSession.updated_at: utcnow(),
            },
            synchronize_session=False,
        )
        if updated != 1:
            self.db.rollback()
            self.db.refresh(session)
            raise InvalidStateError(f"Session is {session.status}; only COMPLETED or FAILED sessions can be scored")
        self.db.commit()
        self.db.refresh(session)

    def _fail(self, session: PracticeSession, reason: str) -> None:
        logger.warning("Scoring failed for session %s: %s", session.id, reason)
        self.db.rollback()
        self.db.query(PracticeSession).filter(
            PracticeSession.id == session.id,
            PracticeSession.status == SessionStatus.SCORING.value,
        ).update(
            {
                PracticeSession.status: SessionStatus.FAILED.value,
                PracticeSession.scoring_error: reason,
                PracticeSession.updated_at: utcnow(),
            },
            synchronize_session=False,
        )
        self.db.commit()
        self.db.refresh(session)

    def _record(self, session: PracticeSession, response: JudgeResponse) -> ScoringOutcome:
        step_scores = []
        for step, judged in zip(session.steps, response.step_scores):
            entry = {
                "step_number": step.step_number,
                "step_name": step.step_name,
                "score": round_half_up(judged.score),
                "feedback": judged.feedback,
                "strengths": list(judged.strengths),
                "improvements": list(judged.improvements),
            }
            step.score = entry["score"]
            step.feedback = {
                "text": entry["feedback"],
                "strengths": entry["strengths"],
                "improvements": entry["improvements"],
            }
            step_scores.append(entry)

        overall = compute_overall_score([s["score"] for s in step_scores], response.overall_score)
        summary = build_scoring_summary(step_scores, overall)
        now = utcnow()
        updated = self.db.query(PracticeSession).filter(
            PracticeSession.id == session.id,
            PracticeSession.status == SessionStatus.SCORING.value,
        ).update(
            {
                PracticeSession.status: SessionStatus.SCORED.value,
                PracticeSession.overall_score: overall,
                PracticeSession.scoring_json: {"step_scores": step_scores, "summary": summary},
                PracticeSession.scored_at: now,
                PracticeSession.updated_at: now,
            },
            synchronize_session=False,
        )
        if updated != 1:
            self.db.rollback()
            raise InvalidStateError("Session left SCORING while the judge was running")
        self.db.commit()
        self.db.refresh(session)

        xp = xp_for_score(overall)
        logger.info("Scored session %s: overall=%s xp=%s", session.id, overall, xp)
        return ScoringOutcome(session=session, overall_score=overall, xp_earned=xp, summary=summary, step_scores=step_scores)
