"""Practice session routes."""
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from productsense.db.sessions import get_db
from productsense.core.security import get_current_user
from productsense.models import PracticeSession, Step
from productsense.services.judge import get_judge
from productsense.services.progression_service import ProgressionEngine
from productsense.services.scoring_service import ScoringOrchestrator
from productsense.services.session_service import SessionLifecycleManager


router = APIRouter(prefix="/sessions", tags=["Sessions"])


class PromptOut(BaseModel):
    id: str
    name: str
    company: str
    surface: Optional[str]
    objective: str
    difficulty: int
    prompt_text: str
    constraints: List[str] = []


class StepOut(BaseModel):
    step_number: int
    step_name: str
    payload: Dict[str, Any]
    score: Optional[int] = None
    feedback: Optional[Dict[str, Any]] = None
    updated_at: Optional[datetime] = None


class SessionOut(BaseModel):
    id: str
    status: str
    current_step: int
    prompt_id: str
    started_at: Optional[datetime]
    completed_at: Optional[datetime] = None
    scored_at: Optional[datetime] = None
    overall_score: Optional[int] = None
    scoring_error: Optional[str] = None


class SessionDetail(SessionOut):
    prompt: PromptOut
    steps: List[StepOut] = []
    scoring: Optional[Dict[str, Any]] = None


class StartSessionResponse(BaseModel):
    session: SessionOut
    prompt: PromptOut


class ActiveSessionResponse(BaseModel):
    session: Optional[SessionDetail] = None


class SessionListResponse(BaseModel):
    sessions: List[SessionOut]
    total: int


class SaveStepRequest(BaseModel):
    step_number: int
    data: Dict[str, Any]


class SaveStepResponse(BaseModel):
    session: SessionOut
    step: StepOut
    advanced: bool
    next_step: Optional[int]


class AchievementOut(BaseModel):
    code: str
    name: str
    description: str
    icon: Optional[str]
    xp_reward: int


class ProgressionOut(BaseModel):
    xp_earned: int
    bonus_xp: int
    total_xp: int
    level: int
    level_up: bool
    current_streak: int
    best_streak: int
    achievements: List[AchievementOut] = []


class ScoreResponse(BaseModel):
    session: SessionOut
    overall_score: int
    summary: str
    step_scores: List[Dict[str, Any]]
    progression: ProgressionOut


def _session_out(session: PracticeSession) -> Dict[str, Any]:
    return {
        "id": str(session.id),
        "status": session.status,
        "current_step": session.current_step,
        "prompt_id": str(session.prompt_id),
        "started_at": session.started_at,
        "completed_at": session.completed_at,
        "scored_at": session.scored_at,
        "overall_score": session.overall_score,
        "scoring_error": session.scoring_error,
    }


def _step_out(step: Step) -> Dict[str, Any]:
    return {
        "step_number": step.step_number,
        "step_name": step.step_name,
        "payload": step.payload or {},
        "score": step.score,
        "feedback": step.feedback,
        "updated_at": step.updated_at,
    }


def _session_detail(session: PracticeSession) -> Dict[str, Any]:
    detail = _session_out(session)
    detail["prompt"] = session.prompt.to_dict()
    detail["steps"] = [_step_out(s) for s in session.steps]
    detail["scoring"] = session.scoring_json
    return detail


@router.post("/start", response_model=StartSessionResponse, status_code=status.HTTP_201_CREATED)
def start_session(db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    """Start a new session on a prompt matched to the user's level."""
    result = SessionLifecycleManager(db).start(current_user.id)
    return {"session": _session_out(result.session), "prompt": result.prompt.to_dict()}


@router.get("/active", response_model=ActiveSessionResponse)
def get_active_session(db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    session = SessionLifecycleManager(db).get_active(current_user.id)
    return {"session": _session_detail(session) if session else None}


@router.get("", response_model=SessionListResponse)
def list_sessions(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    sessions, total = SessionLifecycleManager(db).list_sessions(
        current_user.id, status=status_filter, limit=limit, offset=offset
    )
    return {"sessions": [_session_out(s) for s in sessions], "total": total}


@router.get("/{session_id}", response_model=SessionDetail)
def get_session(session_id: uuid.UUID, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    session = SessionLifecycleManager(db).get_session(session_id, current_user.id)
    return _session_detail(session)


@router.post("/{session_id}/steps", response_model=SaveStepResponse)
def save_step(
    session_id: uuid.UUID,
    body: SaveStepRequest,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    """
    Save one step of the exercise.

    - Steps are saved in order; an earlier step may be re-saved
    - Saving the current step advances the session
    """
    result = SessionLifecycleManager(db).save_step(session_id, current_user.id, body.step_number, body.data)
    return {
        "session": _session_out(result.session),
        "step": _step_out(result.step),
        "advanced": result.advanced,
        "next_step": result.next_step,
    }


@router.post("/{session_id}/complete", response_model=SessionOut)
def complete_session(session_id: uuid.UUID, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    session = SessionLifecycleManager(db).complete(session_id, current_user.id)
    return _session_out(session)


@router.post("/{session_id}/score", response_model=ScoreResponse)
async def score_session(
    session_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
    judge=Depends(get_judge),
):
    """
    Score a COMPLETED (or FAILED) session and apply the resulting progression.

    - Judge errors leave the session FAILED; it can be scored again
    - XP, streak and achievements are granted once per session
    - A session scored without its progression applied gets it on the next call
    """
    orchestrator = ScoringOrchestrator(db, judge)
    outcome = orchestrator.pending_progression(session_id, current_user.id)
    if outcome is None:
        outcome = await orchestrator.score(session_id, current_user.id)
    progression = ProgressionEngine(db).process_session_completion(
        current_user.id, outcome.session.id, outcome.xp_earned
    )
    return {
        "session": _session_out(outcome.session),
        "overall_score": outcome.overall_score,
        "summary": outcome.summary,
        "step_scores": outcome.step_scores,
        "progression": {
            "xp_earned": progression.xp_result.xp_earned,
            "bonus_xp": progression.bonus_xp,
            "total_xp": progression.total_xp,
            "level": progression.level,
            "level_up": progression.level > progression.xp_result.previous_level,
            "current_streak": progression.streak_result.current_streak,
            "best_streak": progression.streak_result.best_streak,
            "achievements": [
                {
                    "code": a.code,
                    "name": a.name,
                    "description": a.description,
                    "icon": a.icon,
                    "xp_reward": a.xp_reward,
                }
                for a in progression.achievements
            ],
        },
    }
