"""PracticeSession model."""
import uuid
from enum import Enum
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, JSON, String, Text, Uuid, text
from sqlalchemy.orm import relationship
from productsense.db.base import Base
from productsense.utils.dates import utcnow

TOTAL_STEPS = 8


class SessionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    SCORING = "SCORING"
    SCORED = "SCORED"
    FAILED = "FAILED"


class PracticeSession(Base):
    """One attempt at the eight-step exercise for one prompt.

    Status flows ACTIVE -> COMPLETED -> SCORING -> SCORED | FAILED, and
    FAILED -> SCORING on an explicit re-score. At most one ACTIVE row per
    user is enforced by a partial unique index.
    """

    __tablename__ = "practice_sessions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    prompt_id = Column(Uuid, ForeignKey("prompts.id"), nullable=False)
    status = Column(String(20), nullable=False, default=SessionStatus.ACTIVE.value)
    current_step = Column(Integer, nullable=False, default=1)
    started_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow)
    completed_at = Column(DateTime(timezone=True))
    scored_at = Column(DateTime(timezone=True))
    overall_score = Column(Integer)
    scoring_json = Column(JSON)
    scoring_error = Column(Text)
    scoring_attempts = Column(Integer, nullable=False, default=0)
    progression_applied = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index(
            "uq_practice_sessions_one_active",
            "user_id",
            unique=True,
            sqlite_where=text("status = 'ACTIVE'"),
            postgresql_where=text("status = 'ACTIVE'"),
        ),
    )

    # Relationships
    user = relationship("User", back_populates="sessions")
    prompt = relationship("Prompt", back_populates="sessions")
    steps = relationship(
        "Step",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="Step.step_number",
    )
