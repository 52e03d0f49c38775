"""Step model."""
import uuid
from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from productsense.db.base import Base
from productsense.utils.dates import utcnow

STEP_NAMES = ["goal", "mission", "segments", "problems", "solutions", "metrics", "tradeoffs", "summary"]


class Step(Base):
    """Validated payload for one (session, step_number); re-saves overwrite."""

    __tablename__ = "steps"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id = Column(Uuid, ForeignKey("practice_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    step_number = Column(Integer, nullable=False)
    step_name = Column(String(20), nullable=False)
    payload = Column(JSON, nullable=False)
    score = Column(Integer)
    feedback = Column(JSON)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (UniqueConstraint("session_id", "step_number", name="uq_steps_session_step"),)

    session = relationship("PracticeSession", back_populates="steps")
