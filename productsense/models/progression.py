"""Streak and XP ledger models."""
import uuid
from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import relationship
from productsense.db.base import Base
from productsense.utils.dates import utcnow


class Streak(Base):
    """Per-user daily streak; advanced at most once per calendar day."""

    __tablename__ = "streaks"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    current_streak = Column(Integer, nullable=False, default=0)
    best_streak = Column(Integer, nullable=False, default=0)
    last_activity_date = Column(Date)

    user = relationship("User", back_populates="streak")


class XpEvent(Base):
    """One XP ledger entry (amount, reason, timestamp)."""

    __tablename__ = "xp_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    reason = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    user = relationship("User", back_populates="xp_events")
