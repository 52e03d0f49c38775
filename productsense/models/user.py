"""User model."""
import uuid
from sqlalchemy import Column, String, DateTime, Integer, Uuid
from sqlalchemy.orm import relationship
from productsense.db.base import Base
from productsense.utils.dates import utcnow


class User(Base):
    """A practising user and their progression totals.

    ``total_xp``, ``level`` and ``best_streak`` are written only by the
    progression engine.
    """

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(150), unique=True, nullable=False, index=True)
    display_name = Column(String(100))
    total_xp = Column(Integer, nullable=False, default=0)
    level = Column(Integer, nullable=False, default=1)
    best_streak = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    # Relationships
    sessions = relationship("PracticeSession", back_populates="user", cascade="all, delete-orphan")
    streak = relationship("Streak", back_populates="user", uselist=False, cascade="all, delete-orphan")
    xp_events = relationship("XpEvent", back_populates="user", cascade="all, delete-orphan")
    achievements = relationship("UserAchievement", back_populates="user", cascade="all, delete-orphan")
