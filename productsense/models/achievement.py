"""Achievement catalog and unlock records."""
import uuid
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from productsense.db.base import Base
from productsense.utils.dates import utcnow


class Achievement(Base):
    __tablename__ = "achievements"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    code = Column(String(50), unique=True, nullable=False)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    icon = Column(String(50))
    xp_reward = Column(Integer, nullable=False, default=0)

    unlocks = relationship("UserAchievement", back_populates="achievement")


class UserAchievement(Base):
    """Unlock record; its existence is the idempotency key for an unlock."""

    __tablename__ = "user_achievements"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    achievement_id = Column(Uuid, ForeignKey("achievements.id", ondelete="CASCADE"), nullable=False)
    unlocked_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (UniqueConstraint("user_id", "achievement_id", name="uq_user_achievements_pair"),)

    user = relationship("User", back_populates="achievements")
    achievement = relationship("Achievement", back_populates="unlocks")
