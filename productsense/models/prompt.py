"""Prompt model."""
import uuid
from sqlalchemy import Column, String, Text, Integer, JSON, Uuid
from sqlalchemy.orm import relationship
from productsense.db.base import Base


class Prompt(Base):
    """An immutable practice scenario from the prompt catalog."""

    __tablename__ = "prompts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(200), unique=True, nullable=False)
    company = Column(String(100), nullable=False)
    surface = Column(String(100))
    objective = Column(String(50), nullable=False)
    difficulty = Column(Integer, nullable=False, index=True)  # 1..3
    prompt_text = Column(Text, nullable=False)
    constraints = Column(JSON, default=list)

    sessions = relationship("PracticeSession", back_populates="prompt")

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "name": self.name,
            "company": self.company,
            "surface": self.surface,
            "objective": self.objective,
            "difficulty": self.difficulty,
            "prompt_text": self.prompt_text,
            "constraints": list(self.constraints or []),
        }
