"""Pydantic shapes for the external judge's scoring response."""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class JudgeStepScore(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    step_name: str
    score: float = Field(ge=0, le=100)
    feedback: str = ""
    strengths: List[str] = []
    improvements: List[str] = []


class JudgeResponse(BaseModel):
    """Exactly eight step scores; ``overall_score`` is optional and range-checked by the caller."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    step_scores: List[JudgeStepScore] = Field(min_length=8, max_length=8)
    overall_score: Optional[float] = None
