"""Pydantic input shapes for the eight session steps.

These models only check *types*: every text field is optional and defaults
to empty so that missing or short answers reach the rule checks in
``productsense.services.step_validator`` and come back as field errors.
Wrong types (a number where text belongs, an object where a list belongs)
fail here and are treated as malformed calls.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class StepInput(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class GoalInput(StepInput):
    objective: Optional[str] = None
    goal_sentence: Optional[str] = None


class MissionInput(StepInput):
    mission_alignment: Optional[str] = None


class SegmentInput(StepInput):
    name: Optional[str] = None
    description: Optional[str] = None


class SegmentsInput(StepInput):
    segments: List[SegmentInput] = []


class ProblemInput(StepInput):
    title: Optional[str] = None
    description: Optional[str] = None
    affected_segments: List[str] = []


class ProblemsInput(StepInput):
    problems: List[ProblemInput] = []


class SolutionInput(StepInput):
    version: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    features: List[str] = []


class SolutionsInput(StepInput):
    solutions: List[SolutionInput] = []


class MetricInput(StepInput):
    name: Optional[str] = None
    description: Optional[str] = None
    target: Optional[str] = None


class GuardrailInput(StepInput):
    name: Optional[str] = None
    threshold: Optional[str] = None


class MetricsInput(StepInput):
    primary_metric: Optional[MetricInput] = None
    guardrails: List[GuardrailInput] = []


class TradeoffInput(StepInput):
    title: Optional[str] = None
    description: Optional[str] = None
    impact: Optional[str] = None
    mitigation: Optional[str] = None


class TradeoffsInput(StepInput):
    tradeoffs: List[TradeoffInput] = []


class SummaryInput(StepInput):
    reflection: Optional[str] = None
    learnings: List[str] = []
