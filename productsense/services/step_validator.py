"""Step validation engine.

One rule set per step number. ``validate_step`` parses the raw payload into
the step's input shape, applies that step's length and count rules, and
returns the normalized payload together with a ``{field_key: message}``
map. Rule violations never raise; only wrongly typed input does.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Type

from pydantic import ValidationError

from productsense.core.errors import InvalidArgumentError
from productsense.models.step import STEP_NAMES
from productsense.schemas.steps import (
    GoalInput,
    MetricsInput,
    MissionInput,
    ProblemsInput,
    SegmentsInput,
    SolutionsInput,
    StepInput,
    SummaryInput,
    TradeoffsInput,
)

OBJECTIVES = ("ACQUISITION", "ACTIVATION", "RETENTION", "MONETIZATION", "ENGAGEMENT")
SOLUTION_VERSIONS = ("V0", "V1", "V2")
IMPACT_LEVELS = ("LOW", "MEDIUM", "HIGH")


@dataclass
class StepValidation:
    step_number: int
    data: Dict[str, Any] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def step_name(self) -> str:
        return STEP_NAMES[self.step_number - 1]


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


class _Checker:
    """Collects field errors for one payload."""

    def __init__(self):
        self.errors: Dict[str, str] = {}

    def text(self, key: str, value: str, label: str, min_len: int, max_len: Optional[int] = None) -> None:
        if key in self.errors:
            return
        if len(value) < min_len:
            self.errors[key] = f"{label} must be at least {min_len} characters"
        elif max_len is not None and len(value) > max_len:
            self.errors[key] = f"{label} must not exceed {max_len} characters"

    def count(self, key: str, n: int, label: str, min_n: int, max_n: int) -> bool:
        if n < min_n:
            self.errors[key] = f"At least {min_n} {label} required" if min_n > 1 else f"At least 1 {label} is required"
            return False
        if n > max_n:
            self.errors[key] = f"Maximum {max_n} {label} allowed"
            return False
        return True

    def fail(self, key: str, message: str) -> None:
        self.errors.setdefault(key, message)


# ---------------------------------------------------------------- step rules

def _goal(payload: GoalInput, check: _Checker, previous: Mapping[int, dict]) -> dict:
    objective = _clean(payload.objective).upper()
    goal = _clean(payload.goal_sentence)
    if objective not in OBJECTIVES:
        check.fail("objective", "Please select a valid objective category")
    check.text("goal_sentence", goal, "Goal", 20, 500)
    return {"objective": objective, "goal_sentence": goal}


def _mission(payload: MissionInput, check: _Checker, previous: Mapping[int, dict]) -> dict:
    alignment = _clean(payload.mission_alignment)
    check.text("mission_alignment", alignment, "Mission alignment", 50, 1000)
    return {"mission_alignment": alignment}


def _segments(payload: SegmentsInput, check: _Checker, previous: Mapping[int, dict]) -> dict:
    entries = [(_clean(s.name), _clean(s.description)) for s in payload.segments]
    # blank rows the form leaves at the end are not answers
    while entries and not any(entries[-1]):
        entries.pop()

    segments = []
    if check.count("segments", len(entries), "segments", 1, 3):
        seen = set()
        for i, (name, description) in enumerate(entries):
            check.text(f"segments.{i}.name", name, "Segment name", 3, 100)
            check.text(f"segments.{i}.description", description, "Segment description", 20, 500)
            if name and name.lower() in seen:
                check.fail(f"segments.{i}.name", "Segment names must be unique")
            seen.add(name.lower())
            segments.append({"name": name, "description": description})
    return {"segments": segments}


def _problems(payload: ProblemsInput, check: _Checker, previous: Mapping[int, dict]) -> dict:
    problems = []
    if check.count("problems", len(payload.problems), "problems", 1, 3):
        for i, p in enumerate(payload.problems):
            title = _clean(p.title)
            description = _clean(p.description)
            affected = [_clean(s) for s in p.affected_segments if _clean(s)]
            check.text(f"problems.{i}.title", title, "Problem title", 5, 150)
            check.text(f"problems.{i}.description", description, "Problem description", 30, 800)
            if not affected:
                check.fail(f"problems.{i}.affected_segments", "Select at least 1 affected segment")
            problems.append({"title": title, "description": description, "affected_segments": affected})
    return {"problems": problems}


def _solutions(payload: SolutionsInput, check: _Checker, previous: Mapping[int, dict]) -> dict:
    solutions = []
    if len(payload.solutions) != len(SOLUTION_VERSIONS):
        check.fail("solutions", "Exactly 3 solutions (V0, V1, V2) are required")
        return {"solutions": solutions}

    used = set()
    for i, s in enumerate(payload.solutions):
        version = _clean(s.version).upper() or SOLUTION_VERSIONS[i]
        if version not in SOLUTION_VERSIONS:
            check.fail(f"solutions.{i}.version", "Version must be V0, V1 or V2")
        elif version in used:
            check.fail(f"solutions.{i}.version", f"Version {version} is used more than once")
        used.add(version)

        title = _clean(s.title)
        description = _clean(s.description)
        check.text(f"solutions.{i}.title", title, "Solution title", 5, 150)
        check.text(f"solutions.{i}.description", description, "Solution description", 50, 1000)

        # short feature bullets are dropped, not rejected
        features = [f for f in (_clean(f) for f in s.features) if len(f) >= 10]
        if len(features) < 2:
            check.fail(f"solutions.{i}.features", "At least 2 features of 10 or more characters are required")
        solutions.append({"version": version, "title": title, "description": description, "features": features})

    order = {v: n for n, v in enumerate(SOLUTION_VERSIONS)}
    solutions.sort(key=lambda s: order.get(s["version"], len(order)))
    return {"solutions": solutions}


def _metrics(payload: MetricsInput, check: _Checker, previous: Mapping[int, dict]) -> dict:
    primary = payload.primary_metric
    primary_metric = {
        "name": _clean(primary.name) if primary else "",
        "description": _clean(primary.description) if primary else "",
        "target": _clean(primary.target) if primary else "",
    }
    if primary is None:
        check.fail("primary_metric", "A primary metric is required")
    else:
        check.text("primary_metric.name", primary_metric["name"], "Metric name", 3, 100)
        check.text("primary_metric.description", primary_metric["description"], "Metric description", 20, 500)
        check.text("primary_metric.target", primary_metric["target"], "Target", 5, 200)

    guardrails = []
    rows = [(i, _clean(g.name), _clean(g.threshold)) for i, g in enumerate(payload.guardrails)]
    rows = [row for row in rows if row[1] or row[2]]
    if check.count("guardrails", len(rows), "guardrails", 0, 3):
        for i, name, threshold in rows:
            check.text(f"guardrails.{i}.name", name, "Guardrail name", 3, 100)
            check.text(f"guardrails.{i}.threshold", threshold, "Threshold", 5, 200)
            guardrails.append({"name": name, "threshold": threshold})
    return {"primary_metric": primary_metric, "guardrails": guardrails}


def _tradeoffs(payload: TradeoffsInput, check: _Checker, previous: Mapping[int, dict]) -> dict:
    tradeoffs = []
    if check.count("tradeoffs", len(payload.tradeoffs), "tradeoffs", 2, 5):
        for i, t in enumerate(payload.tradeoffs):
            title = _clean(t.title)
            description = _clean(t.description)
            impact = _clean(t.impact).upper()
            mitigation = _clean(t.mitigation)
            check.text(f"tradeoffs.{i}.title", title, "Tradeoff title", 5, 150)
            check.text(f"tradeoffs.{i}.description", description, "Tradeoff description", 30, 800)
            if impact not in IMPACT_LEVELS:
                check.fail(f"tradeoffs.{i}.impact", "Impact must be LOW, MEDIUM, or HIGH")
            check.text(f"tradeoffs.{i}.mitigation", mitigation, "Mitigation strategy", 30, 800)
            tradeoffs.append({"title": title, "description": description, "impact": impact, "mitigation": mitigation})
    return {"tradeoffs": tradeoffs}


def _summary(payload: SummaryInput, check: _Checker, previous: Mapping[int, dict]) -> dict:
    reflection = _clean(payload.reflection)
    check.text("reflection", reflection, "Reflection", 100, 2000)

    learnings = [(i, _clean(text)) for i, text in enumerate(payload.learnings)]
    learnings = [(i, text) for i, text in learnings if text]
    if check.count("learnings", len(learnings), "learnings", 1, 3):
        for i, text in learnings:
            check.text(f"learnings.{i}", text, "Learning", 20, 500)

    return {
        "reflection": reflection,
        "learnings": [text for _, text in learnings],
        "summary": build_session_summary(previous.get(1), previous.get(3)),
    }


StepRule = Tuple[Type[StepInput], Callable[[Any, _Checker, Mapping[int, dict]], dict]]

STEP_RULES: Dict[int, StepRule] = {
    1: (GoalInput, _goal),
    2: (MissionInput, _mission),
    3: (SegmentsInput, _segments),
    4: (ProblemsInput, _problems),
    5: (SolutionsInput, _solutions),
    6: (MetricsInput, _metrics),
    7: (TradeoffsInput, _tradeoffs),
    8: (SummaryInput, _summary),
}


def validate_step(
    step_number: int,
    raw_payload: Any,
    previous_steps: Optional[Mapping[int, dict]] = None,
) -> StepValidation:
    """Validate ``raw_payload`` for ``step_number``.

    ``previous_steps`` maps step numbers to already-saved payloads; step 8
    reads steps 1 and 3 from it to derive the session summary.

    Raises:
        InvalidArgumentError: unknown step number or wrongly typed payload.
    """
    rule = STEP_RULES.get(step_number) if isinstance(step_number, int) and not isinstance(step_number, bool) else None
    if rule is None:
        raise InvalidArgumentError(f"Invalid step number: {step_number}")
    if not isinstance(raw_payload, Mapping):
        raise InvalidArgumentError(f"Step {step_number} data must be an object")

    input_model, apply_rules = rule
    try:
        parsed = input_model.model_validate(dict(raw_payload))
    except ValidationError as exc:
        problems = {".".join(str(p) for p in err["loc"]): err["msg"] for err in exc.errors()}
        raise InvalidArgumentError(f"Step {step_number} data is malformed", details={"fields": problems}) from exc

    check = _Checker()
    data = apply_rules(parsed, check, previous_steps or {})
    return StepValidation(step_number=step_number, data=data, errors=check.errors)


def build_session_summary(goal: Optional[dict], segments: Optional[dict]) -> str:
    """Markdown recap of the session built from the goal and segment steps."""
    goal = goal or {}
    lines: List[str] = [
        "# Practice Session Summary",
        "",
        "## Goal",
        f"**Objective:** {goal.get('objective', '')}",
        f"**Goal:** {goal.get('goal_sentence', '')}",
        "",
        "## User Segments",
    ]
    for segment in (segments or {}).get("segments", []):
        lines.append(f"- **{segment.get('name', '')}:** {segment.get('description', '')}")
    return "\n".join(lines).strip()
