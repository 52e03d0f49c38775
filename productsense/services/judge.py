"""Judges that score a finished practice session.

A judge receives the originating prompt and the eight ordered step payloads
and returns the raw structured result::

    {"stepScores": [{"stepName", "score", "feedback", "strengths", "improvements"}, ...],
     "overallScore": <optional>}

Validation of that shape belongs to the scoring orchestrator, not the judge.
"""
import json
import logging
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from productsense.core.config import settings

logger = logging.getLogger(__name__)


class JudgeError(Exception):
    """The judge could not produce a usable answer."""


class OpenAIJudge:
    """Judge backed by an OpenAI chat model returning a JSON object."""

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: Optional[str] = None):
        self.client = client or AsyncOpenAI(
            api_key=settings.OPENAI_API_KEY,
            timeout=settings.SCORING_TIMEOUT_SECONDS,
            max_retries=0,
        )
        self.model = model or settings.OPENAI_MODEL

    async def evaluate(self, prompt: Dict[str, Any], steps: List[Dict[str, Any]]) -> Dict[str, Any]:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": self._build_system_prompt()},
                {"role": "user", "content": self._build_user_prompt(prompt, steps)},
            ],
            temperature=0.2,
            response_format={"type": "json_object"},
        )
        content = response.choices[0].message.content
        if not content:
            raise JudgeError("Judge returned an empty response")
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise JudgeError(f"Judge returned invalid JSON: {e}") from e

    def _build_system_prompt(self) -> str:
        return """You are evaluating a Product Manager's product sense practice session.
The session has 8 steps: goal, mission, segments, problems, solutions, metrics, tradeoffs, summary.

Evaluation criteria for every step:
- Clarity and structure (20%)
- Depth of thinking (30%)
- Strategic alignment with the prompt (30%)
- Practicality and feasibility (20%)

For each step provide a score (0-100), 2-3 strengths, 2-3 improvements and
2-3 sentences of feedback. Return ONLY valid JSON in this format:
{
  "stepScores": [
    {
      "stepName": "goal",
      "score": 0,
      "feedback": "Brief feedback",
      "strengths": ["..."],
      "improvements": ["..."]
    }
  ],
  "overallScore": 0
}
"stepScores" must contain exactly 8 entries, in step order."""

    def _build_user_prompt(self, prompt: Dict[str, Any], steps: List[Dict[str, Any]]) -> str:
        constraints = ", ".join(prompt.get("constraints") or []) or "None"
        parts = [
            "PROMPT CONTEXT:",
            f"Company: {prompt.get('company')}",
            f"Surface: {prompt.get('surface')}",
            f"Objective: {prompt.get('objective')}",
            f"Difficulty: {prompt.get('difficulty')}/3",
            f"Constraints: {constraints}",
            f"Prompt: {prompt.get('prompt_text')}",
            "",
            "USER RESPONSES:",
        ]
        for step in steps:
            parts.append(f"--- Step {step['step_number']}: {step['step_name']} ---")
            parts.append(json.dumps(step["payload"], indent=2, ensure_ascii=False))
        parts.append("\nReturn your evaluation as valid JSON following the specified format.")
        return "\n".join(parts)


_HEURISTIC_FEEDBACK = {
    "goal": (0, "Your goal is clear and well-defined. Consider adding specific success metrics.",
             ["Clear objective selection", "Concise goal statement"],
             ["Add quantifiable targets", "Consider timeframe constraints"]),
    "mission": (5, "Good connection to the company mission and broader business objectives.",
                ["Strong mission alignment", "Strategic perspective"],
                ["Provide more specific examples", "Connect to measurable outcomes"]),
    "segments": (3, "User segments are well-defined. Add behavioral details to refine targeting.",
                 ["Distinct segment definitions", "Relevant to the goal"],
                 ["Add more specific characteristics", "Include size estimates"]),
    "problems": (7, "Problems are specific and actionable with sensible prioritization.",
                 ["Clear problem identification", "Well-prioritized list"],
                 ["Quantify problem impact", "Add validation evidence"]),
    "solutions": (8, "Solutions progress well from V0 to V2 with incremental value delivery.",
                  ["Progressive solution thinking", "Actionable features"],
                  ["Add technical feasibility notes", "Estimate resource requirements"]),
    "metrics": (10, "Metrics are measurable and guardrails protect against negative outcomes.",
                ["Clear success metrics", "Appropriate guardrails"],
                ["Add secondary metrics", "Define measurement methodology"]),
    "tradeoffs": (6, "Tradeoffs show mature product thinking and practical mitigations.",
                  ["Realistic tradeoff identification", "Thoughtful mitigation strategies"],
                  ["Quantify impact more precisely", "Add contingency plans"]),
    "summary": (4, "Good reflection on the process; learnings show self-awareness.",
                ["Thoughtful reflection", "Actionable learnings"],
                ["Connect learnings to future application", "Be more specific about insights"]),
}


class HeuristicJudge:
    """Offline judge used when no OpenAI key is configured.

    Scores are deterministic: a base derived from the answer length plus a
    fixed per-step offset.
    """

    async def evaluate(self, prompt: Dict[str, Any], steps: List[Dict[str, Any]]) -> Dict[str, Any]:
        step_scores = []
        for step in steps:
            size = len(json.dumps(step["payload"], sort_keys=True))
            offset, feedback, strengths, improvements = _HEURISTIC_FEEDBACK.get(
                step["step_name"], (0, "Good work on this step.", ["Structured approach"], ["Add more depth"])
            )
            step_scores.append({
                "stepName": step["step_name"],
                "score": min(100, 70 + size % 20 + offset),
                "feedback": feedback,
                "strengths": list(strengths),
                "improvements": list(improvements),
            })
        return {"stepScores": step_scores}


def get_judge():
    """Judge dependency: OpenAI when a key is configured, otherwise the heuristic judge."""
    if settings.OPENAI_API_KEY:
        return OpenAIJudge()
    logger.warning("OPENAI_API_KEY not configured - using heuristic scoring")
    return HeuristicJudge()
