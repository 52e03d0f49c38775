import pytest

from productsense.core.errors import InvalidArgumentError
from productsense.services.step_validator import build_session_summary, validate_step


@pytest.mark.parametrize("step_number", range(1, 9))
def test_valid_payloads_pass(valid_steps, step_number):
    previous = {1: valid_steps[1], 3: valid_steps[3]}
    result = validate_step(step_number, valid_steps[step_number], previous)
    assert result.ok, result.errors


def test_goal_rules():
    result = validate_step(1, {"objective": "growth", "goal_sentence": "Too short"})
    assert result.errors == {
        "objective": "Please select a valid objective category",
        "goal_sentence": "Goal must be at least 20 characters",
    }


def test_objective_is_case_insensitive_and_camel_case_keys_accepted():
    result = validate_step(1, {"objective": "retention", "goalSentence": "Grow weekly retention of new users by 10%"})
    assert result.ok
    assert result.data["objective"] == "RETENTION"


def test_text_is_trimmed_before_length_checks():
    result = validate_step(2, {"mission_alignment": "   short mission   "})
    assert result.errors["mission_alignment"] == "Mission alignment must be at least 50 characters"
    assert result.data["mission_alignment"] == "short mission"


def test_segments_drop_trailing_blank_rows(valid_steps):
    payload = valid_steps[3]
    payload["segments"].append({"name": "", "description": "   "})
    result = validate_step(3, payload)
    assert result.ok
    assert len(result.data["segments"]) == 2


def test_segments_count_and_uniqueness():
    assert validate_step(3, {"segments": []}).errors == {"segments": "At least 1 segments is required"}

    four = [{"name": f"Segment {i}", "description": "A description that is long enough"} for i in range(4)]
    assert validate_step(3, {"segments": four}).errors == {"segments": "Maximum 3 segments allowed"}

    dupes = [
        {"name": "Creators", "description": "A description that is long enough"},
        {"name": "creators", "description": "Another description that is long enough"},
    ]
    assert validate_step(3, {"segments": dupes}).errors == {"segments.1.name": "Segment names must be unique"}


def test_problem_requires_affected_segment(valid_steps):
    payload = valid_steps[4]
    payload["problems"][0]["affected_segments"] = ["  "]
    result = validate_step(4, payload)
    assert result.errors == {"problems.0.affected_segments": "Select at least 1 affected segment"}


def test_solutions_need_exactly_three(valid_steps):
    payload = valid_steps[5]
    payload["solutions"].pop()
    assert validate_step(5, payload).errors == {"solutions": "Exactly 3 solutions (V0, V1, V2) are required"}


def test_solutions_assign_missing_versions_and_sort(valid_steps):
    solutions = valid_steps[5]["solutions"]
    solutions[0]["version"] = "v2"
    solutions[1]["version"] = ""
    solutions[2]["version"] = "V0"
    result = validate_step(5, {"solutions": solutions})
    assert result.ok, result.errors
    assert [s["version"] for s in result.data["solutions"]] == ["V0", "V1", "V2"]


def test_solutions_drop_short_features(valid_steps):
    solution = valid_steps[5]["solutions"][0]
    solution["features"] = ["tiny", "Three-step checklist card", "short"]
    result = validate_step(5, valid_steps[5])
    assert result.errors == {"solutions.0.features": "At least 2 features of 10 or more characters are required"}

    solution["features"].append("Progress badge after each post")
    result = validate_step(5, valid_steps[5])
    assert result.ok
    assert result.data["solutions"][0]["features"] == ["Three-step checklist card", "Progress badge after each post"]


def test_metrics_rules(valid_steps):
    assert validate_step(6, {"guardrails": []}).errors == {"primary_metric": "A primary metric is required"}

    payload = valid_steps[6]
    payload["guardrails"] = [{"name": "", "threshold": ""}, {"name": "Latency", "threshold": "p95"}]
    result = validate_step(6, payload)
    assert result.errors == {"guardrails.1.threshold": "Threshold must be at least 5 characters"}


def test_tradeoff_rules(valid_steps):
    payload = dict(valid_steps[7], tradeoffs=valid_steps[7]["tradeoffs"][:1])
    assert validate_step(7, payload).errors == {"tradeoffs": "At least 2 tradeoffs required"}

    payload = {"tradeoffs": [dict(t, impact="severe") for t in valid_steps[7]["tradeoffs"]]}
    errors = validate_step(7, payload).errors
    assert errors == {
        "tradeoffs.0.impact": "Impact must be LOW, MEDIUM, or HIGH",
        "tradeoffs.1.impact": "Impact must be LOW, MEDIUM, or HIGH",
    }


def test_summary_builds_markdown_from_goal_and_segments(valid_steps):
    result = validate_step(8, valid_steps[8], {1: valid_steps[1], 3: valid_steps[3]})
    summary = result.data["summary"]
    assert summary.startswith("# Practice Session Summary")
    assert "**Objective:** RETENTION" in summary
    assert "- **New creators:** Creators in their first week on the platform" in summary


def test_summary_rules():
    result = validate_step(8, {"reflection": "Short", "learnings": ["", "   "]})
    assert result.errors == {
        "reflection": "Reflection must be at least 100 characters",
        "learnings": "At least 1 learnings is required",
    }


def test_build_session_summary_without_previous_steps():
    assert build_session_summary(None, None).startswith("# Practice Session Summary")


@pytest.mark.parametrize("step_number", [0, 9, "1", True])
def test_invalid_step_number(step_number):
    with pytest.raises(InvalidArgumentError):
        validate_step(step_number, {})


def test_wrong_types_are_invalid_argument():
    with pytest.raises(InvalidArgumentError):
        validate_step(3, {"segments": "not a list"})
    with pytest.raises(InvalidArgumentError):
        validate_step(1, ["objective"])
