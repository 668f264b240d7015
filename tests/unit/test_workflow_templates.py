import pytest

from gateway.domain.models.workflow import StepResult
from gateway.domain.workflow.conditions import evaluate_condition, normalize
from gateway.domain.workflow.templates import resolve_args, resolve_templates


@pytest.fixture
def results():
    return {
        "fetch": StepResult(status="success", output={"count": 3, "items": ["a", "b"]}),
        "summarize": StepResult(status="success", output="three items"),
        "notify": StepResult(status="failure", output="smtp down"),
    }


def test_step_output_placeholders(results):
    assert resolve_templates("Got {{steps.summarize.output}}", results) == "Got three items"
    assert resolve_templates("{{ steps.summarize.result }}", results) == "three items"
    assert resolve_templates("{{steps.notify.status}}", results) == "failure"


def test_structured_output_renders_as_json(results):
    assert resolve_templates("{{steps.fetch.output}}", results) == '{"count":3,"items":["a","b"]}'


def test_all_steps_as_json(results):
    rendered = resolve_templates("{{steps | json}}", {"summarize": results["summarize"]})
    assert rendered == '{"summarize":{"output":"three items","status":"success"}}'


def test_missing_step_renders_empty(results):
    assert resolve_templates("[{{steps.absent.output}}]", results) == "[]"


def test_unknown_placeholder_left_alone(results):
    assert resolve_templates("{{something.else}}", results) == "{{something.else}}"


def test_error_placeholder():
    assert resolve_templates("Failed: {{error}}", {}, error="disk full") == "Failed: disk full"
    assert resolve_templates("Failed: {{error}}", {}) == "Failed: No error"


def test_args_only_resolve_strings(results):
    args = resolve_args({"path": "out/{{steps.summarize.output}}.txt", "limit": 5}, results)
    assert args == {"path": "out/three items.txt", "limit": 5}


def test_normalize_keeps_string_literals():
    assert normalize('result === "a && b"') == 'result == "a && b"'
    assert normalize("!result.done || x !== 1") == "not result.done  or  x != 1"


@pytest.mark.parametrize(
    "condition, result, expected",
    [
        ('result.status === "ok"', {"status": "ok"}, True),
        ("result.count > 3 && result.count < 10", {"count": 5}, True),
        ("result.count > 3 && result.count < 10", {"count": 2}, False),
        ("!result.failed", {"failed": False}, True),
        ("result.missing === null", {}, True),
        ('result.includes("error")', "an error happened", True),
        ('"x" in result', ["x", "y"], True),
        ("result.items.length == 2", {"items": [1, 2]}, True),
        ("result", None, False),
    ],
)
def test_conditions(condition, result, expected):
    assert evaluate_condition(condition, result) is expected


def test_invalid_conditions_are_false():
    assert evaluate_condition("__import__('os').system('true')", {}) is False
    assert evaluate_condition("result +", {}) is False
    assert evaluate_condition("unknown_name", {}) is False
