"""Template placeholders for step prompts and args.

Supported forms: ``{{steps.<id>.output}}`` (``result`` is an alias),
``{{steps.<id>.status}}``, ``{{steps | json}}`` and ``{{error}}``. Unknown
placeholders are left untouched. Templates are only ever resolved in step
definitions, never in step outputs.
"""

import json
import re
from typing import Any, Dict, Mapping, Optional

from gateway.domain.models.workflow import StepResult

TEMPLATE_RE = re.compile(r"\{\{(.+?)\}\}")
STEP_FIELD_RE = re.compile(r"^steps\.([^.]+)\.(result|output|status)$")


def _to_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), default=str)


def step_view(step_results: Mapping[str, StepResult]) -> Dict[str, Dict[str, Any]]:
    return {
        step_id: {"output": result.output, "status": result.status}
        for step_id, result in step_results.items()
    }


def resolve_templates(template: str, step_results: Mapping[str, StepResult], error: Optional[str] = None) -> str:
    steps = step_view(step_results)

    def replace(match: "re.Match[str]") -> str:
        expr = match.group(1).strip()

        if expr == "steps | json":
            return _to_json(steps)
        if expr == "error":
            return error or "No error"

        step_match = STEP_FIELD_RE.match(expr)
        if step_match is None:
            return match.group(0)

        step_id, field = step_match.groups()
        data = steps.get(step_id)
        if data is None:
            return ""
        if field == "status":
            return data["status"]
        value = data["output"]
        if value is None:
            return ""
        if isinstance(value, str):
            return value
        return _to_json(value)

    return TEMPLATE_RE.sub(replace, template)


def resolve_args(
    args: Mapping[str, Any], step_results: Mapping[str, StepResult], error: Optional[str] = None
) -> Dict[str, Any]:
    """Resolve templates in string-valued args; other values pass through"""
    return {
        key: resolve_templates(value, step_results, error) if isinstance(value, str) else value
        for key, value in args.items()
    }
