import json
import re
from typing import Any

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def extract_json(text: str) -> Any:
    """Parse the JSON object a model wrapped in prose or a code fence.

    Raises ``ValueError`` when no JSON object can be decoded.
    """
    fenced = _FENCE.search(text)
    candidate = fenced.group(1) if fenced else text
    start, end = candidate.find("{"), candidate.rfind("}")
    if start == -1 or end < start:
        raise ValueError("No JSON object in model output")
    return json.loads(candidate[start:end + 1])


def to_jsonable(value: Any) -> Any:
    """``value`` if it serializes to JSON, else its string form"""
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)
