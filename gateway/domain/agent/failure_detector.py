"""Stuck-pattern detection over the step history of one agent turn."""

import json
from typing import Any, Callable, List, Literal, Optional, Sequence

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)

ERROR_INDICATORS = ("error", "Error", "ENOENT", "EACCES", "denied", "failed")
WINDOW = 3
DEFAULT_MAX_STEPS = 10

FailurePatternName = Literal[
    "repeated-tool-error",
    "no-progress",
    "max-steps-approaching",
    "tool-rejection-loop",
]


class ToolCallRecord(BaseModel):
    tool_name: str
    input: Any = None


class ToolResultRecord(BaseModel):
    tool_name: str
    output: Any = None


class StepRecord(BaseModel):
    """One completed model step of the agent loop"""
    step_type: Literal["initial", "continue"] = "initial"
    finish_reason: str
    tool_calls: List[ToolCallRecord] = Field(default_factory=list)
    tool_results: List[ToolResultRecord] = Field(default_factory=list)
    text: str = ""


class FailurePattern(BaseModel):
    pattern: FailurePatternName
    description: str
    suggested_action: str
    affected_tool: Optional[str] = None


def _serialize(output: Any) -> str:
    if isinstance(output, str):
        return output
    return json.dumps(output, default=str)


def output_looks_like_error(output: Any) -> bool:
    text = _serialize(output)
    return any(indicator in text for indicator in ERROR_INDICATORS)


def detect_repeated_tool_error(steps: Sequence[StepRecord]) -> Optional[FailurePattern]:
    if len(steps) < WINDOW:
        return None
    recent = steps[-WINDOW:]

    if not all(s.tool_calls for s in recent):
        return None

    tool_names = {s.tool_calls[0].tool_name for s in recent}
    if len(tool_names) != 1:
        return None
    tool_name = tool_names.pop()

    if not all(
        s.tool_results and any(output_looks_like_error(r.output) for r in s.tool_results)
        for s in recent
    ):
        return None

    logger.info("Detected repeated tool error", tool=tool_name)
    return FailurePattern(
        pattern="repeated-tool-error",
        description=f'Tool "{tool_name}" has failed 3 consecutive times with errors',
        suggested_action=f'Stop using "{tool_name}" with the current arguments. Try a different approach or tool.',
        affected_tool=tool_name,
    )


def detect_tool_rejection_loop(steps: Sequence[StepRecord]) -> Optional[FailurePattern]:
    if len(steps) < WINDOW:
        return None
    recent = steps[-WINDOW:]

    if not all(s.tool_calls and not s.tool_results for s in recent):
        return None

    tool_names: List[str] = []
    for step in recent:
        for call in step.tool_calls:
            if call.tool_name not in tool_names:
                tool_names.append(call.tool_name)

    logger.info("Detected tool rejection loop", tools=tool_names)
    return FailurePattern(
        pattern="tool-rejection-loop",
        description=f"Tool calls have been rejected 3 consecutive times (tools: {', '.join(tool_names)})",
        suggested_action="Tool approval is being denied. Ask the user for guidance or proceed without tools.",
        affected_tool=tool_names[0],
    )


def detect_no_progress(steps: Sequence[StepRecord]) -> Optional[FailurePattern]:
    if len(steps) < WINDOW:
        return None
    recent = steps[-WINDOW:]

    if not all(s.finish_reason == "tool-calls" for s in recent):
        return None

    outputs = {
        json.dumps([r.output for r in s.tool_results], default=str) if s.tool_results else ""
        for s in recent
    }
    if len(outputs) != 1:
        return None

    logger.info("Detected no-progress loop")
    return FailurePattern(
        pattern="no-progress",
        description="Last 3 steps produced identical tool results with no progress",
        suggested_action=(
            "Break out of the current approach. Try different parameters, "
            "a different tool, or ask the user for clarification."
        ),
    )


def detect_max_steps_approaching(steps: Sequence[StepRecord], max_steps: int) -> Optional[FailurePattern]:
    if len(steps) < max_steps - 1:
        return None
    logger.info("Max steps approaching", step=len(steps), max_steps=max_steps)
    return FailurePattern(
        pattern="max-steps-approaching",
        description=f"Agent is at step {len(steps)} of {max_steps} maximum steps",
        suggested_action=(
            "Wrap up the current task quickly. Summarize progress and "
            "remaining work if unable to complete."
        ),
    )


DETECTORS: List[Callable[[Sequence[StepRecord]], Optional[FailurePattern]]] = [
    detect_repeated_tool_error,
    detect_tool_rejection_loop,
    detect_no_progress,
]


def classify_failure_pattern(
    steps: Sequence[StepRecord],
    max_steps: int = DEFAULT_MAX_STEPS,
) -> Optional[FailurePattern]:
    """Return the highest-priority stuck pattern in the step history, if any"""
    for detector in DETECTORS:
        pattern = detector(steps)
        if pattern is not None:
            return pattern
    return detect_max_steps_approaching(steps, max_steps)
