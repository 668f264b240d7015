import asyncio
from typing import Callable, Mapping, Optional

import structlog
from langchain_core.tools import BaseTool

from gateway.domain.llm.client import ModelClient
from gateway.domain.llm.json_output import to_jsonable
from gateway.domain.models.workflow import StepDefinition, StepResult
from .conditions import evaluate_condition
from .templates import resolve_args, resolve_templates

logger = structlog.get_logger(__name__)

ModelClientProvider = Callable[[], ModelClient]


class StepExecutionError(Exception):
    """A step definition that cannot be executed as written"""


def resolve_next_step(step: StepDefinition, result: StepResult) -> Optional[str]:
    """Id of the step to jump to, or None to advance by index.

    Branches are checked in order and the first true condition wins; then
    ``on_success``/``on_failure`` by result status.
    """
    for branch in step.branches:
        if evaluate_condition(branch.condition, result.output):
            return branch.goto

    if result.status == "success" and step.on_success:
        return step.on_success
    if result.status == "failure" and step.on_failure:
        return step.on_failure
    return None


async def _run_action(
    step: StepDefinition,
    step_results: Mapping[str, StepResult],
    tools: Mapping[str, BaseTool],
    error: Optional[str],
    model_client: Optional[ModelClientProvider],
) -> StepResult:
    if step.action == "tool":
        if not step.tool:
            raise StepExecutionError(f'Step {step.id}: action "tool" requires a tool name')
        tool = tools.get(step.tool)
        if tool is None:
            raise StepExecutionError(f'Step {step.id}: tool "{step.tool}" not found')
        output = await tool.ainvoke(resolve_args(step.args, step_results, error))
        return StepResult(status="success", output=to_jsonable(output))

    if step.action == "model":
        if not step.prompt:
            raise StepExecutionError(f'Step {step.id}: action "model" requires a prompt')
        if model_client is None:
            raise StepExecutionError(f"Step {step.id}: no model is configured for workflow steps")
        text = await model_client().complete(resolve_templates(step.prompt, step_results, error))
        return StepResult(status="success", output=text)

    return StepResult(status="success", output=None)


async def execute_step(
    step: StepDefinition,
    step_results: Mapping[str, StepResult],
    tools: Mapping[str, BaseTool],
    error: Optional[str] = None,
    model_client: Optional[ModelClientProvider] = None,
) -> StepResult:
    """Run one step; failures and timeouts come back as ``failure`` results"""
    action = _run_action(step, step_results, tools, error, model_client)
    try:
        if step.timeout:
            try:
                return await asyncio.wait_for(action, step.timeout / 1000)
            except asyncio.TimeoutError:
                message = f"Step {step.id} timed out after {step.timeout} ms"
                logger.info("Workflow step timed out", step_id=step.id, timeout_ms=step.timeout)
                return StepResult(status="failure", output=message)
        return await action
    except asyncio.CancelledError:
        raise
    except Exception as e:
        message = str(e) or e.__class__.__name__
        logger.info("Workflow step failed", step_id=step.id, error=message)
        return StepResult(status="failure", output=message)
