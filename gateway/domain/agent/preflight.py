import json
from typing import List, Literal, Mapping, Optional
import structlog
from langchain_core.tools import BaseTool
from pydantic import BaseModel, Field, ValidationError

from gateway.domain.llm.client import ModelClient
from gateway.domain.llm.json_output import extract_json
from gateway.domain.llm.pricing import calculate_cost
from gateway.domain.llm.tokens import estimate_tokens

logger = structlog.get_logger(__name__)

MIN_MESSAGE_CHARS = 30
LONG_MESSAGE_CHARS = 200
MANY_TOOLS = 5

COMPLEX_KEYWORDS = (
    "refactor",
    "delete",
    "deploy",
    "install",
    "migrate",
    "update all",
    "fix all",
    "remove all",
    "rename all",
    "replace all",
)


class PreflightStep(BaseModel):
    description: str
    tool_name: Optional[str] = None
    risk: Literal["low", "medium", "high"] = "low"
    needs_approval: bool = False


class CostEstimate(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_usd: float = 0.0


class PreflightChecklist(BaseModel):
    """Plan shown to the user before a complex turn runs"""
    steps: List[PreflightStep] = Field(default_factory=list)
    estimated_cost: CostEstimate = Field(default_factory=CostEstimate)
    required_permissions: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


PREFLIGHT_PROMPT = """Analyze this user request and create an execution plan.

User request: "{message}"

Available tools:
{tools}

List the steps the agent will likely take to complete this request.
For each step, indicate a clear description, which tool will be used (if any),
the risk level (low/medium/high) and whether user approval should be required.
Also estimate token usage and cost in USD, the required permissions (file
system access, network, etc.) and any warnings the user should know about.

Reply with a single JSON object matching this JSON schema:
{schema}"""


def should_trigger_preflight(message: str, tools: Mapping[str, BaseTool]) -> bool:
    """Heuristic for whether a request is complex enough to plan first"""
    if len(message) < MIN_MESSAGE_CHARS:
        return False
    if len(message) > LONG_MESSAGE_CHARS:
        return True
    lowered = message.lower()
    if any(keyword in lowered for keyword in COMPLEX_KEYWORDS):
        return True
    return len(tools) > MANY_TOOLS


def describe_tools(tools: Mapping[str, BaseTool]) -> str:
    return "\n".join(f"- {name}: {tool.description or 'No description'}" for name, tool in tools.items())


def _fallback_checklist(model: str, message: str) -> PreflightChecklist:
    input_tokens = estimate_tokens(message)
    output_tokens = input_tokens * 2
    return PreflightChecklist(
        steps=[PreflightStep(description="Work through the request with the available tools", risk="medium", needs_approval=True)],
        estimated_cost=CostEstimate(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            estimated_usd=calculate_cost(model, input_tokens, output_tokens).total_cost,
        ),
        warnings=["A detailed plan could not be generated for this request"],
    )


async def generate_preflight(
    client: ModelClient,
    message: str,
    tools: Mapping[str, BaseTool],
) -> PreflightChecklist:
    """Ask the model for an execution plan of ``message``"""
    prompt = PREFLIGHT_PROMPT.format(
        message=message,
        tools=describe_tools(tools) or "(none)",
        schema=json.dumps(PreflightChecklist.model_json_schema()),
    )
    answer = await client.complete(prompt)
    try:
        checklist = PreflightChecklist.model_validate(extract_json(answer))
    except (ValueError, ValidationError) as e:
        logger.warning("Preflight answer was not a valid checklist", error=str(e))
        return _fallback_checklist(client.model_id, message)

    logger.info(
        "Generated preflight checklist",
        steps=len(checklist.steps),
        warnings=len(checklist.warnings),
    )
    return checklist
