"""Heartbeat checks driven by a ``HEARTBEAT.md`` checklist.

The file carries optional YAML front matter (``interval``, ``timezone``,
``active_hours``) followed by a markdown checklist::

    ---
    interval: 30
    ---
    - [ ] Disk usage on the build host is below 90%
    - [ ] No failed deploys since yesterday

Each item is handed to the model, which may use read-only tools to verify it
and answers with ``{"actionNeeded": bool, "details": str}``.
"""

import asyncio
import re
from pathlib import Path
from typing import Callable, List, Mapping, NamedTuple, Optional, Union

import structlog
import yaml
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, ToolMessage
from langchain_core.tools import BaseTool
from pydantic import BaseModel, ConfigDict, Field

from gateway.domain.llm.client import ModelClient, TextDelta, ToolCallRequest
from gateway.domain.llm.json_output import extract_json, to_jsonable
from gateway.domain.models.schedule import ActiveHours, HeartbeatResult

logger = structlog.get_logger(__name__)

CHECKLIST_ITEM = re.compile(r"^\s*-\s*\[[ x]\]\s+(.+)")
MAX_CHECK_STEPS = 5
NOT_EVALUATED = "Check could not be evaluated"

CHECK_SYSTEM_PROMPT = (
    "You are a monitoring agent. Check the following item and determine if any action is needed. "
    'Respond with JSON: {"actionNeeded": boolean, "details": "brief explanation"}. '
    "Only set actionNeeded to true if the user MUST take action."
)


class HeartbeatConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    interval: int = 30
    timezone: Optional[str] = None
    active_hours: Optional[ActiveHours] = Field(default=None, alias="activeHours")


class HeartbeatFile(NamedTuple):
    config: HeartbeatConfig
    checks: List[str]


def _split_front_matter(raw: str):
    if not raw.startswith("---"):
        return {}, raw
    parts = raw.split("\n---", 1)
    if len(parts) != 2:
        return {}, raw
    header = parts[0][3:]
    body = parts[1].split("\n", 1)[1] if "\n" in parts[1] else ""
    return yaml.safe_load(header) or {}, body


def parse_heartbeat(raw: str) -> HeartbeatFile:
    data, body = _split_front_matter(raw)
    checks = []
    for line in body.splitlines():
        match = CHECKLIST_ITEM.match(line)
        if match:
            checks.append(match.group(1).strip())
    return HeartbeatFile(config=HeartbeatConfig.model_validate(data), checks=checks)


def load_heartbeat(path: Union[str, Path]) -> HeartbeatFile:
    return parse_heartbeat(Path(path).expanduser().read_text(encoding="utf-8"))


def _parse_verdict(check: str, text: str) -> HeartbeatResult:
    try:
        verdict = extract_json(text)
    except ValueError:
        return HeartbeatResult(check=check, action_needed=False, details=NOT_EVALUATED)
    if not isinstance(verdict, dict) or not isinstance(verdict.get("actionNeeded"), bool):
        return HeartbeatResult(check=check, action_needed=False, details=NOT_EVALUATED)
    return HeartbeatResult(
        check=check,
        action_needed=verdict["actionNeeded"],
        details=str(verdict.get("details") or ""),
    )


class HeartbeatRunner:
    """Run every checklist item in a heartbeat file, one after another"""

    def __init__(
        self,
        heartbeat_path: Union[str, Path],
        model_client: Callable[[], ModelClient],
        tools: Optional[Mapping[str, BaseTool]] = None,
    ):
        self.heartbeat_path = Path(heartbeat_path).expanduser()
        self.model_client = model_client
        self.tools = dict(tools or {})

    def get_config(self) -> HeartbeatFile:
        """Re-read the file, so edits apply without a restart"""
        return load_heartbeat(self.heartbeat_path)

    async def run(self) -> List[HeartbeatResult]:
        heartbeat = await asyncio.to_thread(load_heartbeat, self.heartbeat_path)
        client = self.model_client()
        results = []
        for check in heartbeat.checks:
            results.append(await self.check_item(client, check))
        return results

    async def check_item(self, client: ModelClient, check: str) -> HeartbeatResult:
        history: List[BaseMessage] = [
            HumanMessage(content=f"Check: {check}\nUse the available tools to verify this.")
        ]
        text = ""
        try:
            for _ in range(MAX_CHECK_STEPS):
                deltas: List[str] = []
                calls: List[ToolCallRequest] = []
                async for chunk in client.stream(history, system=CHECK_SYSTEM_PROMPT, tools=list(self.tools.values())):
                    if isinstance(chunk, TextDelta):
                        deltas.append(chunk.text)
                    elif isinstance(chunk, ToolCallRequest):
                        calls.append(chunk)
                text = "".join(deltas)
                if not calls:
                    break

                history.append(
                    AIMessage(content=text, tool_calls=[{"id": c.id, "name": c.name, "args": c.args} for c in calls])
                )
                for call in calls:
                    history.append(await self._call_tool(call))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Heartbeat check failed", check=check, error=str(e))
            return HeartbeatResult(check=check, action_needed=False, details=NOT_EVALUATED)

        return _parse_verdict(check, text)

    async def _call_tool(self, call: ToolCallRequest) -> ToolMessage:
        tool = self.tools.get(call.name)
        if tool is None:
            return ToolMessage(content=f"Tool {call.name} is not available", tool_call_id=call.id, status="error")
        try:
            output = to_jsonable(await tool.ainvoke(call.args))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return ToolMessage(content=f"Error: {e}", tool_call_id=call.id, status="error")
        return ToolMessage(content=output if isinstance(output, str) else str(output), tool_call_id=call.id)
