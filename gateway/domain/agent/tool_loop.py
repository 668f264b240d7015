"""Multi-step agent loop: streams model output, dispatches tool calls,
suspends for approval and watches the step history for stuck patterns."""

import asyncio
import json
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Sequence, Tuple

import structlog
from langchain_core.messages import AIMessage, BaseMessage, ToolMessage
from langchain_core.tools import BaseTool

from gateway.application.websocket.connection_state import ConnectionState
from gateway.application.websocket.schema.events import (
    ChatStreamDelta,
    ErrorEvent,
    FailureDetectedEvent,
    ToolApprovalRequest,
    ToolCallEvent,
    ToolErrorEvent,
    ToolResultEvent,
)
from gateway.application.websocket.transport import Transport
from gateway.domain.errors import LLMError
from gateway.domain.llm.client import ModelClient, StreamFinish, TextDelta, ToolCallRequest
from gateway.domain.llm.json_output import to_jsonable
from gateway.domain.models.usage import TokenUsage
from .approval_gate import ApprovalPolicy, check_approval
from .failure_detector import (
    StepRecord,
    ToolCallRecord,
    ToolResultRecord,
    classify_failure_pattern,
)

logger = structlog.get_logger(__name__)

APPROVAL_TIMEOUT_SECONDS = 60.0
DEFAULT_MAX_STEPS = 10
NO_TEXT_FALLBACK = (
    "I wasn't able to produce a response: the previous steps encountered errors."
)

UsageCallback = Callable[[TokenUsage], Awaitable[None]]


def _tool_message_content(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(to_jsonable(value))


async def _dispatch_tool_call(
    call: ToolCallRequest,
    *,
    transport: Transport,
    connection: ConnectionState,
    tools: Mapping[str, BaseTool],
    request_id: str,
    approval_policy: ApprovalPolicy,
    approval_timeout: float,
) -> Tuple[Optional[ToolResultRecord], ToolMessage]:
    """Run one tool call; a denied call yields no result record"""

    await transport.send(
        ToolCallEvent(request_id=request_id, tool_call_id=call.id, tool_name=call.name, args=call.args)
    )

    if check_approval(call.name, approval_policy):
        await transport.send(
            ToolApprovalRequest(request_id=request_id, tool_call_id=call.id, tool_name=call.name, args=call.args)
        )
        approved = await connection.wait_for_approval(call.id, call.name, approval_timeout)
        if not approved:
            logger.info("Tool approval denied", tool=call.name, tool_call_id=call.id)
            return None, ToolMessage(
                content=f"The user denied the call to {call.name}.",
                tool_call_id=call.id,
                status="error",
            )

    tool = tools.get(call.name)
    try:
        if tool is None:
            raise LookupError(f"Tool {call.name} is not available")
        output = await tool.ainvoke(call.args)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        message = str(e) or e.__class__.__name__
        logger.warning("Tool execution error", tool=call.name, error=message)
        await transport.send(
            ToolErrorEvent(request_id=request_id, tool_call_id=call.id, tool_name=call.name, error=message)
        )
        error_output = f"Error: {message}"
        return (
            ToolResultRecord(tool_name=call.name, output=error_output),
            ToolMessage(content=error_output, tool_call_id=call.id, status="error"),
        )

    output = to_jsonable(output)
    await transport.send(
        ToolResultEvent(request_id=request_id, tool_call_id=call.id, tool_name=call.name, result=output)
    )
    return (
        ToolResultRecord(tool_name=call.name, output=output),
        ToolMessage(content=_tool_message_content(output), tool_call_id=call.id),
    )


async def run_agent_loop(
    *,
    transport: Transport,
    connection: ConnectionState,
    client: ModelClient,
    messages: Sequence[BaseMessage],
    system: str,
    tools: Mapping[str, BaseTool],
    request_id: str,
    approval_policy: ApprovalPolicy,
    max_steps: int = DEFAULT_MAX_STEPS,
    approval_timeout: float = APPROVAL_TIMEOUT_SECONDS,
    on_usage: Optional[UsageCallback] = None,
) -> str:
    """Drive one turn and return the text the model produced.

    Model and tool failures are reported to the transport as typed events and
    never re-raised, so the connection stays usable after a failed turn.
    """

    history: List[BaseMessage] = list(messages)
    steps: List[StepRecord] = []
    usage = TokenUsage()
    texts: List[str] = []
    tool_list = list(tools.values())

    try:
        for _ in range(max_steps):
            deltas: List[str] = []
            calls: List[ToolCallRequest] = []
            finish: Optional[StreamFinish] = None

            try:
                async for chunk in client.stream(history, system=system, tools=tool_list):
                    if isinstance(chunk, TextDelta):
                        deltas.append(chunk.text)
                        await transport.send(ChatStreamDelta(request_id=request_id, delta=chunk.text))
                    elif isinstance(chunk, ToolCallRequest):
                        calls.append(chunk)
                    elif isinstance(chunk, StreamFinish):
                        finish = chunk
            except LLMError as e:
                logger.error("Stream error", error=e.message)
                await transport.send(ErrorEvent(request_id=request_id, code="AGENT_STREAM_ERROR", message=e.message))
                break

            finish = finish or StreamFinish(finish_reason="tool-calls" if calls else "stop")
            usage = usage + finish.usage
            text = "".join(deltas)
            texts.append(text)

            results: List[ToolResultRecord] = []
            tool_messages: List[ToolMessage] = []
            for call in calls:
                result, tool_message = await _dispatch_tool_call(
                    call,
                    transport=transport,
                    connection=connection,
                    tools=tools,
                    request_id=request_id,
                    approval_policy=approval_policy,
                    approval_timeout=approval_timeout,
                )
                if result is not None:
                    results.append(result)
                tool_messages.append(tool_message)

            history.append(
                AIMessage(
                    content=text,
                    tool_calls=[{"id": c.id, "name": c.name, "args": c.args} for c in calls],
                )
            )
            history.extend(tool_messages)

            steps.append(
                StepRecord(
                    step_type="initial" if not steps else "continue",
                    finish_reason=finish.finish_reason,
                    tool_calls=[ToolCallRecord(tool_name=c.name, input=c.args) for c in calls],
                    tool_results=results,
                    text=text,
                )
            )
            logger.info(
                "Agent step finished",
                step=len(steps),
                finish_reason=finish.finish_reason,
                tokens=finish.usage.total_tokens,
            )

            failure = classify_failure_pattern(steps, max_steps)
            if failure is not None:
                await transport.send(
                    FailureDetectedEvent(
                        request_id=request_id,
                        pattern=failure.pattern,
                        description=failure.description,
                        suggested_action=failure.suggested_action,
                        affected_tool=failure.affected_tool,
                    )
                )

            if not calls:
                break
    except asyncio.CancelledError:
        raise
    except Exception as e:
        message = str(e) or "Unknown agent loop error"
        logger.error("Agent loop error", error=message, exc_info=True)
        await transport.send(ErrorEvent(request_id=request_id, code="AGENT_LOOP_ERROR", message=message))

    full_text = "".join(texts)
    if not full_text:
        full_text = NO_TEXT_FALLBACK
        await transport.send(ChatStreamDelta(request_id=request_id, delta=full_text))

    if on_usage is not None:
        await on_usage(usage)
    return full_text
