"""Chat turn handlers.

A turn assembles context from the session history and memory files, checks
memory pressure, routes to a model tier, optionally stops for a pre-flight
checklist and then streams either the tool-using agent loop or a plain
text response.
"""

import asyncio
from typing import Dict, Optional

import structlog
from langchain_core.tools import BaseTool

from gateway.application.services import GatewayServices
from gateway.domain.agent.approval_gate import create_approval_policy, record_session_approval
from gateway.domain.agent.preflight import describe_tools, generate_preflight, should_trigger_preflight
from gateway.domain.agent.tool_loop import run_agent_loop
from gateway.domain.context.assembler import AssembledContext
from gateway.domain.errors import GatewayError, LLMError, ProviderNotConfiguredError
from gateway.domain.llm.client import StreamFinish, TextDelta, to_langchain_messages
from gateway.domain.models.usage import TokenUsage
from gateway.domain.routing.router import DEFAULT_TIERS, get_alternatives, route_message
from gateway.infrastructure.observability.logging import bind_request_context
from ..connection_state import ConnectionState, PendingPreflight, PendingRouting
from ..schema.events import (
    ChatRouteProposal,
    ChatStreamDelta,
    ChatStreamEnd,
    ChatStreamStart,
    ErrorEvent,
    PreflightChecklistEvent,
    RoutingInfo,
    SessionCreated,
)
from ..schema.messages import ChatRouteConfirm, ChatSend, PreflightApproval, ToolApprovalResponse
from ..transport import Transport

logger = structlog.get_logger(__name__)


def _tiers(services: GatewayServices):
    return {**DEFAULT_TIERS, **(services.config.model_tiers or {})}


def _ensure_tools(services: GatewayServices, conn: ConnectionState) -> Dict[str, BaseTool]:
    """Build the connection's tool registry on first use"""
    if conn.tools is None:
        policy = create_approval_policy(services.config.tool_approval)
        try:
            conn.tools = services.build_tools(policy)
            conn.approval_policy = policy
        except (OSError, ValueError) as e:
            logger.warning("Failed to build tool registry, falling back to text-only", error=str(e))
            conn.tools = {}
    return conn.tools


async def _stream_in_progress(transport: Transport, request_id: str) -> None:
    await transport.send(
        ErrorEvent(
            request_id=request_id,
            code="STREAM_IN_PROGRESS",
            message="Please wait for the current response to complete",
        )
    )


def _with_total(usage: TokenUsage) -> TokenUsage:
    if usage.total_tokens:
        return usage
    return usage.model_copy(update={"total_tokens": usage.input_tokens + usage.output_tokens})


async def _stream_text(
    services: GatewayServices,
    transport: Transport,
    *,
    request_id: str,
    session_id: str,
    model: str,
    context: AssembledContext,
) -> None:
    """Text-only response, used when no tools are available"""
    client = services.providers.get_client(model)
    deltas = []
    usage = TokenUsage()
    try:
        async for chunk in client.stream(to_langchain_messages(context.messages), system=context.system):
            if isinstance(chunk, TextDelta):
                deltas.append(chunk.text)
                await transport.send(ChatStreamDelta(request_id=request_id, delta=chunk.text))
            elif isinstance(chunk, StreamFinish):
                usage = chunk.usage
    except LLMError as e:
        logger.error("LLM streaming error", model=model, error=e.message)
        await transport.send(ErrorEvent(request_id=request_id, code="LLM_ERROR", message=e.message))
        return

    usage = _with_total(usage)
    await services.sessions.add_message(session_id, "assistant", "".join(deltas))
    cost = await services.usage.record(session_id, model, usage)
    await transport.send(ChatStreamEnd(request_id=request_id, usage=usage, cost=cost))


async def _respond(
    services: GatewayServices,
    transport: Transport,
    conn: ConnectionState,
    *,
    request_id: str,
    session_id: str,
    model: str,
    context: AssembledContext,
    routing: Optional[RoutingInfo] = None,
) -> None:
    client = services.providers.get_client(model)
    await transport.send(ChatStreamStart(request_id=request_id, session_id=session_id, model=model, routing=routing))

    tools = conn.tools or {}
    if not tools or conn.approval_policy is None:
        await _stream_text(
            services, transport, request_id=request_id, session_id=session_id, model=model, context=context
        )
        return

    async def on_usage(usage: TokenUsage) -> None:
        usage = _with_total(usage)
        cost = await services.usage.record(session_id, model, usage)
        await transport.send(ChatStreamEnd(request_id=request_id, usage=usage, cost=cost))

    text = await run_agent_loop(
        transport=transport,
        connection=conn,
        client=client,
        messages=to_langchain_messages(context.messages),
        system=context.system,
        tools=tools,
        request_id=request_id,
        approval_policy=conn.approval_policy,
        max_steps=services.config.max_agent_steps,
        approval_timeout=services.config.approval_timeout_seconds,
        on_usage=on_usage,
    )
    await services.sessions.add_message(session_id, "assistant", text)


async def handle_chat_send(
    services: GatewayServices,
    transport: Transport,
    msg: ChatSend,
    conn: ConnectionState,
) -> None:
    """Start a turn; only one turn streams per connection at a time"""
    if conn.streaming:
        await _stream_in_progress(transport, msg.id)
        return

    conn.begin_stream(msg.id)
    try:
        await _chat_turn(services, transport, msg, conn)
    finally:
        conn.end_stream()


async def _chat_turn(
    services: GatewayServices,
    transport: Transport,
    msg: ChatSend,
    conn: ConnectionState,
) -> None:
    providers = services.providers

    if msg.session_id:
        session = await services.sessions.require(msg.session_id)
        model = session.model
        # Mid-conversation model switch
        if msg.model:
            requested = providers.resolve_model_id(msg.model)
            if requested != model:
                await services.sessions.update_model(session.id, requested)
                model = requested
    else:
        requested = providers.resolve_model_id(msg.model) if msg.model else services.config.default_model
        session = await services.sessions.create(services.config.agent_id, requested)
        model = session.model
        await transport.send(SessionCreated(session_id=session.id, session_key=session.session_key))

    conn.session_id = session.id
    bind_request_context(session_id=session.id, request_id=msg.id)

    model = providers.resolve_model_id(model)
    provider = model.partition(":")[0]
    if not providers.is_provider_available(provider):
        raise ProviderNotConfiguredError(provider, providers.get_available_providers())

    history = await services.sessions.get_messages(session.id)
    tools = _ensure_tools(services, conn)
    context = await services.assembler.assemble(
        history,
        msg.content,
        model,
        thread_id=msg.thread_id,
        tool_descriptions=describe_tools(tools) or None,
    )
    await services.sessions.add_message(session.id, "user", msg.content)
    await asyncio.to_thread(services.pressure.check_and_flush, context, services.memory)

    routing: Optional[RoutingInfo] = None
    if not msg.model:
        tiers = _tiers(services)
        decision = route_message(msg.content, len(history) + 1, providers.is_provider_available, tiers)
        if services.config.routing_mode == "manual":
            conn.pending_routing = PendingRouting(msg.id, session.id, msg.content, decision, msg.thread_id)
            await transport.send(
                ChatRouteProposal(
                    request_id=msg.id,
                    routing=decision,
                    alternatives=get_alternatives(decision, tiers),
                )
            )
            return

        model = decision.model_id
        routing = RoutingInfo(tier=decision.tier, reason=decision.reason)
        logger.info("Auto-routed message", model=model, tier=decision.tier, confidence=decision.confidence)

    if tools and should_trigger_preflight(msg.content, tools):
        try:
            checklist = await generate_preflight(providers.get_client(model), msg.content, tools)
        except GatewayError as e:
            logger.warning("Preflight generation failed, proceeding without", error=e.message)
        else:
            conn.pending_preflight = PendingPreflight(msg.id, session.id, model, msg.content, context, routing)
            await transport.send(
                PreflightChecklistEvent(
                    request_id=msg.id,
                    steps=checklist.steps,
                    estimated_cost=checklist.estimated_cost,
                    required_permissions=checklist.required_permissions,
                    warnings=checklist.warnings,
                )
            )
            return

    await _respond(
        services,
        transport,
        conn,
        request_id=msg.id,
        session_id=session.id,
        model=model,
        context=context,
        routing=routing,
    )


async def handle_chat_route_confirm(
    services: GatewayServices,
    transport: Transport,
    msg: ChatRouteConfirm,
    conn: ConnectionState,
) -> None:
    """Continue a turn held by a manual routing proposal"""
    pending = conn.pending_routing
    if pending is None or pending.request_id != msg.request_id:
        await transport.send(
            ErrorEvent(
                request_id=msg.id,
                code="NO_PENDING_ROUTING",
                message="No pending routing proposal to confirm",
            )
        )
        return
    if conn.streaming:
        await _stream_in_progress(transport, msg.id)
        return

    conn.pending_routing = None
    decision = pending.decision
    if not msg.accept and msg.override is not None:
        model = services.providers.resolve_model_id(f"{msg.override.provider}:{msg.override.model}")
    else:
        model = decision.model_id
    routing = RoutingInfo(tier=decision.tier, reason=decision.reason) if model == decision.model_id else None

    conn.begin_stream(pending.request_id)
    try:
        messages = await services.sessions.get_messages(pending.session_id)
        # The user message was stored when the proposal was made
        if messages and messages[-1].role == "user":
            messages = messages[:-1]
        tools = _ensure_tools(services, conn)
        context = await services.assembler.assemble(
            messages,
            pending.content,
            model,
            thread_id=pending.thread_id,
            tool_descriptions=describe_tools(tools) or None,
        )
        await _respond(
            services,
            transport,
            conn,
            request_id=pending.request_id,
            session_id=pending.session_id,
            model=model,
            context=context,
            routing=routing,
        )
    finally:
        conn.end_stream()


async def handle_tool_approval_response(
    services: GatewayServices,
    transport: Transport,
    msg: ToolApprovalResponse,
    conn: ConnectionState,
) -> None:
    pending = conn.pending_approvals.get(msg.tool_call_id)
    if pending is None:
        logger.warning("No pending approval for tool call", tool_call_id=msg.tool_call_id)
        return

    if msg.session_approve and msg.approved and conn.approval_policy is not None:
        record_session_approval(pending.tool_name, conn.approval_policy)
        logger.info("Tool approved for the session", tool=pending.tool_name, tool_call_id=msg.tool_call_id)

    conn.resolve_approval(msg.tool_call_id, msg.approved)


def _approved_plan(msg: PreflightApproval) -> str:
    lines = [f"{i}. {step.description}" for i, step in enumerate(msg.edited_steps or [], start=1)]
    return "\n\n# Approved Plan\nFollow the plan the user approved:\n" + "\n".join(lines)


async def handle_preflight_approval(
    services: GatewayServices,
    transport: Transport,
    msg: PreflightApproval,
    conn: ConnectionState,
) -> None:
    """Run or cancel a turn held by its pre-flight checklist"""
    pending = conn.pending_preflight
    if pending is None or pending.request_id != msg.request_id:
        logger.warning("No pending preflight for request", request_id=msg.request_id)
        await transport.send(
            ErrorEvent(
                request_id=msg.id,
                code="NO_PENDING_PREFLIGHT",
                message="No pending preflight checklist to approve",
            )
        )
        return

    conn.pending_preflight = None
    if not msg.approved:
        await transport.send(
            ErrorEvent(
                request_id=pending.request_id,
                code="PREFLIGHT_REJECTED",
                message="Pre-flight checklist rejected by user",
            )
        )
        return
    if conn.streaming:
        await _stream_in_progress(transport, msg.id)
        return

    context = pending.context
    if msg.edited_steps:
        context = context.model_copy(update={"system": context.system + _approved_plan(msg)})

    conn.begin_stream(pending.request_id)
    try:
        await _respond(
            services,
            transport,
            conn,
            request_id=pending.request_id,
            session_id=pending.session_id,
            model=pending.model,
            context=context,
            routing=pending.routing,
        )
    finally:
        conn.end_stream()
