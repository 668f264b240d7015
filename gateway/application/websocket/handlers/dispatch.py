"""Route validated client messages to their handlers.

Turns and the messages that continue them run as background tasks owned by
the connection, so the receive loop can keep delivering approvals while a
turn is suspended waiting for one. Workflow runs are durable and belong to
the service container instead: closing the connection does not abort them.
"""

import asyncio
from typing import assert_never

import structlog
from pydantic import ValidationError

from gateway.application.services import GatewayServices
from gateway.domain.errors import GatewayError
from gateway.infrastructure.observability.logging import bind_request_context
from ..connection_state import ConnectionState
from ..schema.events import ErrorEvent
from ..schema.messages import (
    ChatRouteConfirm,
    ChatSend,
    ClientMessage,
    ContextInspect,
    HeartbeatConfigure,
    MemorySearch,
    PreflightApproval,
    PromptList,
    PromptSet,
    ScheduleCreate,
    ScheduleDelete,
    ScheduleList,
    ScheduleUpdate,
    SessionList,
    ThreadCreate,
    ThreadList,
    ThreadUpdate,
    ToolApprovalResponse,
    UsageQuery,
    WorkflowApproval,
    WorkflowExecutionList,
    WorkflowList,
    WorkflowTrigger,
)
from ..transport import Transport
from . import chat, schedule, session, thread, workflow

logger = structlog.get_logger(__name__)

CONNECTION_MESSAGES = (ChatSend, ChatRouteConfirm, PreflightApproval)
WORKFLOW_MESSAGES = (WorkflowTrigger, WorkflowApproval)


def describe_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        parts.append(f"{location}: {item['msg']}" if location else item["msg"])
    return "; ".join(parts) or "Invalid message"


async def dispatch_message(
    services: GatewayServices,
    transport: Transport,
    conn: ConnectionState,
    msg: ClientMessage,
) -> None:
    if isinstance(msg, CONNECTION_MESSAGES):
        conn.spawn(run_handler(services, transport, conn, msg))
    elif isinstance(msg, WORKFLOW_MESSAGES):
        services.spawn(run_handler(services, transport, conn, msg))
    else:
        await run_handler(services, transport, conn, msg)


async def run_handler(
    services: GatewayServices,
    transport: Transport,
    conn: ConnectionState,
    msg: ClientMessage,
) -> None:
    """Run one handler, turning failures into ``error`` events"""
    bind_request_context(connection_id=conn.connection_id, request_id=msg.id)
    try:
        await _handle(services, transport, conn, msg)
    except asyncio.CancelledError:
        raise
    except GatewayError as e:
        logger.warning("Request failed", message_type=msg.type.value, code=e.code, error=e.message)
        await transport.send(ErrorEvent(request_id=msg.id, code=e.code, message=e.message))
    except ValidationError as e:
        logger.warning("Request carried invalid values", message_type=msg.type.value, error=str(e))
        await transport.send(
            ErrorEvent(request_id=msg.id, code="INVALID_MESSAGE", message=describe_validation_error(e))
        )
    except Exception as e:
        logger.error("Unhandled handler error", message_type=msg.type.value, error=str(e), exc_info=True)
        await transport.send(
            ErrorEvent(request_id=msg.id, code="INTERNAL_ERROR", message=str(e) or e.__class__.__name__)
        )


async def _handle(
    services: GatewayServices,
    transport: Transport,
    conn: ConnectionState,
    msg: ClientMessage,
) -> None:
    match msg:
        case ChatSend():
            await chat.handle_chat_send(services, transport, msg, conn)
        case ChatRouteConfirm():
            await chat.handle_chat_route_confirm(services, transport, msg, conn)
        case ToolApprovalResponse():
            await chat.handle_tool_approval_response(services, transport, msg, conn)
        case PreflightApproval():
            await chat.handle_preflight_approval(services, transport, msg, conn)
        case ContextInspect():
            await session.handle_context_inspect(services, transport, msg, conn)
        case UsageQuery():
            await session.handle_usage_query(services, transport, msg, conn)
        case SessionList():
            await session.handle_session_list(services, transport, msg, conn)
        case WorkflowTrigger():
            await workflow.handle_workflow_trigger(services, transport, msg, conn)
        case WorkflowApproval():
            await workflow.handle_workflow_approval(services, transport, msg, conn)
        case WorkflowList():
            await workflow.handle_workflow_list(services, transport, msg, conn)
        case WorkflowExecutionList():
            await workflow.handle_workflow_execution_list(services, transport, msg, conn)
        case ScheduleCreate():
            await schedule.handle_schedule_create(services, transport, msg, conn)
        case ScheduleUpdate():
            await schedule.handle_schedule_update(services, transport, msg, conn)
        case ScheduleDelete():
            await schedule.handle_schedule_delete(services, transport, msg, conn)
        case ScheduleList():
            await schedule.handle_schedule_list(services, transport, msg, conn)
        case HeartbeatConfigure():
            await schedule.handle_heartbeat_configure(services, transport, msg, conn)
        case ThreadCreate():
            await thread.handle_thread_create(services, transport, msg, conn)
        case ThreadList():
            await thread.handle_thread_list(services, transport, msg, conn)
        case ThreadUpdate():
            await thread.handle_thread_update(services, transport, msg, conn)
        case PromptSet():
            await thread.handle_prompt_set(services, transport, msg, conn)
        case PromptList():
            await thread.handle_prompt_list(services, transport, msg, conn)
        case MemorySearch():
            await thread.handle_memory_search(services, transport, msg, conn)
        case _:
            assert_never(msg)
