"""Inbound (client to server) websocket messages.

Every message carries a client-generated ``id`` used to correlate replies.
``parse_client_message`` validates raw frames against the discriminated
union before they reach a handler.
"""

from typing import Annotated, List, Literal, Optional, Union
from pydantic import BaseModel, Field, TypeAdapter
from enum import Enum

from gateway.domain.agent.preflight import PreflightStep
from gateway.domain.models.schedule import ActiveHours
from gateway.domain.models.workflow import ExecutionStatus


class ClientMessageType(str, Enum):
    """Inbound websocket message types"""
    CHAT_SEND = "chat.send"
    CHAT_ROUTE_CONFIRM = "chat.route.confirm"
    TOOL_APPROVAL_RESPONSE = "tool.approval.response"
    PREFLIGHT_APPROVAL = "preflight.approval"
    CONTEXT_INSPECT = "context.inspect"
    USAGE_QUERY = "usage.query"
    SESSION_LIST = "session.list"
    WORKFLOW_TRIGGER = "workflow.trigger"
    WORKFLOW_APPROVAL = "workflow.approval"
    WORKFLOW_LIST = "workflow.list"
    WORKFLOW_EXECUTION_LIST = "workflow.execution.list"
    SCHEDULE_CREATE = "schedule.create"
    SCHEDULE_UPDATE = "schedule.update"
    SCHEDULE_DELETE = "schedule.delete"
    SCHEDULE_LIST = "schedule.list"
    HEARTBEAT_CONFIGURE = "heartbeat.configure"
    THREAD_CREATE = "thread.create"
    THREAD_LIST = "thread.list"
    THREAD_UPDATE = "thread.update"
    PROMPT_SET = "prompt.set"
    PROMPT_LIST = "prompt.list"
    MEMORY_SEARCH = "memory.search"


class BaseClientMessage(BaseModel):
    id: str = Field(min_length=1)


class ChatSend(BaseClientMessage):
    type: Literal[ClientMessageType.CHAT_SEND]
    session_id: Optional[str] = None
    content: str = Field(min_length=1)
    model: Optional[str] = None
    thread_id: Optional[str] = None


class ModelOverride(BaseModel):
    provider: str
    model: str


class ChatRouteConfirm(BaseClientMessage):
    type: Literal[ClientMessageType.CHAT_ROUTE_CONFIRM]
    request_id: str
    accept: bool
    override: Optional[ModelOverride] = None


class ToolApprovalResponse(BaseClientMessage):
    type: Literal[ClientMessageType.TOOL_APPROVAL_RESPONSE]
    tool_call_id: str
    approved: bool
    session_approve: bool = False


class PreflightApproval(BaseClientMessage):
    type: Literal[ClientMessageType.PREFLIGHT_APPROVAL]
    request_id: str
    approved: bool
    edited_steps: Optional[List[PreflightStep]] = None


class ContextInspect(BaseClientMessage):
    type: Literal[ClientMessageType.CONTEXT_INSPECT]
    session_id: str
    thread_id: Optional[str] = None


class UsageQuery(BaseClientMessage):
    type: Literal[ClientMessageType.USAGE_QUERY]
    session_id: Optional[str] = None


class SessionList(BaseClientMessage):
    type: Literal[ClientMessageType.SESSION_LIST]


class WorkflowTrigger(BaseClientMessage):
    type: Literal[ClientMessageType.WORKFLOW_TRIGGER]
    workflow_id: str


class WorkflowApproval(BaseClientMessage):
    type: Literal[ClientMessageType.WORKFLOW_APPROVAL]
    execution_id: str
    step_id: str
    approved: bool


class WorkflowList(BaseClientMessage):
    type: Literal[ClientMessageType.WORKFLOW_LIST]


class WorkflowExecutionList(BaseClientMessage):
    type: Literal[ClientMessageType.WORKFLOW_EXECUTION_LIST]
    workflow_id: Optional[str] = None
    status: Optional[ExecutionStatus] = None


class ScheduleCreate(BaseClientMessage):
    type: Literal[ClientMessageType.SCHEDULE_CREATE]
    name: str
    cron_expression: str
    timezone: Optional[str] = None
    active_hours: Optional[ActiveHours] = None
    max_runs: Optional[int] = Field(default=None, ge=1)
    workflow_id: Optional[str] = None


class ScheduleUpdate(BaseClientMessage):
    type: Literal[ClientMessageType.SCHEDULE_UPDATE]
    schedule_id: str
    name: Optional[str] = None
    enabled: Optional[bool] = None
    cron_expression: Optional[str] = None
    timezone: Optional[str] = None
    active_hours: Optional[ActiveHours] = None
    max_runs: Optional[int] = Field(default=None, ge=1)


class ScheduleDelete(BaseClientMessage):
    type: Literal[ClientMessageType.SCHEDULE_DELETE]
    schedule_id: str


class ScheduleList(BaseClientMessage):
    type: Literal[ClientMessageType.SCHEDULE_LIST]


class HeartbeatConfigure(BaseClientMessage):
    type: Literal[ClientMessageType.HEARTBEAT_CONFIGURE]
    interval: int = Field(ge=1, le=59, description="Minutes between heartbeat runs")
    name: str = "default"
    timezone: Optional[str] = None
    active_hours: Optional[ActiveHours] = None
    enabled: bool = True
    heartbeat_path: Optional[str] = None


class ThreadCreate(BaseClientMessage):
    type: Literal[ClientMessageType.THREAD_CREATE]
    title: str = Field(min_length=1)
    system_prompt: Optional[str] = None


class ThreadList(BaseClientMessage):
    type: Literal[ClientMessageType.THREAD_LIST]
    include_archived: bool = False


class ThreadUpdate(BaseClientMessage):
    type: Literal[ClientMessageType.THREAD_UPDATE]
    thread_id: str
    title: Optional[str] = None
    system_prompt: Optional[str] = None
    archived: Optional[bool] = None


class PromptSet(BaseClientMessage):
    type: Literal[ClientMessageType.PROMPT_SET]
    name: str = Field(min_length=1)
    content: str = Field(min_length=1)
    priority: int = 0


class PromptList(BaseClientMessage):
    type: Literal[ClientMessageType.PROMPT_LIST]


class MemorySearch(BaseClientMessage):
    type: Literal[ClientMessageType.MEMORY_SEARCH]
    query: str = Field(min_length=1)
    top_k: int = Field(default=10, ge=1, le=100)


ClientMessage = Annotated[
    Union[
        ChatSend,
        ChatRouteConfirm,
        ToolApprovalResponse,
        PreflightApproval,
        ContextInspect,
        UsageQuery,
        SessionList,
        WorkflowTrigger,
        WorkflowApproval,
        WorkflowList,
        WorkflowExecutionList,
        ScheduleCreate,
        ScheduleUpdate,
        ScheduleDelete,
        ScheduleList,
        HeartbeatConfigure,
        ThreadCreate,
        ThreadList,
        ThreadUpdate,
        PromptSet,
        PromptList,
        MemorySearch,
    ],
    Field(discriminator="type"),
]

client_message_adapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)


def parse_client_message(raw: Union[str, bytes]) -> ClientMessage:
    """Validate a raw JSON frame; raises pydantic.ValidationError"""
    return client_message_adapter.validate_json(raw)
