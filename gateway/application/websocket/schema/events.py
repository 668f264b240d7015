"""Outbound (server to client) websocket events."""

from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum

from gateway.domain.agent.preflight import CostEstimate, PreflightStep
from gateway.domain.context.assembler import ContextSection, ContextTotals
from gateway.domain.memory.memory_manager import MemorySearchResult
from gateway.domain.models.schedule import HeartbeatResult, ScheduleConfig
from gateway.domain.models.session import SessionSummary, utcnow
from gateway.domain.models.thread import GlobalPrompt, Thread
from gateway.domain.models.usage import CostBreakdown, GrandTotal, ModelUsageTotals, TokenUsage
from gateway.domain.models.workflow import ExecutionStatus, WorkflowExecution
from gateway.domain.routing.router import Alternative, ModelTier, RoutingDecision


class EventType(str, Enum):
    """Outbound websocket event types"""
    CHAT_STREAM_START = "chat.stream.start"
    CHAT_STREAM_DELTA = "chat.stream.delta"
    CHAT_STREAM_END = "chat.stream.end"
    CHAT_ROUTE_PROPOSE = "chat.route.propose"
    TOOL_CALL = "tool.call"
    TOOL_RESULT = "tool.result"
    TOOL_ERROR = "tool.error"
    TOOL_APPROVAL_REQUEST = "tool.approval.request"
    PREFLIGHT_CHECKLIST = "preflight.checklist"
    FAILURE_DETECTED = "failure.detected"
    ERROR = "error"
    SESSION_CREATED = "session.created"
    SESSION_LIST = "session.list"
    USAGE_REPORT = "usage.report"
    CONTEXT_INSPECTION = "context.inspection"
    WORKFLOW_STATUS = "workflow.status"
    WORKFLOW_APPROVAL_REQUEST = "workflow.approval.request"
    WORKFLOW_LIST = "workflow.list"
    WORKFLOW_EXECUTION_LIST = "workflow.execution.list"
    SCHEDULE_CREATED = "schedule.created"
    SCHEDULE_UPDATED = "schedule.updated"
    SCHEDULE_DELETED = "schedule.deleted"
    SCHEDULE_LIST_RESULT = "schedule.list.result"
    HEARTBEAT_ALERT = "heartbeat.alert"
    HEARTBEAT_CONFIGURED = "heartbeat.configured"
    THREAD_CREATED = "thread.created"
    THREAD_LIST_RESULT = "thread.list.result"
    THREAD_UPDATED = "thread.updated"
    PROMPT_SET_RESULT = "prompt.set.result"
    PROMPT_LIST_RESULT = "prompt.list.result"
    MEMORY_SEARCH_RESULT = "memory.search.result"


class BaseEvent(BaseModel):
    """Base event model for all outbound WebSocket messages"""
    type: EventType
    timestamp: datetime = Field(default_factory=utcnow)


class RoutingInfo(BaseModel):
    tier: ModelTier
    reason: str


class ChatStreamStart(BaseEvent):
    type: Literal[EventType.CHAT_STREAM_START] = EventType.CHAT_STREAM_START
    request_id: str
    session_id: str
    model: str
    routing: Optional[RoutingInfo] = None


class ChatStreamDelta(BaseEvent):
    type: Literal[EventType.CHAT_STREAM_DELTA] = EventType.CHAT_STREAM_DELTA
    request_id: str
    delta: str


class ChatStreamEnd(BaseEvent):
    type: Literal[EventType.CHAT_STREAM_END] = EventType.CHAT_STREAM_END
    request_id: str
    usage: TokenUsage
    cost: CostBreakdown


class ChatRouteProposal(BaseEvent):
    """Routing decision awaiting confirmation in manual routing mode"""
    type: Literal[EventType.CHAT_ROUTE_PROPOSE] = EventType.CHAT_ROUTE_PROPOSE
    request_id: str
    routing: RoutingDecision
    alternatives: List[Alternative] = Field(default_factory=list)


class ToolCallEvent(BaseEvent):
    type: Literal[EventType.TOOL_CALL] = EventType.TOOL_CALL
    request_id: str
    tool_call_id: str
    tool_name: str
    args: Dict[str, Any] = Field(default_factory=dict)


class ToolResultEvent(BaseEvent):
    type: Literal[EventType.TOOL_RESULT] = EventType.TOOL_RESULT
    request_id: str
    tool_call_id: str
    tool_name: str
    result: Any = None


class ToolErrorEvent(BaseEvent):
    type: Literal[EventType.TOOL_ERROR] = EventType.TOOL_ERROR
    request_id: str
    tool_call_id: str
    tool_name: str
    error: str


class ToolApprovalRequest(BaseEvent):
    type: Literal[EventType.TOOL_APPROVAL_REQUEST] = EventType.TOOL_APPROVAL_REQUEST
    request_id: str
    tool_call_id: str
    tool_name: str
    args: Dict[str, Any] = Field(default_factory=dict)


class PreflightChecklistEvent(BaseEvent):
    type: Literal[EventType.PREFLIGHT_CHECKLIST] = EventType.PREFLIGHT_CHECKLIST
    request_id: str
    steps: List[PreflightStep]
    estimated_cost: CostEstimate
    required_permissions: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class FailureDetectedEvent(BaseEvent):
    type: Literal[EventType.FAILURE_DETECTED] = EventType.FAILURE_DETECTED
    request_id: str
    pattern: str
    description: str
    suggested_action: str
    affected_tool: Optional[str] = None


class ErrorEvent(BaseEvent):
    """Error event"""
    type: Literal[EventType.ERROR] = EventType.ERROR
    request_id: Optional[str] = None
    code: str
    message: str


class SessionCreated(BaseEvent):
    type: Literal[EventType.SESSION_CREATED] = EventType.SESSION_CREATED
    session_id: str
    session_key: str


class SessionListEvent(BaseEvent):
    type: Literal[EventType.SESSION_LIST] = EventType.SESSION_LIST
    request_id: str
    sessions: List[SessionSummary]


class UsageReport(BaseEvent):
    type: Literal[EventType.USAGE_REPORT] = EventType.USAGE_REPORT
    request_id: str
    session_id: Optional[str] = None
    per_model: Dict[str, ModelUsageTotals]
    grand_total: GrandTotal


class ContextInspection(BaseEvent):
    type: Literal[EventType.CONTEXT_INSPECTION] = EventType.CONTEXT_INSPECTION
    request_id: str
    session_id: str
    sections: List[ContextSection]
    totals: ContextTotals


class WorkflowStatusEvent(BaseEvent):
    type: Literal[EventType.WORKFLOW_STATUS] = EventType.WORKFLOW_STATUS
    request_id: Optional[str] = None
    execution_id: str
    workflow_id: str
    status: ExecutionStatus
    current_step_id: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_execution(cls, execution: WorkflowExecution, request_id: Optional[str] = None) -> "WorkflowStatusEvent":
        return cls(
            request_id=request_id,
            execution_id=execution.id,
            workflow_id=execution.workflow_id,
            status=execution.status,
            current_step_id=execution.current_step_id,
            error=execution.error,
        )


class WorkflowApprovalRequest(BaseEvent):
    type: Literal[EventType.WORKFLOW_APPROVAL_REQUEST] = EventType.WORKFLOW_APPROVAL_REQUEST
    execution_id: str
    workflow_id: str
    step_id: str
    action: str
    tool: Optional[str] = None
    args: Dict[str, Any] = Field(default_factory=dict)


class WorkflowSummary(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    step_count: int


class WorkflowListEvent(BaseEvent):
    type: Literal[EventType.WORKFLOW_LIST] = EventType.WORKFLOW_LIST
    request_id: str
    workflows: List[WorkflowSummary]


class WorkflowExecutionListEvent(BaseEvent):
    type: Literal[EventType.WORKFLOW_EXECUTION_LIST] = EventType.WORKFLOW_EXECUTION_LIST
    request_id: str
    executions: List[WorkflowExecution]


class ScheduleInfo(BaseModel):
    schedule: ScheduleConfig
    active: bool = False
    next_run: Optional[datetime] = None


class ScheduleCreated(BaseEvent):
    type: Literal[EventType.SCHEDULE_CREATED] = EventType.SCHEDULE_CREATED
    request_id: str
    schedule: ScheduleConfig
    next_run: Optional[datetime] = None


class ScheduleUpdated(BaseEvent):
    type: Literal[EventType.SCHEDULE_UPDATED] = EventType.SCHEDULE_UPDATED
    request_id: str
    schedule: ScheduleConfig
    next_run: Optional[datetime] = None


class ScheduleDeleted(BaseEvent):
    type: Literal[EventType.SCHEDULE_DELETED] = EventType.SCHEDULE_DELETED
    request_id: str
    schedule_id: str


class ScheduleListResult(BaseEvent):
    type: Literal[EventType.SCHEDULE_LIST_RESULT] = EventType.SCHEDULE_LIST_RESULT
    request_id: str
    schedules: List[ScheduleInfo]


class HeartbeatAlert(BaseEvent):
    type: Literal[EventType.HEARTBEAT_ALERT] = EventType.HEARTBEAT_ALERT
    schedule_id: str
    results: List[HeartbeatResult]


class HeartbeatConfigured(BaseEvent):
    type: Literal[EventType.HEARTBEAT_CONFIGURED] = EventType.HEARTBEAT_CONFIGURED
    request_id: str
    schedule_id: str
    interval: int
    enabled: bool
    next_run: Optional[datetime] = None


class ThreadCreated(BaseEvent):
    type: Literal[EventType.THREAD_CREATED] = EventType.THREAD_CREATED
    request_id: str
    thread: Thread


class ThreadListResult(BaseEvent):
    type: Literal[EventType.THREAD_LIST_RESULT] = EventType.THREAD_LIST_RESULT
    request_id: str
    threads: List[Thread]


class ThreadUpdated(BaseEvent):
    type: Literal[EventType.THREAD_UPDATED] = EventType.THREAD_UPDATED
    request_id: str
    thread: Thread


class PromptSetResult(BaseEvent):
    type: Literal[EventType.PROMPT_SET_RESULT] = EventType.PROMPT_SET_RESULT
    request_id: str
    prompt_id: int


class PromptListResult(BaseEvent):
    type: Literal[EventType.PROMPT_LIST_RESULT] = EventType.PROMPT_LIST_RESULT
    request_id: str
    prompts: List[GlobalPrompt]


class MemorySearchResultEvent(BaseEvent):
    type: Literal[EventType.MEMORY_SEARCH_RESULT] = EventType.MEMORY_SEARCH_RESULT
    request_id: str
    results: List[MemorySearchResult]
