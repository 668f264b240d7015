from typing import Any, Coroutine, Dict, NamedTuple, Optional, Set
import asyncio
import structlog
from langchain_core.tools import BaseTool

from gateway.domain.agent.approval_gate import ApprovalPolicy
from gateway.domain.context.assembler import AssembledContext
from gateway.domain.routing.router import RoutingDecision
from .schema.events import RoutingInfo

logger = structlog.get_logger(__name__)


class PendingApproval:
    """A tool call suspended until the client approves or denies it"""

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        self.future: asyncio.Future = asyncio.get_running_loop().create_future()

    def resolve(self, approved: bool) -> None:
        if not self.future.done():
            self.future.set_result(approved)


class PendingRouting(NamedTuple):
    request_id: str
    session_id: str
    content: str
    decision: RoutingDecision
    thread_id: Optional[str] = None


class PendingPreflight(NamedTuple):
    request_id: str
    session_id: str
    model: str
    content: str
    context: AssembledContext
    routing: Optional[RoutingInfo]


class PendingWorkflowApproval(NamedTuple):
    execution_id: str
    workflow_id: str
    step_id: str


class ConnectionState:
    """Everything owned by one live client connection"""

    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        self.session_id: Optional[str] = None
        self.streaming = False
        self.stream_request_id: Optional[str] = None
        self.pending_routing: Optional[PendingRouting] = None
        self.pending_approvals: Dict[str, PendingApproval] = {}
        self.tools: Optional[Dict[str, BaseTool]] = None
        self.approval_policy: Optional[ApprovalPolicy] = None
        self.pending_preflight: Optional[PendingPreflight] = None
        self.pending_workflow_approvals: Dict[str, PendingWorkflowApproval] = {}
        self.tasks: Set[asyncio.Task] = set()
        self.closed = False

    def begin_stream(self, request_id: str) -> None:
        self.streaming = True
        self.stream_request_id = request_id

    def end_stream(self) -> None:
        self.streaming = False
        self.stream_request_id = None

    async def wait_for_approval(self, tool_call_id: str, tool_name: str, timeout: float) -> bool:
        """Block this turn until the client answers; a timeout counts as denial"""
        pending = PendingApproval(tool_name)
        self.pending_approvals[tool_call_id] = pending
        try:
            return await asyncio.wait_for(asyncio.shield(pending.future), timeout)
        except asyncio.TimeoutError:
            logger.warning("Tool approval timed out, auto-denying", tool_call_id=tool_call_id, tool=tool_name)
            return False
        finally:
            self.pending_approvals.pop(tool_call_id, None)

    def resolve_approval(self, tool_call_id: str, approved: bool) -> Optional[PendingApproval]:
        pending = self.pending_approvals.get(tool_call_id)
        if pending is not None:
            pending.resolve(approved)
        return pending

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run a turn in the background so the receive loop stays responsive"""
        task = asyncio.create_task(coro)
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task

    def close(self) -> None:
        """Deny every pending approval and cancel in-flight work"""
        self.closed = True
        for pending in list(self.pending_approvals.values()):
            pending.resolve(False)
        self.pending_approvals.clear()
        self.pending_workflow_approvals.clear()
        self.pending_preflight = None
        self.pending_routing = None
        for task in list(self.tasks):
            task.cancel()
