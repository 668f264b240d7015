"""Repository abstractions for the gateway's durable state."""

from typing import List, Optional, Protocol

from gateway.domain.models.schedule import ScheduleConfig
from gateway.domain.models.session import Message, Session, SessionSummary
from gateway.domain.models.thread import GlobalPrompt, Thread
from gateway.domain.models.usage import UsageRecord, UsageTotals
from gateway.domain.models.workflow import ExecutionStatus, WorkflowExecution


class WorkflowExecutionRepository(Protocol):
    """Protocol for workflow execution persistence backends."""

    async def save(self, execution: WorkflowExecution) -> None:
        """Insert or replace the execution state."""

    async def get(self, execution_id: str) -> Optional[WorkflowExecution]:
        """Retrieve an execution by id."""

    async def list(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
    ) -> List[WorkflowExecution]:
        """Return executions, newest first, optionally filtered."""


class ScheduleRepository(Protocol):
    """Protocol for schedule config persistence backends."""

    async def save(self, schedule: ScheduleConfig) -> None:
        """Insert or replace a schedule."""

    async def get(self, schedule_id: str) -> Optional[ScheduleConfig]:
        """Retrieve a schedule by id."""

    async def delete(self, schedule_id: str) -> bool:
        """Delete a schedule, returning whether it existed."""

    async def list(self) -> List[ScheduleConfig]:
        """Return all schedules."""

    async def list_enabled(self) -> List[ScheduleConfig]:
        """Return schedules with ``enabled`` set."""


class SessionRepository(Protocol):
    """Protocol for session and message persistence backends."""

    async def create(self, session: Session) -> None:
        """Persist a new session."""

    async def get(self, session_id: str) -> Optional[Session]:
        """Retrieve a session with its messages."""

    async def list(self) -> List[SessionSummary]:
        """Return all sessions with message counts."""

    async def add_message(self, session_id: str, message: Message) -> None:
        """Append a message to a session."""

    async def update_model(self, session_id: str, model: str) -> None:
        """Switch the model used by a session."""


class UsageRepository(Protocol):
    """Protocol for usage record persistence backends."""

    async def record(self, record: UsageRecord) -> None:
        """Persist a usage record."""

    async def by_session(self, session_id: str) -> List[UsageRecord]:
        """Return usage records for one session."""

    async def totals(self, session_id: Optional[str] = None) -> UsageTotals:
        """Aggregate usage grouped by model."""


class ThreadRepository(Protocol):
    """Protocol for conversation thread persistence backends."""

    async def save(self, thread: Thread) -> None:
        """Insert or replace a thread."""

    async def get(self, thread_id: str) -> Optional[Thread]:
        """Retrieve a thread by id."""

    async def list(self, include_archived: bool = False) -> List[Thread]:
        """Return threads, most recently active first."""


class PromptRepository(Protocol):
    """Protocol for global system prompt persistence backends."""

    async def add(self, name: str, content: str, priority: int = 0) -> GlobalPrompt:
        """Store a new active prompt and return it with its assigned id."""

    async def list(self, active_only: bool = False) -> List[GlobalPrompt]:
        """Return prompts, highest priority first."""
