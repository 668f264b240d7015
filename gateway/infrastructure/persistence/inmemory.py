"""In-memory implementations of the gateway repositories."""

from typing import Dict, List, Optional

from gateway.domain.models.schedule import ScheduleConfig
from gateway.domain.models.session import Message, Session, SessionSummary
from gateway.domain.models.thread import GlobalPrompt, Thread
from gateway.domain.models.usage import UsageRecord, UsageTotals
from gateway.domain.models.workflow import ExecutionStatus, WorkflowExecution
from .aggregate import aggregate_usage


class InMemoryWorkflowExecutionRepository:
    """Store workflow executions in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._executions: Dict[str, WorkflowExecution] = {}

    async def save(self, execution: WorkflowExecution) -> None:
        # Copy so later in-place mutation by the engine needs another save
        self._executions[execution.id] = execution.model_copy(deep=True)

    async def get(self, execution_id: str) -> Optional[WorkflowExecution]:
        execution = self._executions.get(execution_id)
        return execution.model_copy(deep=True) if execution else None

    async def list(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
    ) -> List[WorkflowExecution]:
        executions = [
            e.model_copy(deep=True)
            for e in self._executions.values()
            if (workflow_id is None or e.workflow_id == workflow_id)
            and (status is None or e.status == status)
        ]
        return sorted(executions, key=lambda e: e.started_at, reverse=True)


class InMemoryScheduleRepository:
    def __init__(self) -> None:
        self._schedules: Dict[str, ScheduleConfig] = {}

    async def save(self, schedule: ScheduleConfig) -> None:
        self._schedules[schedule.id] = schedule.model_copy(deep=True)

    async def get(self, schedule_id: str) -> Optional[ScheduleConfig]:
        schedule = self._schedules.get(schedule_id)
        return schedule.model_copy(deep=True) if schedule else None

    async def delete(self, schedule_id: str) -> bool:
        return self._schedules.pop(schedule_id, None) is not None

    async def list(self) -> List[ScheduleConfig]:
        return [s.model_copy(deep=True) for s in self._schedules.values()]

    async def list_enabled(self) -> List[ScheduleConfig]:
        return [s.model_copy(deep=True) for s in self._schedules.values() if s.enabled]


class InMemorySessionRepository:
    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}

    async def create(self, session: Session) -> None:
        self._sessions[session.id] = session.model_copy(deep=True)

    async def get(self, session_id: str) -> Optional[Session]:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    async def list(self) -> List[SessionSummary]:
        return [
            SessionSummary(
                session_id=s.id,
                session_key=s.session_key,
                model=s.model,
                created_at=s.created_at,
                message_count=len(s.messages),
            )
            for s in self._sessions.values()
        ]

    async def add_message(self, session_id: str, message: Message) -> None:
        session = self._sessions.get(session_id)
        if session:
            session.messages.append(message)

    async def update_model(self, session_id: str, model: str) -> None:
        session = self._sessions.get(session_id)
        if session:
            session.model = model


class InMemoryUsageRepository:
    def __init__(self) -> None:
        self._records: List[UsageRecord] = []

    async def record(self, record: UsageRecord) -> None:
        self._records.append(record)

    async def by_session(self, session_id: str) -> List[UsageRecord]:
        return [r for r in self._records if r.session_id == session_id]

    async def totals(self, session_id: Optional[str] = None) -> UsageTotals:
        records = self._records if session_id is None else await self.by_session(session_id)
        return aggregate_usage(records)


class InMemoryThreadRepository:
    def __init__(self) -> None:
        self._threads: Dict[str, Thread] = {}

    async def save(self, thread: Thread) -> None:
        self._threads[thread.id] = thread.model_copy(deep=True)

    async def get(self, thread_id: str) -> Optional[Thread]:
        thread = self._threads.get(thread_id)
        return thread.model_copy(deep=True) if thread else None

    async def list(self, include_archived: bool = False) -> List[Thread]:
        threads = [
            t.model_copy(deep=True)
            for t in self._threads.values()
            if include_archived or not t.archived
        ]
        return sorted(threads, key=lambda t: t.last_active_at, reverse=True)


class InMemoryPromptRepository:
    def __init__(self) -> None:
        self._prompts: List[GlobalPrompt] = []

    async def add(self, name: str, content: str, priority: int = 0) -> GlobalPrompt:
        prompt = GlobalPrompt(id=len(self._prompts) + 1, name=name, content=content, priority=priority)
        self._prompts.append(prompt)
        return prompt.model_copy()

    async def list(self, active_only: bool = False) -> List[GlobalPrompt]:
        prompts = [p.model_copy() for p in self._prompts if p.is_active or not active_only]
        return sorted(prompts, key=lambda p: (-p.priority, p.id))
