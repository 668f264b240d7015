"""Persistence layer for gateway sessions, usage, schedules, workflows and prompts."""

import os
from typing import NamedTuple, Optional

from .inmemory import (
    InMemoryPromptRepository,
    InMemoryScheduleRepository,
    InMemorySessionRepository,
    InMemoryThreadRepository,
    InMemoryUsageRepository,
    InMemoryWorkflowExecutionRepository,
)
from .repository import (
    PromptRepository,
    ScheduleRepository,
    SessionRepository,
    ThreadRepository,
    UsageRepository,
    WorkflowExecutionRepository,
)
from .sqlite import (
    SQLiteDatabase,
    SQLitePromptRepository,
    SQLiteScheduleRepository,
    SQLiteSessionRepository,
    SQLiteThreadRepository,
    SQLiteUsageRepository,
    SQLiteWorkflowExecutionRepository,
)


class Repositories(NamedTuple):
    executions: WorkflowExecutionRepository
    schedules: ScheduleRepository
    sessions: SessionRepository
    usage: UsageRepository
    threads: ThreadRepository
    prompts: PromptRepository


def get_repositories(database_url: Optional[str] = None) -> Repositories:
    """Factory function to obtain the repository set.

    The backend is selected based on ``database_url`` which can be provided
    explicitly or via ``GATEWAY_DATABASE_URL``. When no database is
    configured, in-memory repositories are returned.
    """

    database_url = database_url or os.getenv("GATEWAY_DATABASE_URL")

    if not database_url:
        return Repositories(
            executions=InMemoryWorkflowExecutionRepository(),
            schedules=InMemoryScheduleRepository(),
            sessions=InMemorySessionRepository(),
            usage=InMemoryUsageRepository(),
            threads=InMemoryThreadRepository(),
            prompts=InMemoryPromptRepository(),
        )

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        db = SQLiteDatabase(os.path.expanduser(path))
        return Repositories(
            executions=SQLiteWorkflowExecutionRepository(db),
            schedules=SQLiteScheduleRepository(db),
            sessions=SQLiteSessionRepository(db),
            usage=SQLiteUsageRepository(db),
            threads=SQLiteThreadRepository(db),
            prompts=SQLitePromptRepository(db),
        )

    raise ValueError(f"Unsupported database backend: {database_url}")


__all__ = [
    "PromptRepository",
    "Repositories",
    "ScheduleRepository",
    "SessionRepository",
    "ThreadRepository",
    "UsageRepository",
    "WorkflowExecutionRepository",
    "get_repositories",
]
