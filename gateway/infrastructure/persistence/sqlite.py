"""SQLite implementations of the gateway repositories."""

import asyncio
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional, Union

from gateway.domain.models.schedule import ScheduleConfig
from gateway.domain.models.session import Message, Session, SessionSummary
from gateway.domain.models.thread import GlobalPrompt, Thread
from gateway.domain.models.usage import (
    GrandTotal,
    ModelUsageTotals,
    UsageRecord,
    UsageTotals,
)
from gateway.domain.models.workflow import ExecutionStatus, WorkflowExecution


class SQLiteDatabase:
    """Shared SQLite connection with blocking helpers run off the event loop."""

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        with self._lock:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS workflow_executions (
                    id TEXT PRIMARY KEY,
                    workflow_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    data TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS schedules (
                    id TEXT PRIMARY KEY,
                    enabled INTEGER NOT NULL,
                    data TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS sessions (
                    id TEXT PRIMARY KEY,
                    session_key TEXT NOT NULL,
                    model TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT NOT NULL,
                    role TEXT NOT NULL,
                    content TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    token_count INTEGER
                );
                CREATE TABLE IF NOT EXISTS usage_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT NOT NULL,
                    model TEXT NOT NULL,
                    input_tokens INTEGER NOT NULL,
                    output_tokens INTEGER NOT NULL,
                    total_tokens INTEGER NOT NULL,
                    cost REAL NOT NULL,
                    timestamp TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS threads (
                    id TEXT PRIMARY KEY,
                    archived INTEGER NOT NULL,
                    last_active_at TEXT NOT NULL,
                    data TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS global_prompts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    content TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    priority INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );
                """
            )
            self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.rowcount

    def _insert(self, query: str, *params: Any) -> int:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.lastrowid

    def _fetchone(self, query: str, *params: Any) -> Optional[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> List[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    async def execute(self, query: str, *params: Any) -> int:
        return await asyncio.to_thread(self._execute, query, *params)

    async def insert(self, query: str, *params: Any) -> int:
        """Run an INSERT and return the new row id"""
        return await asyncio.to_thread(self._insert, query, *params)

    async def fetchone(self, query: str, *params: Any) -> Optional[sqlite3.Row]:
        return await asyncio.to_thread(self._fetchone, query, *params)

    async def fetchall(self, query: str, *params: Any) -> List[sqlite3.Row]:
        return await asyncio.to_thread(self._fetchall, query, *params)

    def close(self) -> None:
        with self._lock:
            self._conn.close()


class SQLiteWorkflowExecutionRepository:
    """Persist workflow executions as JSON documents."""

    def __init__(self, db: SQLiteDatabase):
        self._db = db

    async def save(self, execution: WorkflowExecution) -> None:
        await self._db.execute(
            "INSERT OR REPLACE INTO workflow_executions (id, workflow_id, status, started_at, data) "
            "VALUES (?, ?, ?, ?, ?)",
            execution.id,
            execution.workflow_id,
            execution.status,
            execution.started_at.isoformat(),
            execution.model_dump_json(),
        )

    async def get(self, execution_id: str) -> Optional[WorkflowExecution]:
        row = await self._db.fetchone(
            "SELECT data FROM workflow_executions WHERE id = ?", execution_id
        )
        return WorkflowExecution.model_validate_json(row["data"]) if row else None

    async def list(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
    ) -> List[WorkflowExecution]:
        query = "SELECT data FROM workflow_executions WHERE 1 = 1"
        params: List[Any] = []
        if workflow_id is not None:
            query += " AND workflow_id = ?"
            params.append(workflow_id)
        if status is not None:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY started_at DESC"
        rows = await self._db.fetchall(query, *params)
        return [WorkflowExecution.model_validate_json(r["data"]) for r in rows]


class SQLiteScheduleRepository:
    def __init__(self, db: SQLiteDatabase):
        self._db = db

    async def save(self, schedule: ScheduleConfig) -> None:
        await self._db.execute(
            "INSERT OR REPLACE INTO schedules (id, enabled, data) VALUES (?, ?, ?)",
            schedule.id,
            int(schedule.enabled),
            schedule.model_dump_json(),
        )

    async def get(self, schedule_id: str) -> Optional[ScheduleConfig]:
        row = await self._db.fetchone("SELECT data FROM schedules WHERE id = ?", schedule_id)
        return ScheduleConfig.model_validate_json(row["data"]) if row else None

    async def delete(self, schedule_id: str) -> bool:
        deleted = await self._db.execute("DELETE FROM schedules WHERE id = ?", schedule_id)
        return deleted > 0

    async def list(self) -> List[ScheduleConfig]:
        rows = await self._db.fetchall("SELECT data FROM schedules")
        return [ScheduleConfig.model_validate_json(r["data"]) for r in rows]

    async def list_enabled(self) -> List[ScheduleConfig]:
        rows = await self._db.fetchall("SELECT data FROM schedules WHERE enabled = 1")
        return [ScheduleConfig.model_validate_json(r["data"]) for r in rows]


class SQLiteSessionRepository:
    def __init__(self, db: SQLiteDatabase):
        self._db = db

    async def create(self, session: Session) -> None:
        await self._db.execute(
            "INSERT INTO sessions (id, session_key, model, created_at) VALUES (?, ?, ?, ?)",
            session.id,
            session.session_key,
            session.model,
            session.created_at.isoformat(),
        )
        for message in session.messages:
            await self.add_message(session.id, message)

    async def get(self, session_id: str) -> Optional[Session]:
        row = await self._db.fetchone("SELECT * FROM sessions WHERE id = ?", session_id)
        if not row:
            return None
        message_rows = await self._db.fetchall(
            "SELECT role, content, created_at, token_count FROM messages "
            "WHERE session_id = ? ORDER BY id",
            session_id,
        )
        return Session(
            id=row["id"],
            session_key=row["session_key"],
            model=row["model"],
            created_at=datetime.fromisoformat(row["created_at"]),
            messages=[
                Message(
                    role=m["role"],
                    content=m["content"],
                    created_at=datetime.fromisoformat(m["created_at"]),
                    token_count=m["token_count"],
                )
                for m in message_rows
            ],
        )

    async def list(self) -> List[SessionSummary]:
        rows = await self._db.fetchall(
            """
            SELECT s.id, s.session_key, s.model, s.created_at, COUNT(m.id) AS message_count
            FROM sessions s LEFT JOIN messages m ON m.session_id = s.id
            GROUP BY s.id
            ORDER BY s.created_at
            """
        )
        return [
            SessionSummary(
                session_id=r["id"],
                session_key=r["session_key"],
                model=r["model"],
                created_at=datetime.fromisoformat(r["created_at"]),
                message_count=r["message_count"],
            )
            for r in rows
        ]

    async def add_message(self, session_id: str, message: Message) -> None:
        await self._db.execute(
            "INSERT INTO messages (session_id, role, content, created_at, token_count) "
            "VALUES (?, ?, ?, ?, ?)",
            session_id,
            message.role,
            message.content,
            message.created_at.isoformat(),
            message.token_count,
        )

    async def update_model(self, session_id: str, model: str) -> None:
        await self._db.execute("UPDATE sessions SET model = ? WHERE id = ?", model, session_id)


class SQLiteUsageRepository:
    def __init__(self, db: SQLiteDatabase):
        self._db = db

    async def record(self, record: UsageRecord) -> None:
        await self._db.execute(
            "INSERT INTO usage_records "
            "(session_id, model, input_tokens, output_tokens, total_tokens, cost, timestamp) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            record.session_id,
            record.model,
            record.input_tokens,
            record.output_tokens,
            record.total_tokens,
            record.cost,
            record.timestamp.isoformat(),
        )

    async def by_session(self, session_id: str) -> List[UsageRecord]:
        rows = await self._db.fetchall(
            "SELECT * FROM usage_records WHERE session_id = ? ORDER BY id", session_id
        )
        return [
            UsageRecord(
                session_id=r["session_id"],
                model=r["model"],
                input_tokens=r["input_tokens"],
                output_tokens=r["output_tokens"],
                total_tokens=r["total_tokens"],
                cost=r["cost"],
                timestamp=datetime.fromisoformat(r["timestamp"]),
            )
            for r in rows
        ]

    async def totals(self, session_id: Optional[str] = None) -> UsageTotals:
        query = """
            SELECT model,
                   SUM(input_tokens) AS input_tokens,
                   SUM(output_tokens) AS output_tokens,
                   SUM(total_tokens) AS total_tokens,
                   SUM(cost) AS total_cost,
                   COUNT(*) AS request_count
            FROM usage_records
        """
        params: List[Any] = []
        if session_id is not None:
            query += " WHERE session_id = ?"
            params.append(session_id)
        query += " GROUP BY model"
        rows = await self._db.fetchall(query, *params)

        totals = UsageTotals(grand_total=GrandTotal())
        for r in rows:
            totals.per_model[r["model"]] = ModelUsageTotals(
                input_tokens=r["input_tokens"],
                output_tokens=r["output_tokens"],
                total_tokens=r["total_tokens"],
                total_cost=r["total_cost"],
                request_count=r["request_count"],
            )
            totals.grand_total.total_cost += r["total_cost"]
            totals.grand_total.total_tokens += r["total_tokens"]
            totals.grand_total.request_count += r["request_count"]
        return totals


class SQLiteThreadRepository:
    def __init__(self, db: SQLiteDatabase):
        self._db = db

    async def save(self, thread: Thread) -> None:
        await self._db.execute(
            "INSERT OR REPLACE INTO threads (id, archived, last_active_at, data) VALUES (?, ?, ?, ?)",
            thread.id,
            int(thread.archived),
            thread.last_active_at.isoformat(),
            thread.model_dump_json(),
        )

    async def get(self, thread_id: str) -> Optional[Thread]:
        row = await self._db.fetchone("SELECT data FROM threads WHERE id = ?", thread_id)
        return Thread.model_validate_json(row["data"]) if row else None

    async def list(self, include_archived: bool = False) -> List[Thread]:
        query = "SELECT data FROM threads"
        if not include_archived:
            query += " WHERE archived = 0"
        rows = await self._db.fetchall(query + " ORDER BY last_active_at DESC")
        return [Thread.model_validate_json(r["data"]) for r in rows]


class SQLitePromptRepository:
    def __init__(self, db: SQLiteDatabase):
        self._db = db

    async def add(self, name: str, content: str, priority: int = 0) -> GlobalPrompt:
        prompt = GlobalPrompt(id=0, name=name, content=content, priority=priority)
        prompt.id = await self._db.insert(
            "INSERT INTO global_prompts (name, content, is_active, priority, created_at) VALUES (?, ?, ?, ?, ?)",
            prompt.name,
            prompt.content,
            int(prompt.is_active),
            prompt.priority,
            prompt.created_at.isoformat(),
        )
        return prompt

    async def list(self, active_only: bool = False) -> List[GlobalPrompt]:
        query = "SELECT * FROM global_prompts"
        if active_only:
            query += " WHERE is_active = 1"
        rows = await self._db.fetchall(query + " ORDER BY priority DESC, id")
        return [
            GlobalPrompt(
                id=r["id"],
                name=r["name"],
                content=r["content"],
                is_active=bool(r["is_active"]),
                priority=r["priority"],
                created_at=datetime.fromisoformat(r["created_at"]),
            )
            for r in rows
        ]
