"""Explicitly constructed service container shared by the websocket layer.

One ``GatewayServices`` instance owns the repositories, managers, engine and
scheduler for the process; handlers receive it instead of reaching for
module-level singletons.
"""

import asyncio
from pathlib import Path
from typing import Any, Coroutine, Dict, List, Optional, Set

import structlog
from langchain_core.tools import BaseTool

from gateway.config import GatewayConfig
from gateway.domain.agent.approval_gate import ApprovalPolicy
from gateway.domain.context.assembler import ContextAssembler
from gateway.domain.context.pressure import MemoryPressureDetector
from gateway.domain.context.threads import ThreadManager
from gateway.domain.llm.client import ModelClient
from gateway.domain.llm.registry import ProviderRegistry
from gateway.domain.memory.memory_manager import MemoryManager
from gateway.domain.models.schedule import HeartbeatResult, ScheduleConfig
from gateway.domain.models.workflow import StepDefinition, WorkflowExecution
from gateway.domain.scheduler.cron_scheduler import CronScheduler
from gateway.domain.scheduler.heartbeat import HeartbeatRunner
from gateway.domain.session.session_manager import SessionManager
from gateway.domain.tool.tool_registry import build_tool_registry
from gateway.domain.usage.tracker import UsageTracker
from gateway.domain.workflow.engine import WorkflowEngine
from gateway.domain.workflow.registry import WorkflowRegistry
from gateway.infrastructure.persistence import Repositories, get_repositories
from .websocket.connection_manager import ConnectionManager
from .websocket.schema.events import HeartbeatAlert, WorkflowApprovalRequest, WorkflowStatusEvent
from .websocket.transport import BroadcastTransport

logger = structlog.get_logger(__name__)

HEARTBEAT_FILE = "HEARTBEAT.md"
HEARTBEAT_TOOLS = ("read_file", "list_files", "memory_read")


class GatewayServices:
    """Everything a connection handler needs, built once per process"""

    def __init__(
        self,
        config: GatewayConfig,
        repositories: Optional[Repositories] = None,
        providers: Optional[ProviderRegistry] = None,
    ):
        self.config = config
        self.repositories = repositories or get_repositories(config.database_url)
        self.memory = MemoryManager(config.memory_dir, config.agent_id)
        self.sessions = SessionManager(self.repositories.sessions, config.default_model)
        self.usage = UsageTracker(self.repositories.usage)
        self.providers = providers or ProviderRegistry(config.providers)
        self.threads = ThreadManager(self.repositories.threads, self.repositories.prompts)
        self.assembler = ContextAssembler(self.memory, config.system_prompt, self.threads)
        self.pressure = MemoryPressureDetector(config.max_context_tokens, config.pressure_threshold)
        self.workflows = WorkflowRegistry(config.workflow_dirs)
        self.engine = WorkflowEngine(self.repositories.executions, model_client=self.default_client)
        self.scheduler = CronScheduler()
        self.connections = ConnectionManager()
        self._workflow_tools: Optional[Dict[str, BaseTool]] = None
        self.tasks: Set[asyncio.Task] = set()

    @property
    def schedules(self):
        return self.repositories.schedules

    def default_client(self) -> ModelClient:
        return self.providers.get_client(self.config.default_model)

    def build_tools(self, approval_policy: Optional[ApprovalPolicy] = None) -> Dict[str, BaseTool]:
        return build_tool_registry(self.config, self.memory, approval_policy)

    def workflow_tools(self) -> Dict[str, BaseTool]:
        """Tools for workflow steps; step-level approval replaces the per-call gate"""
        if self._workflow_tools is None:
            self._workflow_tools = self.build_tools()
        return self._workflow_tools

    def heartbeat_tools(self) -> Dict[str, BaseTool]:
        tools = self.workflow_tools()
        return {name: tools[name] for name in HEARTBEAT_TOOLS if name in tools}

    def heartbeat_path(self, schedule: ScheduleConfig) -> Path:
        if schedule.heartbeat_path:
            return Path(schedule.heartbeat_path).expanduser()
        return self.memory.root / HEARTBEAT_FILE

    def heartbeat_runner(self, schedule: ScheduleConfig) -> HeartbeatRunner:
        return HeartbeatRunner(self.heartbeat_path(schedule), self.default_client, self.heartbeat_tools())

    async def on_heartbeat_alert(self, schedule: ScheduleConfig, results: List[HeartbeatResult]) -> None:
        delivered = await BroadcastTransport(self.connections).send(
            HeartbeatAlert(schedule_id=schedule.id, results=results)
        )
        if not delivered:
            logger.warning("Heartbeat alert had no connected client", schedule_id=schedule.id, items=len(results))

    async def on_scheduled_approval(self, execution: WorkflowExecution, step: StepDefinition) -> None:
        """A cron-fired workflow paused: every connected client may approve it"""
        transport = BroadcastTransport(self.connections)
        await transport.send(WorkflowStatusEvent.from_execution(execution))
        await transport.send(
            WorkflowApprovalRequest(
                execution_id=execution.id,
                workflow_id=execution.workflow_id,
                step_id=step.id,
                action=step.action,
                tool=step.tool,
                args=step.args,
            )
        )

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run work that must outlive the connection that asked for it"""
        task = asyncio.create_task(coro)
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task

    async def reload_schedules(self) -> int:
        return await self.scheduler.reload(
            self.schedules,
            self.engine,
            self.workflows,
            self.workflow_tools,
            heartbeat_runner=self.heartbeat_runner,
            on_alert=self.on_heartbeat_alert,
            on_approval_needed=self.on_scheduled_approval,
        )

    async def start(self) -> None:
        count = self.workflows.reload()
        scheduled = await self.reload_schedules()
        logger.info("Gateway services started", workflows=count, schedules=scheduled)

    async def shutdown(self) -> None:
        self.scheduler.stop_all()
        tasks = list(self.tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for connection_id in self.connections.get_active_connections():
            await self.connections.disconnect(connection_id, close_socket=True)
        logger.info("Gateway services stopped")
