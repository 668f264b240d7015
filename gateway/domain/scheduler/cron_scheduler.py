"""Cron job runner on asyncio tasks.

Each schedule gets one long-lived task that sleeps until the next
``croniter`` fire time in the schedule's timezone. A fire runs the handler
in its own task so a slow handler never delays the timer; jobs scheduled
with ``protect`` skip a fire while the previous run is still going.
"""

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Mapping, NamedTuple, Optional, Set
from zoneinfo import ZoneInfo

import structlog
from croniter import croniter
from langchain_core.tools import BaseTool

from gateway.domain.models.schedule import HeartbeatResult, ScheduleConfig
from gateway.domain.workflow.engine import ApprovalCallback, WorkflowEngine
from gateway.domain.workflow.registry import WorkflowRegistry
from gateway.infrastructure.persistence.repository import ScheduleRepository
from .active_hours import is_within_active_hours
from .heartbeat import HeartbeatRunner

logger = structlog.get_logger(__name__)

JobHandler = Callable[[], Awaitable[None]]
AlertCallback = Callable[[ScheduleConfig, List[HeartbeatResult]], Awaitable[None]]
RunnerFactory = Callable[[ScheduleConfig], HeartbeatRunner]
ToolsProvider = Callable[[], Mapping[str, BaseTool]]


class ActiveJob(NamedTuple):
    id: str
    next_run: Optional[datetime]
    paused: bool


class ScheduledJob:
    """Timer state for one schedule"""

    def __init__(self, config: ScheduleConfig, handler: JobHandler, protect: bool = False):
        self.config = config
        self.handler = handler
        self.protect = protect
        self.paused = not config.enabled
        self.runs = 0
        self.finished = False
        self.tz = ZoneInfo(config.timezone)
        self.timer: Optional[asyncio.Task] = None
        self.in_flight: Set[asyncio.Task] = set()
        self._cron = croniter(config.cron_expression, datetime.now(self.tz))
        self.next_fire: datetime = self._cron.get_next(datetime)

    @property
    def running(self) -> bool:
        return bool(self.in_flight)

    def advance(self) -> None:
        self.next_fire = self._cron.get_next(datetime)


class CronScheduler:
    """Manage cron jobs: schedule, pause, resume, stop and reload"""

    def __init__(self):
        self.jobs: Dict[str, ScheduledJob] = {}

    def schedule(self, config: ScheduleConfig, handler: JobHandler, protect: bool = False) -> ScheduledJob:
        """Register a job, replacing any job with the same id"""
        if config.id in self.jobs:
            self.stop(config.id)

        job = ScheduledJob(config, handler, protect)
        self.jobs[config.id] = job
        job.timer = asyncio.create_task(self._run_timer(job), name=f"cron-{config.id}")
        logger.info(
            "Scheduled cron job",
            schedule_id=config.id,
            cron_expression=config.cron_expression,
            timezone=config.timezone,
            protect=protect,
            paused=job.paused,
        )
        return job

    def schedule_workflow(
        self,
        config: ScheduleConfig,
        engine: WorkflowEngine,
        definitions: WorkflowRegistry,
        tools: ToolsProvider,
        on_approval_needed: Optional[ApprovalCallback] = None,
    ) -> Optional[ScheduledJob]:
        if not config.workflow_id:
            logger.info("Cannot schedule workflow without a workflow id", schedule_id=config.id)
            return None

        workflow_id = config.workflow_id

        async def run_workflow() -> None:
            definition = definitions.get(workflow_id)
            if definition is None:
                logger.warning("Scheduled workflow not found", schedule_id=config.id, workflow_id=workflow_id)
                return
            logger.info("Cron trigger: executing workflow", schedule_id=config.id, workflow_id=workflow_id)
            await engine.execute(workflow_id, definition, "cron", tools(), on_approval_needed)

        return self.schedule(config, run_workflow)

    def schedule_heartbeat(
        self,
        config: ScheduleConfig,
        runner: HeartbeatRunner,
        on_alert: AlertCallback,
    ) -> ScheduledJob:
        """Heartbeat jobs never overlap: a fire is skipped while one is running"""

        async def run_heartbeat() -> None:
            logger.info("Running heartbeat", schedule_id=config.id)
            results = await runner.run()
            action_items = [r for r in results if r.action_needed]
            if action_items:
                logger.info("Heartbeat items need action", schedule_id=config.id, count=len(action_items))
                await on_alert(config, action_items)
            else:
                logger.info("Heartbeat checks passed", schedule_id=config.id, checks=len(results))

        return self.schedule(config, run_heartbeat, protect=True)

    def trigger(self, schedule_id: str, now: Optional[datetime] = None) -> Optional[asyncio.Task]:
        """Fire a job as its timer would; returns the handler task, or None if skipped"""
        job = self.jobs.get(schedule_id)
        if job is None or job.finished:
            return None
        if job.paused:
            logger.debug("Cron job paused, skipping fire", schedule_id=schedule_id)
            return None
        if job.protect and job.running:
            logger.info("Cron job still running, skipping overlapping fire", schedule_id=schedule_id)
            return None

        active_hours = job.config.active_hours
        if active_hours is not None and not is_within_active_hours(active_hours, now, job.config.timezone):
            logger.info("Cron job skipped: outside active hours", schedule_id=schedule_id)
            return None

        job.runs += 1
        task = asyncio.create_task(self._invoke(job), name=f"cron-run-{schedule_id}")
        job.in_flight.add(task)
        task.add_done_callback(job.in_flight.discard)

        max_runs = job.config.max_runs
        if max_runs is not None and job.runs >= max_runs:
            job.finished = True
            logger.info("Cron job reached max runs", schedule_id=schedule_id, max_runs=max_runs)
        return task

    async def _invoke(self, job: ScheduledJob) -> None:
        try:
            await job.handler()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Cron job error", schedule_id=job.config.id, error=str(e), exc_info=True)

    async def _run_timer(self, job: ScheduledJob) -> None:
        while not job.finished:
            delay = (job.next_fire - datetime.now(job.tz)).total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)
            job.advance()
            self.trigger(job.config.id)

    def pause(self, schedule_id: str) -> bool:
        job = self.jobs.get(schedule_id)
        if job is None:
            return False
        job.paused = True
        logger.info("Paused cron job", schedule_id=schedule_id)
        return True

    def resume(self, schedule_id: str) -> bool:
        job = self.jobs.get(schedule_id)
        if job is None:
            return False
        job.paused = False
        logger.info("Resumed cron job", schedule_id=schedule_id)
        return True

    def stop(self, schedule_id: str) -> bool:
        """Stop and remove a job; a handler run already in flight completes"""
        job = self.jobs.pop(schedule_id, None)
        if job is None:
            return False
        job.finished = True
        if job.timer is not None:
            job.timer.cancel()
        logger.info("Stopped cron job", schedule_id=schedule_id)
        return True

    def stop_all(self) -> None:
        for schedule_id in list(self.jobs):
            self.stop(schedule_id)

    def next_run(self, schedule_id: str) -> Optional[datetime]:
        job = self.jobs.get(schedule_id)
        if job is None or job.finished:
            return None
        return job.next_fire

    def is_active(self, schedule_id: str) -> bool:
        job = self.jobs.get(schedule_id)
        return job is not None and not job.finished and not job.paused

    def list_active(self) -> List[ActiveJob]:
        return [
            ActiveJob(id=schedule_id, next_run=self.next_run(schedule_id), paused=job.paused)
            for schedule_id, job in self.jobs.items()
            if not job.finished
        ]

    async def reload(
        self,
        store: ScheduleRepository,
        engine: WorkflowEngine,
        definitions: WorkflowRegistry,
        tools: ToolsProvider,
        heartbeat_runner: Optional[RunnerFactory] = None,
        on_alert: Optional[AlertCallback] = None,
        on_approval_needed: Optional[ApprovalCallback] = None,
    ) -> int:
        """Stop everything and rebuild jobs from the enabled schedules.

        Schedules with a workflow id run that workflow; every other schedule
        is its own heartbeat job.
        """
        self.stop_all()
        configs = await store.list_enabled()
        for config in configs:
            if config.workflow_id:
                self.schedule_workflow(config, engine, definitions, tools, on_approval_needed)
            elif heartbeat_runner is not None and on_alert is not None:
                self.schedule_heartbeat(config, heartbeat_runner(config), on_alert)
            else:
                logger.info("Heartbeat schedule ignored, no runner configured", schedule_id=config.id)

        logger.info("Reloaded schedules from store", count=len(configs))
        return len(configs)
