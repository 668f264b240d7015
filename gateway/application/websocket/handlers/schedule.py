"""Schedule and heartbeat handlers.

Every change is saved to the schedule repository first and then mirrored
into the live scheduler: the job is stopped and, when enabled, scheduled
again. A schedule without a workflow id is a heartbeat.
"""

import uuid

import structlog

from gateway.application.services import GatewayServices
from gateway.domain.errors import ScheduleNotFoundError
from gateway.domain.models.schedule import ScheduleConfig
from gateway.domain.models.session import utcnow
from ..connection_state import ConnectionState
from ..schema.events import (
    HeartbeatConfigured,
    ScheduleCreated,
    ScheduleDeleted,
    ScheduleInfo,
    ScheduleListResult,
    ScheduleUpdated,
)
from ..schema.messages import HeartbeatConfigure, ScheduleCreate, ScheduleDelete, ScheduleList, ScheduleUpdate
from ..transport import Transport

logger = structlog.get_logger(__name__)


def activate_schedule(services: GatewayServices, config: ScheduleConfig) -> None:
    """(Re)start the job for a saved schedule"""
    services.scheduler.stop(config.id)
    if not config.enabled:
        return
    if config.workflow_id:
        services.scheduler.schedule_workflow(
            config,
            services.engine,
            services.workflows,
            services.workflow_tools,
            services.on_scheduled_approval,
        )
    else:
        services.scheduler.schedule_heartbeat(config, services.heartbeat_runner(config), services.on_heartbeat_alert)


async def handle_schedule_create(
    services: GatewayServices,
    transport: Transport,
    msg: ScheduleCreate,
    conn: ConnectionState,
) -> None:
    if msg.workflow_id:
        services.workflows.require(msg.workflow_id)

    config = ScheduleConfig(
        id=uuid.uuid4().hex,
        name=msg.name,
        cron_expression=msg.cron_expression,
        timezone=msg.timezone or "UTC",
        active_hours=msg.active_hours,
        max_runs=msg.max_runs,
        workflow_id=msg.workflow_id,
    )
    await services.schedules.save(config)
    activate_schedule(services, config)
    logger.info("Schedule created", schedule_id=config.id, workflow_id=config.workflow_id)

    await transport.send(
        ScheduleCreated(request_id=msg.id, schedule=config, next_run=services.scheduler.next_run(config.id))
    )


async def handle_schedule_update(
    services: GatewayServices,
    transport: Transport,
    msg: ScheduleUpdate,
    conn: ConnectionState,
) -> None:
    existing = await services.schedules.get(msg.schedule_id)
    if existing is None:
        raise ScheduleNotFoundError(msg.schedule_id)

    changes = msg.model_dump(exclude_unset=True, exclude={"id", "type", "schedule_id"})
    updated = ScheduleConfig.model_validate({**existing.model_dump(), **changes})
    await services.schedules.save(updated)
    activate_schedule(services, updated)
    logger.info("Schedule updated", schedule_id=updated.id, fields=sorted(changes))

    await transport.send(
        ScheduleUpdated(request_id=msg.id, schedule=updated, next_run=services.scheduler.next_run(updated.id))
    )


async def handle_schedule_delete(
    services: GatewayServices,
    transport: Transport,
    msg: ScheduleDelete,
    conn: ConnectionState,
) -> None:
    stopped = services.scheduler.stop(msg.schedule_id)
    deleted = await services.schedules.delete(msg.schedule_id)
    if not (stopped or deleted):
        raise ScheduleNotFoundError(msg.schedule_id)
    await transport.send(ScheduleDeleted(request_id=msg.id, schedule_id=msg.schedule_id))


async def handle_schedule_list(
    services: GatewayServices,
    transport: Transport,
    msg: ScheduleList,
    conn: ConnectionState,
) -> None:
    schedules = [
        ScheduleInfo(
            schedule=schedule,
            active=services.scheduler.is_active(schedule.id),
            next_run=services.scheduler.next_run(schedule.id),
        )
        for schedule in await services.schedules.list()
    ]
    await transport.send(ScheduleListResult(request_id=msg.id, schedules=schedules))


async def handle_heartbeat_configure(
    services: GatewayServices,
    transport: Transport,
    msg: HeartbeatConfigure,
    conn: ConnectionState,
) -> None:
    """Create or replace the named heartbeat, firing every ``interval`` minutes"""
    schedule_id = f"heartbeat-{msg.name}"
    label = "Heartbeat" if msg.name == "default" else f"Heartbeat {msg.name}"
    existing = await services.schedules.get(schedule_id)

    config = ScheduleConfig(
        id=schedule_id,
        name=f"{label} (every {msg.interval}min)",
        cron_expression=f"*/{msg.interval} * * * *",
        timezone=msg.timezone or "UTC",
        active_hours=msg.active_hours,
        heartbeat_path=msg.heartbeat_path,
        enabled=msg.enabled,
        created_at=existing.created_at if existing is not None else utcnow(),
    )
    await services.schedules.save(config)
    activate_schedule(services, config)
    logger.info("Heartbeat configured", schedule_id=schedule_id, interval=msg.interval, enabled=msg.enabled)

    await transport.send(
        HeartbeatConfigured(
            request_id=msg.id,
            schedule_id=schedule_id,
            interval=msg.interval,
            enabled=msg.enabled,
            next_run=services.scheduler.next_run(schedule_id),
        )
    )
