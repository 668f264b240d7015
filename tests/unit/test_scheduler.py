import asyncio
from datetime import datetime

import pytest
import pytest_asyncio
from pydantic import ValidationError

from gateway.domain.models.schedule import ActiveHours, HeartbeatResult, ScheduleConfig
from gateway.domain.scheduler.active_hours import is_within_active_hours
from gateway.domain.scheduler.cron_scheduler import CronScheduler

YEARLY = "0 0 1 1 *"


def _config(**overrides):
    values = {"id": "job", "name": "Job", "cron_expression": YEARLY}
    values.update(overrides)
    return ScheduleConfig(**values)


@pytest_asyncio.fixture
async def scheduler():
    scheduler = CronScheduler()
    yield scheduler
    scheduler.stop_all()


def test_daytime_window():
    hours = ActiveHours(start="09:00", end="17:00")
    assert is_within_active_hours(hours, datetime(2024, 5, 6, 9, 0))
    assert is_within_active_hours(hours, datetime(2024, 5, 6, 16, 59))
    assert not is_within_active_hours(hours, datetime(2024, 5, 6, 17, 0))
    assert not is_within_active_hours(hours, datetime(2024, 5, 6, 8, 59))


def test_overnight_window():
    hours = ActiveHours(start="22:00", end="06:00")
    assert is_within_active_hours(hours, datetime(2024, 5, 6, 23, 30))
    assert is_within_active_hours(hours, datetime(2024, 5, 6, 5, 59))
    assert not is_within_active_hours(hours, datetime(2024, 5, 6, 12, 0))


def test_days_of_week_filter():
    hours = ActiveHours.model_validate({"start": "00:00", "end": "23:59", "daysOfWeek": [1, 2, 3, 4, 5]})
    # 2024-05-06 is a Monday, 2024-05-11 a Saturday
    assert is_within_active_hours(hours, datetime(2024, 5, 6, 12, 0))
    assert not is_within_active_hours(hours, datetime(2024, 5, 11, 12, 0))


def test_schedule_validation():
    with pytest.raises(ValidationError):
        _config(cron_expression="not a cron")
    with pytest.raises(ValidationError):
        _config(timezone="Mars/Olympus")
    with pytest.raises(ValidationError):
        ActiveHours(start="25:00", end="06:00")
    assert _config().is_heartbeat


@pytest.mark.asyncio
async def test_trigger_runs_handler(scheduler):
    runs = []

    async def handler():
        runs.append(1)

    scheduler.schedule(_config(), handler)
    task = scheduler.trigger("job")
    await task

    assert runs == [1]
    assert scheduler.jobs["job"].runs == 1
    assert scheduler.next_run("job") is not None


@pytest.mark.asyncio
async def test_max_runs_finishes_job(scheduler):
    async def handler():
        pass

    scheduler.schedule(_config(max_runs=2), handler)
    await scheduler.trigger("job")
    await scheduler.trigger("job")

    assert scheduler.trigger("job") is None
    assert scheduler.next_run("job") is None
    assert not scheduler.is_active("job")
    assert scheduler.list_active() == []


@pytest.mark.asyncio
async def test_protected_job_skips_overlapping_fire(scheduler):
    release = asyncio.Event()

    async def handler():
        await release.wait()

    scheduler.schedule(_config(), handler, protect=True)
    first = scheduler.trigger("job")
    await asyncio.sleep(0)

    assert scheduler.trigger("job") is None
    release.set()
    await first
    assert scheduler.trigger("job") is not None


@pytest.mark.asyncio
async def test_paused_job_does_not_fire(scheduler):
    async def handler():
        pass

    scheduler.schedule(_config(), handler)
    scheduler.pause("job")
    assert scheduler.trigger("job") is None
    assert not scheduler.is_active("job")

    scheduler.resume("job")
    assert scheduler.trigger("job") is not None


@pytest.mark.asyncio
async def test_active_hours_gate_fires(scheduler):
    async def handler():
        pass

    config = _config(active_hours=ActiveHours(start="09:00", end="17:00"))
    scheduler.schedule(config, handler)

    assert scheduler.trigger("job", now=datetime(2024, 5, 6, 20, 0)) is None
    assert scheduler.trigger("job", now=datetime(2024, 5, 6, 10, 0)) is not None
    assert scheduler.jobs["job"].runs == 1


@pytest.mark.asyncio
async def test_handler_errors_are_contained(scheduler):
    async def handler():
        raise RuntimeError("boom")

    scheduler.schedule(_config(), handler)
    await scheduler.trigger("job")
    assert scheduler.is_active("job")


@pytest.mark.asyncio
async def test_stop_and_replace(scheduler):
    async def handler():
        pass

    scheduler.schedule(_config(), handler)
    scheduler.schedule(_config(name="Replaced"), handler)
    assert [job.id for job in scheduler.list_active()] == ["job"]
    assert scheduler.jobs["job"].config.name == "Replaced"

    assert scheduler.stop("job") is True
    assert scheduler.stop("job") is False
    assert scheduler.trigger("job") is None


@pytest.mark.asyncio
async def test_heartbeat_job_alerts_only_on_action_items(scheduler):
    class Runner:
        def __init__(self, results):
            self.results = results

        async def run(self):
            return self.results

    alerts = []

    async def on_alert(config, items):
        alerts.append((config.id, [item.check for item in items]))

    results = [
        HeartbeatResult(check="disk", action_needed=True, details="92% full"),
        HeartbeatResult(check="deploys", action_needed=False),
    ]
    scheduler.schedule_heartbeat(_config(id="hb"), Runner(results), on_alert)
    await scheduler.trigger("hb")
    assert alerts == [("hb", ["disk"])]

    scheduler.schedule_heartbeat(_config(id="quiet"), Runner(results[1:]), on_alert)
    await scheduler.trigger("quiet")
    assert len(alerts) == 1
