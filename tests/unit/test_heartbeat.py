import pytest
from langchain_core.tools import StructuredTool

from gateway.domain.errors import LLMError
from gateway.domain.scheduler.heartbeat import NOT_EVALUATED, HeartbeatRunner, parse_heartbeat
from tests.fakes import FakeModelClient, text_turn, tool_turn

HEARTBEAT = """---
interval: 15
timezone: Europe/Berlin
activeHours:
  start: "09:00"
  end: "17:00"
---
# Checks

- [ ] Disk usage is below 90%
- [x] No failed deploys
Free text is ignored
"""


def test_parse_front_matter_and_items():
    heartbeat = parse_heartbeat(HEARTBEAT)
    assert heartbeat.config.interval == 15
    assert heartbeat.config.timezone == "Europe/Berlin"
    assert heartbeat.config.active_hours.start == "09:00"
    assert heartbeat.checks == ["Disk usage is below 90%", "No failed deploys"]


def test_parse_without_front_matter():
    heartbeat = parse_heartbeat("- [ ] Only item\n")
    assert heartbeat.config.interval == 30
    assert heartbeat.checks == ["Only item"]


@pytest.fixture
def heartbeat_file(tmp_path):
    path = tmp_path / "HEARTBEAT.md"
    path.write_text(HEARTBEAT)
    return path


@pytest.mark.asyncio
async def test_runner_parses_verdicts(heartbeat_file):
    client = FakeModelClient(
        turns=[
            text_turn('```json\n{"actionNeeded": true, "details": "Disk at 92%"}\n```'),
            text_turn("Everything fine, no JSON here"),
        ]
    )
    results = await HeartbeatRunner(heartbeat_file, lambda: client).run()

    assert [r.check for r in results] == ["Disk usage is below 90%", "No failed deploys"]
    assert results[0].action_needed is True
    assert results[0].details == "Disk at 92%"
    assert results[1].action_needed is False
    assert results[1].details == NOT_EVALUATED


@pytest.mark.asyncio
async def test_runner_feeds_tool_results_back(heartbeat_file):
    paths = []

    async def read_file(path: str) -> str:
        paths.append(path)
        return "usage: 40%"

    tool = StructuredTool.from_function(coroutine=read_file, name="read_file", description="Read a file")
    client = FakeModelClient(
        turns=[
            tool_turn("read_file", {"path": "/var/log/disk"}),
            text_turn('{"actionNeeded": false, "details": "40%"}'),
            text_turn('{"actionNeeded": false}'),
        ]
    )
    results = await HeartbeatRunner(heartbeat_file, lambda: client, {"read_file": tool}).run()

    assert paths == ["/var/log/disk"]
    assert results[0].details == "40%"
    second_call = client.stream_calls[1]["messages"]
    assert second_call[-1].content == "usage: 40%"
    assert second_call[-1].tool_call_id == "call-1"


@pytest.mark.asyncio
async def test_model_failure_is_not_evaluated(heartbeat_file):
    client = FakeModelClient(turns=[LLMError("provider down"), text_turn('{"actionNeeded": true}')])
    results = await HeartbeatRunner(heartbeat_file, lambda: client).run()

    assert results[0].action_needed is False
    assert results[0].details == NOT_EVALUATED
    assert results[1].action_needed is True
