import pytest
from langchain_core.messages import HumanMessage
from langchain_core.tools import StructuredTool

from gateway.application.websocket.connection_state import ConnectionState
from gateway.domain.agent.approval_gate import ApprovalPolicy
from gateway.domain.agent.preflight import generate_preflight, should_trigger_preflight
from gateway.domain.agent.tool_loop import NO_TEXT_FALLBACK, run_agent_loop
from gateway.domain.errors import LLMError
from tests.fakes import ApprovingTransport, FakeModelClient, RecordingTransport, text_turn, tool_turn


@pytest.fixture
def tool_calls():
    return []


@pytest.fixture
def tools(tool_calls):
    async def read_file(path: str) -> str:
        tool_calls.append(path)
        if path == "missing.txt":
            raise FileNotFoundError(f"ENOENT: {path}")
        return f"contents of {path}"

    return {"read_file": StructuredTool.from_function(coroutine=read_file, name="read_file", description="Read a file")}


async def _run(client, transport, connection, tools, policy=None, **kwargs):
    return await run_agent_loop(
        transport=transport,
        connection=connection,
        client=client,
        messages=[HumanMessage(content="hello")],
        system="You are helpful.",
        tools=tools,
        request_id="req-1",
        approval_policy=policy or ApprovalPolicy(default_tier="auto"),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_plain_text_turn(tools):
    client = FakeModelClient(turns=[text_turn("Hi ", 3, 2)])
    transport = RecordingTransport()
    usage = []

    async def on_usage(total):
        usage.append(total)

    text = await _run(client, transport, ConnectionState("c1"), tools, on_usage=on_usage)

    assert text == "Hi "
    assert transport.types() == ["chat.stream.delta"]
    assert usage[0].total_tokens == 5
    assert client.stream_calls[0]["system"] == "You are helpful."


@pytest.mark.asyncio
async def test_auto_approved_tool_call(tools, tool_calls):
    client = FakeModelClient(turns=[tool_turn("read_file", {"path": "a.txt"}), text_turn("done")])
    transport = RecordingTransport()
    usage = []

    async def on_usage(total):
        usage.append(total)

    text = await _run(client, transport, ConnectionState("c1"), tools, on_usage=on_usage)

    assert text == "done"
    assert tool_calls == ["a.txt"]
    assert transport.types() == ["tool.call", "tool.result", "chat.stream.delta"]
    assert transport.of_type("tool.result")[0].result == "contents of a.txt"
    # Usage is summed across steps
    assert usage[0].total_tokens == 6 + 15
    follow_up = client.stream_calls[1]["messages"]
    assert follow_up[-1].content == "contents of a.txt"


@pytest.mark.asyncio
async def test_approved_tool_call_waits_for_client(tools, tool_calls):
    connection = ConnectionState("c1")
    transport = ApprovingTransport(connection, approved=True)
    client = FakeModelClient(turns=[tool_turn("read_file", {"path": "a.txt"}), text_turn("ok")])

    await _run(client, transport, connection, tools, policy=ApprovalPolicy(default_tier="session"))

    assert transport.types()[:3] == ["tool.call", "tool.approval.request", "tool.result"]
    assert tool_calls == ["a.txt"]
    assert connection.pending_approvals == {}


@pytest.mark.asyncio
async def test_denied_tool_call_is_not_run(tools, tool_calls):
    connection = ConnectionState("c1")
    transport = ApprovingTransport(connection, approved=False)
    client = FakeModelClient(turns=[tool_turn("read_file", {"path": "a.txt"}), text_turn("understood")])

    text = await _run(client, transport, connection, tools, policy=ApprovalPolicy(default_tier="always"))

    assert text == "understood"
    assert tool_calls == []
    assert "tool.result" not in transport.types()
    denial = client.stream_calls[1]["messages"][-1]
    assert denial.content == "The user denied the call to read_file."


@pytest.mark.asyncio
async def test_approval_timeout_denies(tools, tool_calls):
    transport = RecordingTransport()
    client = FakeModelClient(turns=[tool_turn("read_file", {"path": "a.txt"}), text_turn("ok")])

    await _run(
        client,
        transport,
        ConnectionState("c1"),
        tools,
        policy=ApprovalPolicy(default_tier="always"),
        approval_timeout=0.01,
    )
    assert tool_calls == []


@pytest.mark.asyncio
async def test_tool_error_is_reported(tools):
    client = FakeModelClient(turns=[tool_turn("read_file", {"path": "missing.txt"}), text_turn("sorry")])
    transport = RecordingTransport()

    await _run(client, transport, ConnectionState("c1"), tools)

    error = transport.of_type("tool.error")[0]
    assert error.error == "ENOENT: missing.txt"
    assert client.stream_calls[1]["messages"][-1].content == "Error: ENOENT: missing.txt"


@pytest.mark.asyncio
async def test_unknown_tool_is_reported(tools):
    client = FakeModelClient(turns=[tool_turn("launch_rocket"), text_turn("ok")])
    transport = RecordingTransport()

    await _run(client, transport, ConnectionState("c1"), tools)
    assert transport.of_type("tool.error")[0].error == "Tool launch_rocket is not available"


@pytest.mark.asyncio
async def test_repeated_errors_raise_failure_event(tools):
    turns = [tool_turn("read_file", {"path": "missing.txt"}, call_id=f"call-{i}") for i in range(3)]
    client = FakeModelClient(turns=turns + [text_turn("giving up")])
    transport = RecordingTransport()

    await _run(client, transport, ConnectionState("c1"), tools)

    failures = transport.of_type("failure.detected")
    assert failures
    assert failures[0].pattern == "repeated-tool-error"
    assert failures[0].affected_tool == "read_file"


@pytest.mark.asyncio
async def test_stream_error_falls_back_to_notice(tools):
    client = FakeModelClient(turns=[LLMError("rate limited")])
    transport = RecordingTransport()

    text = await _run(client, transport, ConnectionState("c1"), tools)

    assert text == NO_TEXT_FALLBACK
    error = transport.of_type("error")[0]
    assert error.code == "AGENT_STREAM_ERROR"
    assert error.message == "rate limited"
    assert transport.of_type("chat.stream.delta")[0].delta == NO_TEXT_FALLBACK


@pytest.mark.asyncio
async def test_max_steps_bounds_the_loop(tools, tool_calls):
    turns = [tool_turn("read_file", {"path": f"{i}.txt"}, call_id=f"call-{i}") for i in range(5)]
    client = FakeModelClient(turns=turns)

    await _run(client, RecordingTransport(), ConnectionState("c1"), tools, max_steps=2)
    assert tool_calls == ["0.txt", "1.txt"]


def test_preflight_trigger_rules(tools):
    assert not should_trigger_preflight("short", tools)
    assert should_trigger_preflight("please refactor the settings module", tools)
    assert should_trigger_preflight("x" * 201, tools)
    assert not should_trigger_preflight("tell me something nice about otters", tools)
    many = {f"tool_{i}": tools["read_file"] for i in range(6)}
    assert should_trigger_preflight("tell me something nice about otters", many)


@pytest.mark.asyncio
async def test_preflight_parses_model_plan(tools):
    client = FakeModelClient(
        completions=[
            'Here is the plan: {"steps": [{"description": "Read config", "tool_name": "read_file"}],'
            ' "warnings": ["touches production"]}'
        ]
    )
    checklist = await generate_preflight(client, "deploy the service to production", tools)

    assert checklist.steps[0].tool_name == "read_file"
    assert checklist.warnings == ["touches production"]
    assert "read_file: Read a file" in client.prompts[0]


@pytest.mark.asyncio
async def test_preflight_falls_back_on_bad_answer(tools):
    client = FakeModelClient(completions=["I cannot plan this"])
    checklist = await generate_preflight(client, "deploy the service to production", tools)

    assert len(checklist.steps) == 1
    assert checklist.steps[0].needs_approval is True
    assert checklist.estimated_cost.input_tokens > 0
    assert checklist.warnings
