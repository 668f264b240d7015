import pytest
from fastapi.testclient import TestClient
from fastapi.websockets import WebSocketDisconnect

from gateway.application.websocket.ws_server import create_app
from tests.fakes import text_turn, tool_turn


def receive_until(ws, event_type):
    """Collect events up to and including the first one of ``event_type``"""
    events = []
    while True:
        event = ws.receive_json()
        events.append(event)
        if event["type"] == event_type:
            return events


def types(events):
    return [event["type"] for event in events]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["scheduled_jobs"] == 0


def test_non_loopback_peer_is_refused(services):
    # The test client reports its host as "testclient", which is not loopback
    with TestClient(create_app(services)) as client:
        with pytest.raises(WebSocketDisconnect) as info:
            with client.websocket_connect("/ws"):
                pass
    assert info.value.code == 1008


def test_malformed_frames_keep_connection_open(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_text("{not json")
        error = ws.receive_json()
        assert error["type"] == "error"
        assert error["code"] == "INVALID_MESSAGE"
        assert error["request_id"] is None

        ws.send_json({"id": "1", "type": "chat.send"})
        assert ws.receive_json()["code"] == "INVALID_MESSAGE"

        ws.send_json({"id": "2", "type": "session.list"})
        assert ws.receive_json()["type"] == "session.list"


def test_chat_turn_streams_and_persists(client, fake_model):
    fake_model.turns = [text_turn("Hello there"), text_turn("Again")]

    with client.websocket_connect("/ws") as ws:
        ws.send_json({"id": "m1", "type": "chat.send", "content": "hi"})
        events = receive_until(ws, "chat.stream.end")

        assert types(events) == ["session.created", "chat.stream.start", "chat.stream.delta", "chat.stream.end"]
        session_id = events[0]["session_id"]
        start = events[1]
        assert start["request_id"] == "m1"
        assert start["model"] == "fake:model"
        assert start["routing"]["tier"] in ("high", "standard", "budget")
        assert events[2]["delta"] == "Hello there"
        assert events[3]["usage"]["total_tokens"] == 15

        ws.send_json({"id": "m2", "type": "chat.send", "content": "and now?", "session_id": session_id})
        follow_up = receive_until(ws, "chat.stream.end")
        assert "session.created" not in types(follow_up)

        ws.send_json({"id": "q1", "type": "session.list"})
        sessions = ws.receive_json()["sessions"]
        assert [s["message_count"] for s in sessions] == [4]

        ws.send_json({"id": "q2", "type": "usage.query", "session_id": session_id})
        report = ws.receive_json()
        assert report["type"] == "usage.report"
        assert report["grand_total"]["request_count"] == 2
        assert report["grand_total"]["total_tokens"] == 30

        ws.send_json({"id": "q3", "type": "context.inspect", "session_id": session_id})
        inspection = ws.receive_json()
        assert inspection["type"] == "context.inspection"
        assert "history" in [section["name"] for section in inspection["sections"]]

    # History is sent once, with the new user message last
    second_prompt = fake_model.stream_calls[1]["messages"]
    assert [m.content for m in second_prompt] == ["hi", "Hello there", "and now?"]


def test_unknown_session_is_an_error(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"id": "m1", "type": "chat.send", "content": "hi", "session_id": "missing"})
        error = ws.receive_json()
        assert error["code"] == "SESSION_NOT_FOUND"
        assert error["request_id"] == "m1"

        ws.send_json({"id": "m2", "type": "context.inspect", "session_id": "missing"})
        assert ws.receive_json()["code"] == "SESSION_NOT_FOUND"


def test_unconfigured_provider_is_an_error(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"id": "m1", "type": "chat.send", "content": "hi", "model": "nowhere:model-x"})
        events = receive_until(ws, "error")
        assert events[-1]["code"] == "PROVIDER_NOT_CONFIGURED"
        assert 'Provider "nowhere" is not configured' in events[-1]["message"]


def test_tool_approval_round_trip(client, fake_model, workspace):
    fake_model.turns = [
        tool_turn("write_file", {"path": "notes.txt", "content": "hello"}),
        text_turn("Written"),
    ]

    with client.websocket_connect("/ws") as ws:
        ws.send_json({"id": "m1", "type": "chat.send", "content": "save a note"})
        events = receive_until(ws, "tool.approval.request")
        assert types(events)[-2:] == ["tool.call", "tool.approval.request"]
        tool_call_id = events[-1]["tool_call_id"]

        # A second turn cannot start while this one waits for approval
        ws.send_json({"id": "m2", "type": "chat.send", "content": "another"})
        busy = ws.receive_json()
        assert busy["code"] == "STREAM_IN_PROGRESS"
        assert busy["request_id"] == "m2"

        ws.send_json(
            {
                "id": "a1",
                "type": "tool.approval.response",
                "tool_call_id": tool_call_id,
                "approved": True,
                "session_approve": True,
            }
        )
        rest = receive_until(ws, "chat.stream.end")
        assert types(rest) == ["tool.result", "chat.stream.delta", "chat.stream.end"]

    assert (workspace / "notes.txt").read_text() == "hello"


def test_preflight_approval_adds_plan(client, fake_model):
    fake_model.completions = ['{"steps": [{"description": "Open settings", "tool_name": "read_file"}]}']
    fake_model.turns = [text_turn("Refactored")]

    with client.websocket_connect("/ws") as ws:
        ws.send_json({"id": "m1", "type": "chat.send", "content": "please refactor the settings module"})
        events = receive_until(ws, "preflight.checklist")
        assert events[-1]["steps"][0]["tool_name"] == "read_file"

        ws.send_json(
            {
                "id": "p1",
                "type": "preflight.approval",
                "request_id": "m1",
                "approved": True,
                "edited_steps": [{"description": "Only read the settings"}],
            }
        )
        rest = receive_until(ws, "chat.stream.end")
        assert rest[0]["type"] == "chat.stream.start"
        assert rest[0]["request_id"] == "m1"

    system = fake_model.stream_calls[-1]["system"]
    assert "# Approved Plan" in system
    assert "1. Only read the settings" in system


def test_preflight_rejection(client, fake_model):
    fake_model.completions = ['{"steps": []}']

    with client.websocket_connect("/ws") as ws:
        ws.send_json({"id": "m1", "type": "chat.send", "content": "please deploy everything to production"})
        receive_until(ws, "preflight.checklist")

        ws.send_json({"id": "p1", "type": "preflight.approval", "request_id": "m1", "approved": False})
        error = ws.receive_json()
        assert error["code"] == "PREFLIGHT_REJECTED"
        assert error["request_id"] == "m1"

        ws.send_json({"id": "p2", "type": "preflight.approval", "request_id": "m1", "approved": True})
        assert ws.receive_json()["code"] == "NO_PENDING_PREFLIGHT"

    assert fake_model.stream_calls == []


def test_manual_routing_waits_for_confirmation(client, services, fake_model):
    services.config.routing_mode = "manual"
    fake_model.turns = [text_turn("Routed")]

    with client.websocket_connect("/ws") as ws:
        ws.send_json({"id": "m1", "type": "chat.send", "content": "hi"})
        events = receive_until(ws, "chat.route.propose")
        proposal = events[-1]
        assert proposal["request_id"] == "m1"
        assert proposal["routing"]["provider"] == "fake"
        assert fake_model.stream_calls == []

        ws.send_json({"id": "c0", "type": "chat.route.confirm", "request_id": "other", "accept": True})
        assert ws.receive_json()["code"] == "NO_PENDING_ROUTING"

        ws.send_json({"id": "c1", "type": "chat.route.confirm", "request_id": "m1", "accept": True})
        rest = receive_until(ws, "chat.stream.end")
        assert types(rest) == ["chat.stream.start", "chat.stream.delta", "chat.stream.end"]

    assert [m.content for m in fake_model.stream_calls[0]["messages"]] == ["hi"]


def test_workflow_pause_and_approve(client, workspace):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"id": "w0", "type": "workflow.list"})
        listing = ws.receive_json()
        assert [(w["id"], w["step_count"]) for w in listing["workflows"]] == [("release", 3)]

        ws.send_json({"id": "w1", "type": "workflow.trigger", "workflow_id": "release"})
        request = ws.receive_json()
        assert request["type"] == "workflow.approval.request"
        assert request["step_id"] == "publish"
        assert request["tool"] == "write_file"

        status = ws.receive_json()
        assert status["type"] == "workflow.status"
        assert status["status"] == "paused"
        assert status["request_id"] == "w1"
        execution_id = status["execution_id"]

        ws.send_json(
            {
                "id": "w2",
                "type": "workflow.approval",
                "execution_id": execution_id,
                "step_id": "publish",
                "approved": True,
            }
        )
        done = ws.receive_json()
        assert done["status"] == "completed"
        assert done["request_id"] == "w2"

        ws.send_json({"id": "w3", "type": "workflow.execution.list", "workflow_id": "release"})
        executions = ws.receive_json()["executions"]
        assert [e["status"] for e in executions] == ["completed"]
        assert executions[0]["triggered_by"] == "manual"

    assert (workspace / "announced.txt").read_text() == "done"


def test_workflow_denial_fails_execution(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"id": "w1", "type": "workflow.trigger", "workflow_id": "release"})
        status = receive_until(ws, "workflow.status")[-1]

        ws.send_json(
            {
                "id": "w2",
                "type": "workflow.approval",
                "execution_id": status["execution_id"],
                "step_id": "publish",
                "approved": False,
            }
        )
        denied = ws.receive_json()
        assert denied["status"] == "failed"
        assert denied["error"] == "Step publish was not approved"

        ws.send_json(
            {
                "id": "w3",
                "type": "workflow.approval",
                "execution_id": status["execution_id"],
                "step_id": "publish",
                "approved": True,
            }
        )
        assert ws.receive_json()["code"] == "NO_PENDING_APPROVAL"


def test_paused_workflow_can_be_approved_after_reconnect(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"id": "w1", "type": "workflow.trigger", "workflow_id": "release"})
        status = receive_until(ws, "workflow.status")[-1]

    with client.websocket_connect("/ws") as ws:
        ws.send_json(
            {
                "id": "w2",
                "type": "workflow.approval",
                "execution_id": status["execution_id"],
                "step_id": "publish",
                "approved": True,
            }
        )
        assert ws.receive_json()["status"] == "completed"


def test_unknown_workflow(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"id": "w1", "type": "workflow.trigger", "workflow_id": "nope"})
        error = ws.receive_json()
        assert error["code"] == "WORKFLOW_NOT_FOUND"
        assert error["request_id"] == "w1"


def test_schedule_lifecycle(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_json(
            {
                "id": "s1",
                "type": "schedule.create",
                "name": "Nightly release",
                "cron_expression": "0 2 * * *",
                "workflow_id": "release",
                "timezone": "Europe/Berlin",
            }
        )
        created = ws.receive_json()
        assert created["type"] == "schedule.created"
        assert created["schedule"]["timezone"] == "Europe/Berlin"
        assert created["next_run"] is not None
        schedule_id = created["schedule"]["id"]

        ws.send_json({"id": "s2", "type": "schedule.update", "schedule_id": schedule_id, "enabled": False})
        updated = ws.receive_json()
        assert updated["schedule"]["enabled"] is False
        assert updated["schedule"]["name"] == "Nightly release"
        assert updated["next_run"] is None

        ws.send_json({"id": "s3", "type": "schedule.list"})
        listed = ws.receive_json()["schedules"]
        assert [(s["schedule"]["id"], s["active"]) for s in listed] == [(schedule_id, False)]

        ws.send_json({"id": "s4", "type": "schedule.delete", "schedule_id": schedule_id})
        assert ws.receive_json()["type"] == "schedule.deleted"

        ws.send_json({"id": "s5", "type": "schedule.delete", "schedule_id": schedule_id})
        assert ws.receive_json()["code"] == "SCHEDULE_NOT_FOUND"


def test_schedule_validation_errors(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"id": "s1", "type": "schedule.create", "name": "Bad", "cron_expression": "every day"})
        error = ws.receive_json()
        assert error["code"] == "INVALID_MESSAGE"
        assert error["request_id"] == "s1"

        ws.send_json(
            {"id": "s2", "type": "schedule.create", "name": "Ghost", "cron_expression": "0 2 * * *", "workflow_id": "ghost"}
        )
        assert ws.receive_json()["code"] == "WORKFLOW_NOT_FOUND"

        ws.send_json({"id": "s3", "type": "schedule.update", "schedule_id": "missing", "enabled": True})
        assert ws.receive_json()["code"] == "SCHEDULE_NOT_FOUND"


def test_heartbeat_configure(client, services):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"id": "h1", "type": "heartbeat.configure", "interval": 15})
        configured = ws.receive_json()
        assert configured["type"] == "heartbeat.configured"
        assert configured["schedule_id"] == "heartbeat-default"
        assert configured["next_run"] is not None

        ws.send_json({"id": "h2", "type": "heartbeat.configure", "interval": 10, "name": "ops"})
        ws.receive_json()

        ws.send_json({"id": "h3", "type": "schedule.list"})
        schedules = {s["schedule"]["id"]: s["schedule"] for s in ws.receive_json()["schedules"]}
        assert schedules["heartbeat-default"]["name"] == "Heartbeat (every 15min)"
        assert schedules["heartbeat-default"]["cron_expression"] == "*/15 * * * *"
        assert schedules["heartbeat-ops"]["name"] == "Heartbeat ops (every 10min)"

    assert services.scheduler.is_active("heartbeat-default")
    assert services.scheduler.is_active("heartbeat-ops")


def test_concurrent_workflow_approvals_resolve_once(client, workspace):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"id": "w1", "type": "workflow.trigger", "workflow_id": "release"})
        status = receive_until(ws, "workflow.status")[-1]

        for request_id in ("w2", "w3"):
            ws.send_json(
                {
                    "id": request_id,
                    "type": "workflow.approval",
                    "execution_id": status["execution_id"],
                    "step_id": "publish",
                    "approved": True,
                }
            )
        answers = [ws.receive_json(), ws.receive_json()]

        completed = [a for a in answers if a["type"] == "workflow.status"]
        refused = [a for a in answers if a["type"] == "error"]
        assert len(completed) == 1
        assert completed[0]["status"] == "completed"
        assert [a["code"] for a in refused] == ["NO_PENDING_APPROVAL"]
        assert {completed[0]["request_id"], refused[0]["request_id"]} == {"w2", "w3"}

        ws.send_json({"id": "w4", "type": "workflow.execution.list", "workflow_id": "release"})
        assert [e["status"] for e in ws.receive_json()["executions"]] == ["completed"]

    assert (workspace / "announced.txt").read_text() == "done"


def test_approval_for_wrong_step_is_refused(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"id": "w1", "type": "workflow.trigger", "workflow_id": "release"})
        status = receive_until(ws, "workflow.status")[-1]

        ws.send_json(
            {
                "id": "w2",
                "type": "workflow.approval",
                "execution_id": status["execution_id"],
                "step_id": "announce",
                "approved": True,
            }
        )
        assert ws.receive_json()["code"] == "NO_PENDING_APPROVAL"

        ws.send_json({"id": "w3", "type": "workflow.execution.list", "status": "paused"})
        assert [e["id"] for e in ws.receive_json()["executions"]] == [status["execution_id"]]


def test_threads_and_prompts_shape_the_system_prompt(client, fake_model):
    fake_model.turns = [text_turn("Noted"), text_turn("Plain")]

    with client.websocket_connect("/ws") as ws:
        ws.send_json({"id": "p1", "type": "prompt.set", "name": "style", "content": "Answer briefly.", "priority": 2})
        created_prompt = ws.receive_json()
        assert created_prompt["type"] == "prompt.set.result"
        assert created_prompt["request_id"] == "p1"

        ws.send_json({"id": "p2", "type": "prompt.list"})
        prompts = ws.receive_json()["prompts"]
        assert [(p["id"], p["name"], p["priority"]) for p in prompts] == [(created_prompt["prompt_id"], "style", 2)]

        ws.send_json({"id": "t1", "type": "thread.create", "title": "Ops", "system_prompt": "You run deploys."})
        created = ws.receive_json()
        assert created["type"] == "thread.created"
        thread_id = created["thread"]["id"]

        ws.send_json({"id": "m1", "type": "chat.send", "content": "hi", "thread_id": thread_id})
        receive_until(ws, "chat.stream.end")
        ws.send_json({"id": "m2", "type": "chat.send", "content": "hi again"})
        receive_until(ws, "chat.stream.end")

        ws.send_json({"id": "t2", "type": "thread.update", "thread_id": thread_id, "archived": True})
        updated = ws.receive_json()
        assert updated["type"] == "thread.updated"
        assert updated["thread"]["archived"] is True
        assert updated["thread"]["title"] == "Ops"

        ws.send_json({"id": "t3", "type": "thread.list"})
        assert ws.receive_json()["threads"] == []
        ws.send_json({"id": "t4", "type": "thread.list", "include_archived": True})
        assert [t["id"] for t in ws.receive_json()["threads"]] == [thread_id]

        ws.send_json({"id": "t5", "type": "thread.update", "thread_id": "missing", "title": "x"})
        error = ws.receive_json()
        assert error["code"] == "THREAD_NOT_FOUND"
        assert error["request_id"] == "t5"

    assert fake_model.stream_calls[0]["system"].startswith("Answer briefly.\n\nYou run deploys.")
    assert fake_model.stream_calls[1]["system"].startswith("Answer briefly.")
    assert "You run deploys." not in fake_model.stream_calls[1]["system"]


def test_memory_search(client, services):
    services.memory.append_long_term("The user prefers tabs")
    services.memory.append_long_term("Deploys happen on Fridays")

    with client.websocket_connect("/ws") as ws:
        ws.send_json({"id": "s1", "type": "memory.search", "query": "tabs", "top_k": 5})
        result = ws.receive_json()
        assert result["type"] == "memory.search.result"
        assert result["request_id"] == "s1"
        assert [(r["content"], r["memory_type"], r["distance"]) for r in result["results"]] == [
            ("The user prefers tabs", "long_term", 0.0)
        ]

        ws.send_json({"id": "s2", "type": "memory.search", "query": ""})
        assert ws.receive_json()["code"] == "INVALID_MESSAGE"
