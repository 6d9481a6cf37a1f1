from __future__ import annotations

import time

import pytest
from fastapi.testclient import TestClient

from whisperly.core.bootstrap import build_runtime
from whisperly.core.config import Settings
from whisperly.core.context import PushedContextProvider
from whisperly.main import create_app

from fakes import Script, ScriptedSpeechService, ScriptedTextService


def _app(**overrides):
    settings = Settings(_env_file=None, **overrides)

    def factory(config: Settings):
        return build_runtime(
            config,
            context_provider=PushedContextProvider(),
            text_service=ScriptedTextService(Script(["Short ", "summary"])),
            speech_service=ScriptedSpeechService(),
        )

    return create_app(settings, runtime_factory=factory)


def _wait_for_status(client: TestClient, status: str, timeout: float = 2.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        state = client.get("/overlay/state").json()
        if state["response"]["status"] == status or time.monotonic() > deadline:
            return state
        time.sleep(0.01)


@pytest.fixture
def client():
    with TestClient(_app()) as test_client:
        yield test_client


def test_health_reports_the_runtime(client: TestClient):
    res = client.get("/health")
    assert res.status_code == 200
    data = res.json()
    assert {"status", "version", "time", "provider", "action_in_flight", "listening"} <= data.keys()
    assert data["status"] == "ok"
    assert data["provider"] == "gemini"


def test_trace_id_is_echoed(client: TestClient):
    res = client.get("/health", headers={"X-Trace-Id": "abc123"})
    assert res.headers["X-Trace-Id"] == "abc123"
    assert client.get("/health").headers["X-Trace-Id"]


def test_initial_state(client: TestClient):
    assert client.get("/overlay/state").json() == {
        "expanded": False,
        "listening": False,
        "response": {"status": "idle"},
    }


def test_toggle_expansion_intent(client: TestClient):
    res = client.post("/overlay/intents", json={"intent": "toggle_expansion"})
    assert res.status_code == 202
    assert res.json()["state"]["expanded"] is True


def test_unknown_intent_is_rejected(client: TestClient):
    res = client.post("/overlay/intents", json={"intent": "open_pod_bay_doors"})
    assert res.status_code == 422
    error = res.json()["detail"]["error"]
    assert error["code"] == "WHISPERLY_4220"
    assert "summarize_screen" in error["details"]["allowed"]


def test_list_intents(client: TestClient):
    intents = client.get("/overlay/intents").json()["intents"]
    assert "retry_last_action" in intents


def test_summarize_pushed_context(client: TestClient):
    assert client.put("/overlay/context", json={"text": "Quarterly report"}).json() == {"length": 16}
    client.post("/overlay/intents", json={"intent": "summarize_screen"})

    state = _wait_for_status(client, "succeeded")
    assert state["expanded"] is True
    assert state["response"]["text"] == "Short summary"
    assert state["response"]["action"] == "Summarize"


def test_summarize_without_context_fails(client: TestClient):
    client.post("/overlay/intents", json={"intent": "summarize_screen"})

    state = _wait_for_status(client, "failed")
    assert state["response"]["kind"] == "no_context_available"
    assert state["response"]["retryable"] is True


def test_events_stream_replays_state_and_forwards_effects(client: TestClient):
    with client.websocket_connect("/overlay/events") as ws:
        first = ws.receive_json()
        assert first["type"] == "event"
        assert first["source"] == "overlay"
        assert first["event"] == "state"
        assert first["payload"]["expanded"] is False

        ws.send_json({"intent": "toggle_expansion"})
        messages = [ws.receive_json(), ws.receive_json()]
        by_event = {m["event"]: m["payload"] for m in messages}
        assert by_event["state"]["expanded"] is True
        assert by_event["effect"] == {"type": "haptic", "kind": "medium"}


def test_events_stream_rejects_bad_messages(client: TestClient):
    with client.websocket_connect("/overlay/events") as ws:
        ws.receive_json()
        ws.send_text("not json")
        error = ws.receive_json()
        assert error["type"] == "error"
        assert error["code"] == "WHISPERLY_4220"


def test_events_stream_survives_a_non_string_command(client: TestClient):
    with client.websocket_connect("/overlay/events") as ws:
        ws.receive_json()
        ws.send_json({"intent": "process_voice_command", "command": 5})
        error = ws.receive_json()
        assert error["type"] == "error"
        assert error["code"] == "WHISPERLY_4220"

        ws.send_json({"intent": "toggle_expansion"})
        messages = [ws.receive_json(), ws.receive_json()]
        assert {m["event"] for m in messages} == {"state", "effect"}


def test_metrics_hidden_unless_enabled(client: TestClient):
    assert client.get("/metrics").status_code == 404


def test_metrics_when_enabled():
    with TestClient(_app(enable_metrics=True)) as client:
        res = client.get("/metrics")
    assert res.status_code == 200
    assert "whisperly_actions_total" in res.text
