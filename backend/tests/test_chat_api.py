from __future__ import annotations

import asyncio
import json

import pytest

from chatrelay.api import chat as chat_api
from chatrelay.providers.base import ProviderError, UpstreamRejected
from relay_stubs import ScriptedAdapter, ndjson, parse_sse


class FailingModelsAdapter(ScriptedAdapter):
    async def list_models(self, cfg):
        raise ProviderError("UPSTREAM_UNREACHABLE", "Network error: connection refused")


@pytest.mark.anyio
async def test_chat_streams_filtered_events(app, client):
    adapter = ScriptedAdapter(
        [ndjson("<<RESPONSE>>Hi", "<<THINKING>>plan</THINKING>>", " there</RESPONSE>>")]
    )
    app.state.relay_manager.set_adapter(adapter)

    response = await client.post(
        "/api/chat",
        json={"messages": [{"role": "user", "content": "hello"}], "model": "llama3"},
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"
    assert parse_sse(response.text) == [
        ("response", {"text": "Hi"}),
        ("response", {"text": " there"}),
        ("done", {"ok": True}),
    ]
    assert adapter.requests[0]["model"] == "llama3"
    assert adapter.requests[0]["base_url"] == "http://ollama.test"
    assert app.state.relay_manager.active_sessions == 0


@pytest.mark.anyio
async def test_chat_uses_configured_default_model(app, client):
    adapter = ScriptedAdapter([ndjson("ok")])
    app.state.relay_manager.set_adapter(adapter)

    response = await client.post("/api/chat", json={"messages": []})

    assert response.status_code == 200
    assert adapter.requests[0]["model"] == "default-model"


@pytest.mark.anyio
async def test_chat_upstream_rejection_becomes_error_event(app, client):
    adapter = ScriptedAdapter(
        connect_error=UpstreamRejected("UPSTREAM_BAD_STATUS", "HTTP 404: model not found", status_code=404)
    )
    app.state.relay_manager.set_adapter(adapter)

    response = await client.post("/api/chat", json={"messages": [{"role": "user", "content": "hi"}]})

    assert response.status_code == 200
    assert parse_sse(response.text) == [("error", {"message": "HTTP 404: model not found"})]


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("body", "message"),
    [
        ({"model": "llama3"}, "No messages provided"),
        ({"messages": "hi"}, "Invalid request"),
    ],
)
async def test_chat_rejects_missing_messages(client, body, message):
    response = await client.post("/api/chat", json=body)

    assert response.status_code == 400
    assert response.json() == {"success": False, "code": "INVALID_REQUEST", "message": message}


@pytest.mark.anyio
async def test_models_lists_upstream_models(app, client):
    app.state.relay_manager.set_adapter(ScriptedAdapter(models=["llama3", "qwen"]))

    response = await client.get("/api/models")

    assert response.status_code == 200
    assert response.json()["models"] == ["llama3", "qwen"]
    assert response.json()["success"] is True


@pytest.mark.anyio
async def test_models_reports_upstream_failure(app, client):
    app.state.relay_manager.set_adapter(FailingModelsAdapter())

    response = await client.get("/api/models")

    assert response.status_code == 200
    assert response.json() == {
        "success": False,
        "models": [],
        "message": "Network error: connection refused",
    }


@pytest.mark.anyio
async def test_health_reports_no_active_sessions(client):
    response = await client.get("/health")

    assert response.json() == {"success": True, "active_sessions": 0}


def _chat_scope() -> dict:
    return {
        "type": "http",
        "asgi": {"version": "3.0", "spec_version": "2.4"},
        "http_version": "1.1",
        "method": "POST",
        "scheme": "http",
        "path": "/api/chat",
        "raw_path": b"/api/chat",
        "root_path": "",
        "query_string": b"",
        "headers": [(b"host", b"test"), (b"content-type", b"application/json")],
        "client": ("127.0.0.1", 50000),
        "server": ("test", 80),
        "state": {},
    }


def _chat_body() -> bytes:
    return json.dumps({"messages": [{"role": "user", "content": "hi"}]}).encode("utf-8")


@pytest.mark.anyio
async def test_client_gone_before_body_leaves_no_session(app):
    adapter = ScriptedAdapter([ndjson("a")])
    app.state.relay_manager.set_adapter(adapter)
    request_sent = False

    async def receive():
        nonlocal request_sent
        if not request_sent:
            request_sent = True
            return {"type": "http.request", "body": _chat_body(), "more_body": False}
        await asyncio.Event().wait()

    async def send(message):
        if message["type"] == "http.response.start":
            raise OSError("connection reset by peer")

    with pytest.raises(Exception) as exc_info:
        await asyncio.wait_for(app(_chat_scope(), receive, send), timeout=2)

    assert not isinstance(exc_info.value, asyncio.TimeoutError)
    assert app.state.relay_manager.active_sessions == 0
    assert adapter.requests == []


@pytest.mark.anyio
async def test_disconnect_seen_by_watcher_stops_relay(app, monkeypatch):
    monkeypatch.setattr(chat_api, "DISCONNECT_POLL_SEC", 0.01)
    adapter = ScriptedAdapter([ndjson("a"), ndjson("b")], hang_after_chunks=True)
    app.state.relay_manager.set_adapter(adapter)
    sent: list[dict] = []
    request_sent = False

    async def receive():
        nonlocal request_sent
        if not request_sent:
            request_sent = True
            return {"type": "http.request", "body": _chat_body(), "more_body": False}
        await adapter.hanging.wait()
        return {"type": "http.disconnect"}

    async def send(message):
        sent.append(message)

    await asyncio.wait_for(app(_chat_scope(), receive, send), timeout=2)
    for _ in range(100):
        if app.state.relay_manager.active_sessions == 0:
            break
        await asyncio.sleep(0.01)

    body = b"".join(message.get("body", b"") for message in sent if message["type"] == "http.response.body")
    assert sent[0]["status"] == 200
    names = [name for name, _ in parse_sse(body.decode("utf-8"))]
    assert "done" not in names
    assert set(names) <= {"response"}
    assert adapter.body_closed
    assert app.state.relay_manager.active_sessions == 0
