"""Tests for the HTTP API and the SSE chat stream."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest
from conftest import ScriptedProvider, stop_event, text_events, tool_events
from fastapi.testclient import TestClient

from nimbus.config import Config, SandboxConfig
from nimbus.runtime import NimbusRuntime
from nimbus.server import create_app, sse_frame, stream_events


def parse_sse(body: str) -> list[dict[str, Any]]:
    """Decode the data frames of an SSE body, skipping comments."""
    frames = []
    for chunk in body.split("\n\n"):
        if chunk.startswith("data: "):
            frames.append(json.loads(chunk[len("data: "):]))
    return frames


@pytest.fixture
def make_runtime(tmp_path):
    def factory(turns=(), provider=None) -> NimbusRuntime:
        config = Config(sandbox=SandboxConfig(sensitive_paths=["secrets"], blocked_paths=[]))
        return NimbusRuntime(config, provider=provider or ScriptedProvider(list(turns)), cwd=tmp_path)

    return factory


@pytest.fixture
def client_for(make_runtime):
    clients = []

    def factory(turns=()) -> tuple[TestClient, NimbusRuntime]:
        runtime = make_runtime(turns)
        client = TestClient(create_app(runtime))
        client.__enter__()
        clients.append(client)
        return client, runtime

    yield factory
    for client in clients:
        client.__exit__(None, None, None)


class TestHealth:
    def test_health(self, client_for):
        client, runtime = client_for()
        data = client.get("/api/health").json()
        assert data["status"] == "ok"
        assert data["model"] == "scripted"
        assert data["features"]["browser"] is False
        assert data["features"]["tools"] == len(runtime.dispatcher.names)

    def test_browser_status(self, client_for):
        client, _ = client_for()
        assert client.get("/api/browser-status").json() == {
            "connected": False,
            "client": None,
            "version": None,
            "pending": 0,
        }


class TestChat:
    def test_empty_message_rejected(self, client_for):
        client, _ = client_for()
        response = client.post("/api/chat", json={"message": "   "})
        assert response.status_code == 400
        assert response.json() == {"error": "Message is required"}

    def test_streams_events(self, client_for):
        client, _ = client_for([text_events("Hi!") + [stop_event("end_turn")]])

        response = client.post("/api/chat", json={"message": "hello", "chatId": "c1"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache, no-transform"
        frames = parse_sse(response.text)
        assert [f["type"] for f in frames] == ["session_init", "text", "text", "done"]
        assert all(f["session_id"] == "c1" for f in frames)
        assert frames[-1]["stop_reason"] == "end_turn"

    def test_default_session(self, client_for):
        client, runtime = client_for([text_events("ok")])
        client.post("/api/chat", json={"message": "hello"})
        assert len(runtime.store.get("default").history) == 2

    def test_provider_error_frame(self, client_for):
        client, _ = client_for([RuntimeError("upstream down")])
        frames = parse_sse(client.post("/api/chat", json={"message": "hi"}).text)
        assert frames[-1] == {
            "type": "error",
            "session_id": "default",
            "message": "upstream down",
            "turns": 1,
        }


class TestPermissions:
    @pytest.fixture
    def pending(self, client_for, tmp_path):
        (tmp_path / "secrets").mkdir()
        (tmp_path / "secrets" / "key.txt").write_text("k")
        client, runtime = client_for(
            [tool_events("t1", "Read", {"file_path": "secrets/key.txt"}), text_events("Need approval")]
        )
        frames = parse_sse(client.post("/api/chat", json={"message": "read it", "chatId": "c1"}).text)
        result = next(f for f in frames if f["type"] == "tool_result")["result"]
        assert result["requires_permission"] is True
        return client, runtime, result

    def test_listed(self, pending):
        client, _, result = pending
        data = client.get("/api/pending-permissions", params={"sessionId": "c1"}).json()
        assert data["count"] == 1
        assert data["pending"][0]["id"] == result["permission_id"]
        assert data["pending"][0]["operation"] == "read"
        assert client.get("/api/pending-permissions", params={"sessionId": "other"}).json()["count"] == 0

    def test_confirm(self, pending):
        client, runtime, result = pending
        response = client.post("/api/confirm-permission", json={"permissionId": result["permission_id"]})
        assert response.json() == {"approved": True, "path": result["path"]}
        assert runtime.gate.classify("c1", result["path"], "read").to_dict() == {"allowed": True}

        again = client.post("/api/confirm-permission", json={"permissionId": result["permission_id"]})
        assert again.json() == {"error": "Permission not found"}

    def test_deny(self, pending):
        client, runtime, result = pending
        response = client.post("/api/deny-permission", json={"permissionId": result["permission_id"]})
        assert response.json() == {"denied": True, "path": result["path"]}
        outcome = runtime.gate.classify("c1", result["path"], "read").to_dict()
        assert outcome["blocked"] is True
        assert "denied by user" in outcome["reason"]

    def test_unknown_id(self, client_for):
        client, _ = client_for()
        response = client.post("/api/deny-permission", json={"permissionId": "perm_nope"})
        assert response.json() == {"error": "Permission not found"}


class TestSandboxEndpoints:
    def test_validate(self, client_for, tmp_path):
        client, _ = client_for()

        allowed = client.post("/api/sandbox/validate", json={"path": str(tmp_path / "a.txt"), "operation": "read"})
        assert allowed.json() == {"allowed": True}

        blocked = client.post("/api/sandbox/validate", json={"path": "/etc/shadow", "operation": "read"})
        assert blocked.json()["blocked"] is True

        sensitive = client.post(
            "/api/sandbox/validate",
            json={"path": str(tmp_path / "secrets" / "x"), "operation": "write", "sessionId": "v1"},
        ).json()
        assert sensitive["requires_permission"] is True
        assert sensitive["permission_id"].startswith("perm_")

    def test_validate_rejects_unknown_operation(self, client_for):
        client, _ = client_for()
        response = client.post("/api/sandbox/validate", json={"path": "/tmp/x", "operation": "teleport"})
        assert response.status_code == 422

    def test_audit(self, client_for):
        client, _ = client_for()
        client.post("/api/sandbox/validate", json={"path": "/etc/shadow", "operation": "read"})
        data = client.get("/api/audit").json()
        assert [e["event"] for e in data["entries"]] == ["attempt", "blocked"]
        assert client.get("/api/audit", params={"limit": 1}).json()["count"] == 1


class TestDeletionEndpoints:
    @pytest.fixture
    def requested(self, client_for, tmp_path):
        target = tmp_path / "old.log"
        target.write_text("log")
        client, runtime = client_for([tool_events("t1", "Delete", {"path": "old.log"}), text_events("Asked")])
        frames = parse_sse(client.post("/api/chat", json={"message": "clean", "chatId": "c1"}).text)
        result = next(f for f in frames if f["type"] == "tool_result")["result"]
        assert result["requires_confirmation"] is True
        return client, target, result["deletion_id"]

    def test_listed(self, requested):
        client, target, deletion_id = requested
        data = client.get("/api/pending-deletions").json()
        assert data["count"] == 1
        assert data["pending"][0]["id"] == deletion_id
        assert data["pending"][0]["path"] == str(target)
        assert data["pending"][0]["sessionId"] == "c1"

    def test_confirm(self, requested):
        client, target, deletion_id = requested
        data = client.post("/api/confirm-deletion", json={"deletionId": deletion_id}).json()
        assert data["success"] is True
        assert not target.exists()

        again = client.post("/api/confirm-deletion", json={"deletionId": deletion_id}).json()
        assert again == {"error": f"No pending deletion found with id: {deletion_id}"}

    def test_cancel(self, requested):
        client, target, deletion_id = requested
        data = client.post("/api/cancel-deletion", json={"deletionId": deletion_id}).json()
        assert data == {"cancelled": True, "path": str(target)}
        assert target.exists()
        assert client.get("/api/pending-deletions").json()["count"] == 0


class TestSessionEndpoints:
    def test_progress(self, client_for):
        client, _ = client_for(
            [tool_events("t1", "Progress", {"step": "scan", "percent": 50}), text_events("ok")]
        )
        client.post("/api/chat", json={"message": "go", "chatId": "c1"})

        data = client.get("/api/progress", params={"sessionId": "c1"}).json()
        assert data["count"] == 1
        assert data["progress"][0]["step"] == "scan"
        assert client.get("/api/progress", params={"sessionId": "none"}).json() == {"progress": [], "count": 0}

    def test_clear(self, client_for):
        client, runtime = client_for([text_events("ok")])
        client.post("/api/chat", json={"message": "go", "chatId": "c1"})
        assert runtime.controller.state("c1") is not None

        assert client.post("/api/sessions/c1/clear").json() == {"cleared": True, "sessionId": "c1"}
        assert runtime.store.get("c1") is None
        assert runtime.controller.state("c1") is None
        assert "c1" not in runtime.controller.last_state


class TestBrowserSocket:
    def test_register(self, client_for):
        client, _ = client_for()
        with client.websocket_connect("/browser") as ws:
            ws.send_text(json.dumps({"type": "register", "client": "chrome-extension", "version": "2.0"}))
            assert ws.receive_json() == {"type": "registered", "status": "ok"}

            status = client.get("/api/browser-status").json()
            assert status["connected"] is True
            assert status["client"] == "chrome-extension"


class BlockingProvider:
    """Provider whose stream never produces an event."""

    model = "blocking"

    def __init__(self) -> None:
        self.cancelled = False

    async def stream(self, messages, *, system=None, tools=None):
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        yield {}

    async def aclose(self) -> None:
        pass


class TestStreamEvents:
    def test_sse_frame(self):
        assert sse_frame({"type": "text", "content": "hi"}) == 'data: {"type": "text", "content": "hi"}\n\n'

    async def test_heartbeat_while_idle(self, make_runtime):
        provider = BlockingProvider()
        runtime = make_runtime(provider=provider)
        stream = stream_events(runtime, "s1", "hello", heartbeat=0.01)

        first = await stream.__anext__()
        assert json.loads(first[len("data: "):])["type"] == "session_init"
        assert await stream.__anext__() == ": heartbeat\n\n"

        await stream.aclose()
        assert provider.cancelled is True
        assert not runtime.store.get("s1").turn_lock.locked()
