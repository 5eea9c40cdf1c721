"""Tests for the remote command bridge and the browser tools."""

from __future__ import annotations

import asyncio
import json

import pytest
from fastapi import WebSocketDisconnect

from nimbus.bridge import RemoteCommandBridge
from nimbus.errors import BridgeCommandError, BridgeNotConnected, BridgeTimeout
from nimbus.tools import ToolDispatcher

_DISCONNECT = object()


class MockWebSocket:
    """In-memory stand-in for a FastAPI WebSocket."""

    def __init__(self) -> None:
        self.accepted = False
        self.closed: tuple[int, str] | None = None
        self.sent: list[dict] = []
        self._inbound: asyncio.Queue = asyncio.Queue()
        self._sent_event = asyncio.Event()

    async def accept(self) -> None:
        self.accepted = True

    async def send_text(self, data: str) -> None:
        self.sent.append(json.loads(data))
        self._sent_event.set()

    async def receive_text(self) -> str:
        frame = await self._inbound.get()
        if frame is _DISCONNECT:
            raise WebSocketDisconnect(code=1000)
        return frame

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = (code, reason)

    def push(self, message: dict | str) -> None:
        self._inbound.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def disconnect(self) -> None:
        self._inbound.put_nowait(_DISCONNECT)

    async def next_sent(self) -> dict:
        while not self.sent:
            self._sent_event.clear()
            await asyncio.wait_for(self._sent_event.wait(), timeout=1)
        return self.sent.pop(0)


@pytest.fixture
async def connected():
    bridge = RemoteCommandBridge(timeout=1.0)
    socket = MockWebSocket()
    task = asyncio.create_task(bridge.serve(socket))
    await asyncio.sleep(0)
    yield bridge, socket
    socket.disconnect()
    await asyncio.wait_for(task, timeout=1)


class TestConnection:
    async def test_not_connected(self):
        bridge = RemoteCommandBridge()
        assert bridge.is_connected() is False
        with pytest.raises(BridgeNotConnected):
            await bridge.send("getTabs")

    async def test_serve_accepts(self, connected):
        bridge, socket = connected
        assert socket.accepted
        assert bridge.is_connected()

    async def test_register_handshake(self, connected):
        bridge, socket = connected
        socket.push({"type": "register", "client": "chrome-extension", "version": "1.2"})

        assert await socket.next_sent() == {"type": "registered", "status": "ok"}
        assert bridge.status() == {
            "connected": True,
            "client": "chrome-extension",
            "version": "1.2",
            "pending": 0,
        }

    async def test_disconnect_clears_socket(self):
        bridge = RemoteCommandBridge()
        socket = MockWebSocket()
        task = asyncio.create_task(bridge.serve(socket))
        await asyncio.sleep(0)
        socket.disconnect()
        await asyncio.wait_for(task, timeout=1)
        assert bridge.is_connected() is False

    async def test_new_connection_replaces_old(self, connected):
        bridge, first = connected
        second = MockWebSocket()
        task = asyncio.create_task(bridge.serve(second))
        await asyncio.sleep(0)

        assert first.closed == (1000, "Replaced by a new connection")
        assert bridge.is_connected()

        # Old connection ending must not detach the new one
        first.disconnect()
        await asyncio.sleep(0.01)
        assert bridge.is_connected()

        second.disconnect()
        await asyncio.wait_for(task, timeout=1)
        assert bridge.is_connected() is False

    async def test_close(self, connected):
        bridge, socket = connected
        await bridge.close()
        assert socket.closed == (1001, "Server shutting down")
        assert bridge.is_connected() is False


class TestCommands:
    async def test_result_resolves_request(self, connected):
        bridge, socket = connected
        call = asyncio.create_task(bridge.send("navigate", {"url": "https://example.com"}))

        request = await socket.next_sent()
        assert request == {"id": 1, "action": "navigate", "params": {"url": "https://example.com"}}
        assert bridge.pending_count == 1

        socket.push({"type": "result", "id": request["id"], "success": True, "title": "Example"})
        assert await call == {"success": True, "title": "Example"}
        assert bridge.pending_count == 0

    async def test_ids_increase(self, connected):
        bridge, socket = connected
        first = asyncio.create_task(bridge.send("getTabs"))
        second = asyncio.create_task(bridge.send("getTabs"))
        ids = [(await socket.next_sent())["id"], (await socket.next_sent())["id"]]
        assert ids == [1, 2]

        # Responses may arrive out of order
        socket.push({"type": "result", "id": 2, "tabs": ["b"]})
        socket.push({"type": "result", "id": 1, "tabs": ["a"]})
        assert await first == {"tabs": ["a"]}
        assert await second == {"tabs": ["b"]}

    async def test_error_envelope_rejects(self, connected):
        bridge, socket = connected
        call = asyncio.create_task(bridge.send("click", {"selector": "#go"}))
        request = await socket.next_sent()

        socket.push({"type": "error", "id": request["id"], "error": "Element not found"})
        with pytest.raises(BridgeCommandError, match="Element not found"):
            await call

    async def test_timeout(self, connected):
        bridge, socket = connected
        bridge.timeout = 0.05
        with pytest.raises(BridgeTimeout, match="screenshot timed out"):
            await bridge.send("screenshot")
        assert bridge.pending_count == 0

    async def test_disconnect_leaves_outstanding_request_to_time_out(self):
        bridge = RemoteCommandBridge(timeout=0.2)
        socket = MockWebSocket()
        task = asyncio.create_task(bridge.serve(socket))
        await asyncio.sleep(0)

        call = asyncio.create_task(bridge.send("getTabs"))
        await socket.next_sent()
        socket.disconnect()
        await asyncio.wait_for(task, timeout=1)

        assert bridge.is_connected() is False
        assert not call.done()
        assert bridge.pending_count == 1

        with pytest.raises(BridgeNotConnected):
            await bridge.send("getTabs")
        with pytest.raises(BridgeTimeout):
            await call
        assert bridge.pending_count == 0

    async def test_unmatched_and_malformed_frames_ignored(self, connected):
        bridge, socket = connected
        call = asyncio.create_task(bridge.send("read"))
        request = await socket.next_sent()

        socket.push("not json")
        socket.push({"type": "result", "id": 999})
        socket.push({"type": "progress", "id": request["id"]})
        socket.push({"type": "result", "id": request["id"], "content": "page"})

        assert await call == {"content": "page"}


class TestBrowserTools:
    @pytest.fixture
    def dispatcher(self):
        return ToolDispatcher()

    async def test_without_bridge(self, dispatcher, ctx):
        result = await dispatcher.execute("BrowserGetTabs", {}, ctx)
        assert result["error"].startswith("Browser extension not connected")

    async def test_bridge_not_connected(self, dispatcher, make_ctx):
        ctx = make_ctx(bridge=RemoteCommandBridge())
        result = await dispatcher.execute("BrowserNavigate", {"url": "https://a.test"}, ctx)
        assert result["error"].startswith("Browser extension not connected")

    async def test_forwards_wire_names(self, dispatcher, make_ctx, connected):
        bridge, socket = connected
        ctx = make_ctx(bridge=bridge)
        call = asyncio.create_task(
            dispatcher.execute("BrowserNavigate", {"url": "https://a.test", "newTab": True}, ctx)
        )
        request = await socket.next_sent()
        assert request["action"] == "navigate"
        assert request["params"] == {"url": "https://a.test", "newTab": True}

        socket.push({"type": "result", "id": request["id"], "success": True})
        assert await call == {"success": True}

    async def test_remote_error_becomes_error_result(self, dispatcher, make_ctx, connected):
        bridge, socket = connected
        ctx = make_ctx(bridge=bridge)
        call = asyncio.create_task(dispatcher.execute("BrowserSwitchTab", {"tabId": 7}, ctx))
        request = await socket.next_sent()
        assert request["params"] == {"tabId": 7}

        socket.push({"type": "error", "id": request["id"], "error": "No tab with id 7"})
        assert await call == {"error": "No tab with id 7"}
