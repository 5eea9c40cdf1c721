"""Request/response correlation over the browser extension's WebSocket.

The extension is a separate automation surface that connects to
``/browser``. Tool handlers call :meth:`RemoteCommandBridge.send`, which
writes ``{id, action, params}`` and waits for a matching
``{type: "result" | "error", id, ...}`` envelope.

Inbound frames are queued by the reader and handled by a single pump task
that owns the outstanding-request table. A request ends in exactly one of
three ways: resolved with a result, rejected with the remote error, or
rejected by its timeout. Closing the connection resolves nothing; pending
requests run to their timeout and new sends fail with "not connected".
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
from typing import TYPE_CHECKING, Any

from fastapi import WebSocketDisconnect

from nimbus.errors import BridgeCommandError, BridgeNotConnected, BridgeTimeout
from nimbus.logging import get_logger

if TYPE_CHECKING:
    from fastapi import WebSocket

_log = get_logger("bridge")

_CLOSE = object()  # Inbound queue sentinel


class RemoteCommandBridge:
    """Owns the single duplex connection to the browser extension.

    Args:
        timeout: Seconds a command may wait for its response.
    """

    def __init__(self, timeout: float = 30.0) -> None:
        self.timeout = timeout
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future[dict[str, Any]]] = {}
        self._socket: WebSocket | None = None
        self._client_info: dict[str, Any] = {}

    def is_connected(self) -> bool:
        return self._socket is not None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def status(self) -> dict[str, Any]:
        return {
            "connected": self.is_connected(),
            "client": self._client_info.get("client"),
            "version": self._client_info.get("version"),
            "pending": self.pending_count,
        }

    async def send(self, action: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send one command and wait for its response.

        Raises:
            BridgeNotConnected: No extension is connected.
            BridgeTimeout: No response arrived within ``timeout`` seconds.
            BridgeCommandError: The extension answered with an error envelope.
        """
        socket = self._socket
        if socket is None:
            raise BridgeNotConnected()

        request_id = next(self._ids)
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await socket.send_text(
                json.dumps({"id": request_id, "action": action, "params": params or {}})
            )
            _log.debug("-> #%d %s", request_id, action)
            return await asyncio.wait_for(future, timeout=self.timeout)
        except asyncio.TimeoutError:
            _log.warning("Browser command #%d %s timed out", request_id, action)
            raise BridgeTimeout(action, request_id) from None
        finally:
            self._pending.pop(request_id, None)

    async def serve(self, websocket: WebSocket) -> None:
        """Run a connection until the extension disconnects.

        A new connection replaces the current one.
        """
        await websocket.accept()
        previous, self._socket = self._socket, websocket
        self._client_info = {}
        if previous is not None:
            _log.info("Replacing existing browser extension connection")
            with contextlib.suppress(Exception):
                await previous.close(code=1000, reason="Replaced by a new connection")
        _log.info("Browser extension connected")

        inbound: asyncio.Queue[Any] = asyncio.Queue()
        pump = asyncio.create_task(self._pump(inbound, websocket))
        try:
            while True:
                await inbound.put(await websocket.receive_text())
        except WebSocketDisconnect:
            pass
        finally:
            await inbound.put(_CLOSE)
            await pump
            if self._socket is websocket:
                self._socket = None
                _log.info(
                    "Browser extension disconnected (%d requests pending)", self.pending_count
                )

    async def close(self) -> None:
        """Close the active connection, if any."""
        socket, self._socket = self._socket, None
        if socket is not None:
            with contextlib.suppress(Exception):
                await socket.close(code=1001, reason="Server shutting down")

    async def _pump(self, inbound: asyncio.Queue[Any], websocket: WebSocket) -> None:
        while True:
            frame = await inbound.get()
            if frame is _CLOSE:
                return
            await self._handle(frame, websocket)

    async def _handle(self, frame: str, websocket: WebSocket) -> None:
        try:
            envelope = json.loads(frame)
        except json.JSONDecodeError:
            _log.warning("Ignoring malformed bridge frame: %.200s", frame)
            return
        if not isinstance(envelope, dict):
            return

        kind = envelope.get("type")
        if kind == "register":
            self._client_info = {
                "client": envelope.get("client"),
                "version": envelope.get("version"),
            }
            _log.info(
                "Extension registered: %s v%s", envelope.get("client"), envelope.get("version")
            )
            with contextlib.suppress(Exception):
                await websocket.send_text(json.dumps({"type": "registered", "status": "ok"}))
            return

        if kind not in ("result", "error"):
            _log.debug("Ignoring bridge frame of type %r", kind)
            return

        request_id = envelope.get("id")
        future = self._pending.pop(request_id, None) if isinstance(request_id, int) else None
        if future is None or future.done():
            _log.debug("No pending request for response id %r", request_id)
            return

        _log.debug("<- #%d %s", request_id, kind)
        if kind == "error":
            future.set_exception(BridgeCommandError(str(envelope.get("error", "Unknown error"))))
        else:
            future.set_result({k: v for k, v in envelope.items() if k not in ("type", "id")})
