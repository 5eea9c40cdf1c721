"""FastAPI routes: streaming chat, permission and deletion control, bridge socket."""

from __future__ import annotations

import asyncio
import contextlib
import json
import time
from collections.abc import AsyncIterator
from typing import Any, Literal

from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

import nimbus
from nimbus.logging import get_logger
from nimbus.runtime import NimbusRuntime
from nimbus.session import DeletionError

_log = get_logger("server")

DEFAULT_SESSION = "default"

_SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class ChatRequest(BaseModel):
    message: str = ""
    chatId: str = DEFAULT_SESSION


class PermissionRequest(BaseModel):
    permissionId: str


class DeletionRequest(BaseModel):
    deletionId: str


class ValidateRequest(BaseModel):
    path: str
    operation: Literal["read", "write", "delete", "execute", "list", "search"]
    sessionId: str = DEFAULT_SESSION


def create_app(runtime: NimbusRuntime) -> FastAPI:
    """Create the FastAPI application around a runtime."""
    app = FastAPI(
        title="Nimbus",
        description="Streaming tool-using agent with a capability gate",
        version=nimbus.__version__,
    )
    app.state.runtime = runtime
    _register_routes(app)
    return app


def _runtime(request: Request) -> NimbusRuntime:
    return request.app.state.runtime


def sse_frame(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, default=str)}\n\n"


async def stream_events(
    runtime: NimbusRuntime, session_id: str, message: str, heartbeat: float
) -> AsyncIterator[str]:
    """Run one prompt and render its events as SSE frames.

    A ``: heartbeat`` comment is written whenever no event arrived for
    ``heartbeat`` seconds. Closing this generator cancels the run.
    """
    queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()

    async def produce() -> None:
        try:
            async for event in runtime.run(session_id, message):
                await queue.put(event.to_dict())
        except Exception as e:
            _log.exception("Chat run for %s failed", session_id)
            await queue.put({"type": "error", "session_id": session_id, "message": str(e)})
        finally:
            await queue.put(None)

    producer = asyncio.create_task(produce())
    try:
        while True:
            try:
                payload = await asyncio.wait_for(queue.get(), timeout=heartbeat)
            except asyncio.TimeoutError:
                yield ": heartbeat\n\n"
                continue
            if payload is None:
                return
            yield sse_frame(payload)
    finally:
        if not producer.done():
            _log.info("Client left; cancelling run for %s", session_id)
            producer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await producer


def _register_routes(app: FastAPI) -> None:
    """Register all API routes."""

    @app.post("/api/chat", response_model=None)
    async def api_chat(body: ChatRequest, request: Request) -> StreamingResponse | JSONResponse:
        """Stream one agent run as server-sent events."""
        runtime = _runtime(request)
        if not body.message.strip():
            return JSONResponse({"error": "Message is required"}, status_code=400)
        _log.info("[%s] chat: %.50s", body.chatId, body.message)
        return StreamingResponse(
            stream_events(
                runtime, body.chatId, body.message, runtime.config.server.heartbeat_interval
            ),
            media_type="text/event-stream",
            headers=_SSE_HEADERS,
        )

    @app.get("/api/health")
    async def api_health(request: Request) -> dict[str, Any]:
        runtime = _runtime(request)
        return {
            "status": "ok",
            "timestamp": time.time(),
            "version": nimbus.__version__,
            "model": runtime.provider.model,
            "features": {
                "browser": runtime.bridge.is_connected(),
                "sandbox": True,
                "tools": len(runtime.dispatcher.names),
            },
        }

    @app.get("/api/browser-status")
    async def api_browser_status(request: Request) -> dict[str, Any]:
        return _runtime(request).bridge.status()

    # Permissions

    @app.get("/api/pending-permissions")
    async def api_pending_permissions(
        request: Request, sessionId: str | None = None
    ) -> dict[str, Any]:
        pending = [p.to_dict() for p in _runtime(request).gate.list_pending(sessionId)]
        return {"pending": pending, "count": len(pending)}

    @app.post("/api/confirm-permission")
    async def api_confirm_permission(body: PermissionRequest, request: Request) -> dict[str, Any]:
        pending = _runtime(request).gate.approve(body.permissionId)
        if pending is None:
            return {"error": "Permission not found"}
        return {"approved": True, "path": pending.path}

    @app.post("/api/deny-permission")
    async def api_deny_permission(body: PermissionRequest, request: Request) -> dict[str, Any]:
        pending = _runtime(request).gate.deny(body.permissionId)
        if pending is None:
            return {"error": "Permission not found"}
        return {"denied": True, "path": pending.path}

    @app.post("/api/sandbox/validate")
    async def api_sandbox_validate(body: ValidateRequest, request: Request) -> dict[str, Any]:
        outcome = _runtime(request).gate.classify(body.sessionId, body.path, body.operation)
        return outcome.to_dict()

    @app.get("/api/audit")
    async def api_audit(request: Request, limit: int = 100) -> dict[str, Any]:
        entries = _runtime(request).gate.audit_log(limit)
        return {"entries": entries, "count": len(entries)}

    # Deletions

    @app.get("/api/pending-deletions")
    async def api_pending_deletions(
        request: Request, sessionId: str | None = None
    ) -> dict[str, Any]:
        pending = [d.to_dict() for d in _runtime(request).deletions.list_pending(sessionId)]
        return {"pending": pending, "count": len(pending)}

    @app.post("/api/confirm-deletion")
    async def api_confirm_deletion(body: DeletionRequest, request: Request) -> dict[str, Any]:
        try:
            return await _runtime(request).deletions.confirm(body.deletionId)
        except DeletionError as e:
            return {"error": str(e)}

    @app.post("/api/cancel-deletion")
    async def api_cancel_deletion(body: DeletionRequest, request: Request) -> dict[str, Any]:
        try:
            pending = _runtime(request).deletions.cancel(body.deletionId)
        except DeletionError as e:
            return {"error": str(e)}
        return {"cancelled": True, "path": pending.path}

    # Sessions

    @app.get("/api/progress")
    async def api_progress(request: Request, sessionId: str = DEFAULT_SESSION) -> dict[str, Any]:
        session = _runtime(request).store.get(sessionId)
        entries = list(session.progress) if session else []
        return {"progress": entries, "count": len(entries)}

    @app.post("/api/sessions/{session_id}/clear")
    async def api_clear_session(session_id: str, request: Request) -> dict[str, Any]:
        _runtime(request).clear_session(session_id)
        return {"cleared": True, "sessionId": session_id}

    @app.websocket(app.state.runtime.config.bridge.path)
    async def browser_socket(websocket: WebSocket) -> None:
        """Duplex channel to the browser extension."""
        await websocket.app.state.runtime.bridge.serve(websocket)
