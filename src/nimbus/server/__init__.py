"""HTTP and WebSocket surface for Nimbus."""

from __future__ import annotations

from nimbus.logging import get_logger
from nimbus.runtime import NimbusRuntime
from nimbus.server.routes import create_app, sse_frame, stream_events

_log = get_logger("server")


async def serve(runtime: NimbusRuntime, host: str | None = None, port: int | None = None) -> None:
    """Run the API server until it is stopped.

    Args:
        runtime: Runtime whose sessions the server exposes.
        host: Bind address (``server.host`` from config when None).
        port: Port (``server.port`` from config when None).
    """
    import uvicorn

    host = host or runtime.config.server.host
    port = port or runtime.config.server.port
    config = uvicorn.Config(
        create_app(runtime),
        host=host,
        port=port,
        log_config=None,  # uvicorn loggers are set up by setup_logging
        access_log=False,
    )
    server = uvicorn.Server(config)
    _log.info("Nimbus listening on http://%s:%d (bridge at ws://%s:%d%s)",
              host, port, host, port, runtime.config.bridge.path)
    await server.serve()


__all__ = ["create_app", "serve", "sse_frame", "stream_events"]
