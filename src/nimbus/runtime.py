"""NimbusRuntime: wires the store, gate, dispatcher, bridge and provider together.

Usage:
    from nimbus.config import load_config
    from nimbus.runtime import NimbusRuntime

    async with NimbusRuntime(load_config()) as runtime:
        async for event in runtime.run("chat-1", "List the files here"):
            print(event.to_dict())

The server and the chat REPL both go through this class so they share one
set of session state.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

import httpx

from nimbus.bridge import RemoteCommandBridge
from nimbus.config import Config
from nimbus.core.llm import StreamingProvider, create_provider
from nimbus.logging import get_logger
from nimbus.prompts import build_system_prompt
from nimbus.session import CapabilityGate, DeletionManager, InMemorySessionStore, SessionStore
from nimbus.session.agent import AgentEvent, TurnController
from nimbus.terminal import ShellExecutor, SubprocessShellExecutor
from nimbus.tools import ToolContext, ToolDispatcher
from nimbus.tools.web import USER_AGENT

_log = get_logger("runtime")


class NimbusRuntime:
    """Composition root for one agent process.

    Args:
        config: Loaded configuration.
        provider: Model provider. Built from ``config.llm`` when omitted.
        store: Session store. A fresh in-memory store when omitted.
        executor: Shell executor. Runs in ``cwd`` when omitted.
        dispatcher: Tool dispatcher. The full tool set when omitted.
        cwd: Working directory for relative paths and shell commands.
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        provider: StreamingProvider | None = None,
        store: SessionStore | None = None,
        executor: ShellExecutor | None = None,
        dispatcher: ToolDispatcher | None = None,
        cwd: str | Path | None = None,
    ) -> None:
        self.config = config or Config()
        self.cwd = Path(cwd) if cwd is not None else Path.cwd()
        self.store = store or InMemorySessionStore(
            history_limit=self.config.agent.history_limit,
            history_trim_to=self.config.agent.history_trim_to,
        )
        self.gate = CapabilityGate(self.store, self.config.sandbox)
        self.deletions = DeletionManager(self.store)
        self.executor = executor or SubprocessShellExecutor(str(self.cwd))
        self.bridge = RemoteCommandBridge(timeout=self.config.bridge.timeout)
        self.dispatcher = dispatcher or ToolDispatcher()
        self.provider = provider or create_provider(self.config.llm)
        self._http: httpx.AsyncClient | None = None
        self.controller = TurnController(
            self.provider,
            self.dispatcher,
            self.store,
            self.make_context,
            system_prompt=build_system_prompt(str(self.cwd)),
            max_turns=self.config.agent.max_turns,
        )

    async def __aenter__(self) -> NimbusRuntime:
        _log.info(
            "Runtime started (model=%s, tools=%d, cwd=%s)",
            self.provider.model,
            len(self.dispatcher.names),
            self.cwd,
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.aclose()

    @property
    def http(self) -> httpx.AsyncClient:
        """Shared client for the web tools, created on first use."""
        if self._http is None:
            self._http = httpx.AsyncClient(
                follow_redirects=True,
                timeout=self.config.tools.fetch_timeout,
                headers={"User-Agent": USER_AGENT},
            )
        return self._http

    def make_context(self, session_id: str) -> ToolContext:
        return ToolContext(
            session_id=session_id,
            store=self.store,
            gate=self.gate,
            deletions=self.deletions,
            executor=self.executor,
            bridge=self.bridge,
            config=self.config.tools,
            cwd=self.cwd,
            http=self.http,
        )

    def run(self, session_id: str, prompt: str) -> AsyncIterator[AgentEvent]:
        """Run one prompt for a session. See TurnController.run."""
        return self.controller.run(session_id, prompt)

    def clear_session(self, session_id: str) -> None:
        """Drop history, decisions and pending requests for a session."""
        self.gate.clear_session(session_id)
        self.controller.forget(session_id)
        _log.info("Session %s cleared", session_id)

    async def aclose(self) -> None:
        await self.bridge.close()
        await self.provider.aclose()
        if self._http is not None:
            await self._http.aclose()
            self._http = None
