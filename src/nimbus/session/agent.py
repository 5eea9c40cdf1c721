"""The turn loop that drives a conversation against a streaming provider.

One call to :meth:`TurnController.run` handles one user prompt:

    Running --(no tool calls)--> Stopped
    Running --(tool calls)--> AwaitingTools --(results appended)--> Running
    AwaitingTools --(turn cap reached)--> Stopped
    Running --(provider or decode failure)--> Aborted

Callers consume an ordered stream of AgentEvents: ``session_init`` first,
then any of ``text``, ``thinking``, ``tool_use``, ``tool_result``, and
finally exactly one ``done`` or ``error``.
"""

from __future__ import annotations

import contextlib
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from nimbus.core.decoder import DecodedKind, EventStreamDecoder
from nimbus.core.messages import Message, ToolCall, ToolResult
from nimbus.logging import TRACE, get_logger

if TYPE_CHECKING:
    from nimbus.core.llm.provider import StreamingProvider
    from nimbus.session.store import SessionStore
    from nimbus.tools.base import ToolContext
    from nimbus.tools.dispatcher import ToolDispatcher

_log = get_logger("agent")

MAX_TURNS_NOTICE = "\n\n[Reached maximum turns]"
CANCELLED_RESULT = {"error": "Cancelled before this tool ran"}


class EventType(Enum):
    """Caller-visible event kinds."""

    SESSION_INIT = "session_init"
    TEXT = "text"
    THINKING = "thinking"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"
    ERROR = "error"
    DONE = "done"


class TurnState(Enum):
    """Turn loop states."""

    RUNNING = "running"
    AWAITING_TOOLS = "awaiting_tools"
    STOPPED = "stopped"
    ABORTED = "aborted"


@dataclass(frozen=True, slots=True)
class AgentEvent:
    """One event in the caller-facing stream.

    Attributes:
        type: Event kind.
        session_id: Session the event belongs to.
        data: Kind-specific payload (``content``, ``id``/``name``/``input``,
            ``tool_use_id``/``result``, ``message``, ``turns``).
        timestamp: Unix timestamp when the event was produced.
    """

    type: EventType
    session_id: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    @property
    def terminal(self) -> bool:
        return self.type in (EventType.DONE, EventType.ERROR)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "session_id": self.session_id, **self.data}


class TurnController:
    """Runs the bounded multi-turn loop for one session at a time.

    Args:
        provider: Streaming model endpoint.
        dispatcher: Tool dispatcher.
        store: Session store owning histories.
        make_context: Builds the ToolContext for a session id.
        system_prompt: System prompt sent with every turn.
        max_turns: Turn cap per prompt.
    """

    def __init__(
        self,
        provider: StreamingProvider,
        dispatcher: ToolDispatcher,
        store: SessionStore,
        make_context: Callable[[str], ToolContext],
        *,
        system_prompt: str | None = None,
        max_turns: int = 50,
    ) -> None:
        if max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        self._provider = provider
        self._dispatcher = dispatcher
        self._store = store
        self._make_context = make_context
        self._system_prompt = system_prompt
        self.max_turns = max_turns
        self.last_state: dict[str, TurnState] = {}

    def state(self, session_id: str) -> TurnState | None:
        """State the session's most recent run is in (or ended in)."""
        return self.last_state.get(session_id)

    def forget(self, session_id: str) -> None:
        """Drop the recorded state for a cleared session."""
        self.last_state.pop(session_id, None)

    def _set_state(self, session_id: str, state: TurnState) -> None:
        self.last_state[session_id] = state
        _log.log(TRACE, "[%s] -> %s", session_id, state.value)

    async def run(self, session_id: str, prompt: str) -> AsyncIterator[AgentEvent]:
        """Handle one user prompt, yielding events until done or error.

        Concurrent runs for the same session are serialized. Cancelling the
        consuming task stops the run without a terminal event.
        """
        session = self._store.get_or_create(session_id)
        async with session.turn_lock:
            async with contextlib.aclosing(self._run_locked(session_id, prompt)) as events:
                async for event in events:
                    yield event

    async def _run_locked(self, session_id: str, prompt: str) -> AsyncIterator[AgentEvent]:
        session = self._store.get_or_create(session_id)
        history = session.history
        ctx = self._make_context(session_id)
        tools = self._dispatcher.schemas()

        def event(kind: EventType, **data: Any) -> AgentEvent:
            return AgentEvent(kind, session_id, data)

        yield event(EventType.SESSION_INIT, model=self._provider.model)
        history.append(Message.user(prompt))
        _log.info("[%s] prompt received (%d messages in history)", session_id, len(history))

        turns = 0
        while True:
            turns += 1
            self._set_state(session_id, TurnState.RUNNING)
            decoder = EventStreamDecoder()
            try:
                async for raw in self._provider.stream(
                    history.to_list(), system=self._system_prompt, tools=tools
                ):
                    for decoded in decoder.feed(raw):
                        if decoded.kind is DecodedKind.TEXT:
                            yield event(EventType.TEXT, content=decoded.text)
                        elif decoded.kind is DecodedKind.REASONING:
                            yield event(EventType.THINKING, content=decoded.text)
                turn = decoder.result()
            except Exception as e:
                self._set_state(session_id, TurnState.ABORTED)
                _log.error("[%s] turn %d aborted: %s", session_id, turns, e)
                yield event(EventType.ERROR, message=str(e) or type(e).__name__, turns=turns)
                return

            _log.debug(
                "[%s] turn %d: %d chars, %d tool calls, stop=%s",
                session_id,
                turns,
                len(turn.text),
                len(turn.tool_calls),
                turn.stop_reason,
            )

            if not turn.tool_calls:
                if turn.content:
                    history.append(Message.assistant(turn.content))
                self._set_state(session_id, TurnState.STOPPED)
                yield event(EventType.DONE, turns=turns, stop_reason=turn.stop_reason)
                return

            self._set_state(session_id, TurnState.AWAITING_TOOLS)
            history.append(Message.assistant(turn.content))
            results: list[ToolResult] = []
            try:
                for call in turn.tool_calls:
                    yield event(EventType.TOOL_USE, id=call.id, name=call.name, input=call.input)
                    payload = await self._dispatcher.execute(call.name, call.input, ctx)
                    results.append(ToolResult(call.id, payload))
                    yield event(
                        EventType.TOOL_RESULT,
                        tool_use_id=call.id,
                        name=call.name,
                        result=payload,
                        is_error="error" in payload,
                    )
            finally:
                # Every tool_use in history gets a result, even when interrupted
                history.append(Message.tool_results(_pad_results(turn.tool_calls, results)))

            if turns >= self.max_turns:
                _log.warning("[%s] stopped after reaching %d turns", session_id, turns)
                self._set_state(session_id, TurnState.STOPPED)
                yield event(EventType.TEXT, content=MAX_TURNS_NOTICE)
                yield event(EventType.DONE, turns=turns, stop_reason="max_turns")
                return


def _pad_results(calls: list[ToolCall], results: list[ToolResult]) -> list[ToolResult]:
    done = {r.tool_use_id for r in results}
    return results + [ToolResult(c.id, dict(CANCELLED_RESULT)) for c in calls if c.id not in done]


async def collect(events: AsyncIterator[AgentEvent]) -> list[AgentEvent]:
    """Drain an event stream into a list."""
    return [e async for e in events]
