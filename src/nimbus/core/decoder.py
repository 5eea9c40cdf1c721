"""Incremental decoding of streamed provider events into one turn's result.

The provider stream is a sequence of JSON events shaped like::

    {"type": "content_block_start", "index": 0, "content_block": {"type": "tool_use", ...}}
    {"type": "content_block_delta", "index": 0, "delta": {"type": "input_json_delta", ...}}
    {"type": "content_block_stop", "index": 0}
    {"type": "message_delta", "delta": {"stop_reason": "tool_use"}}

EventStreamDecoder is a reducer over that sequence. Feed it events one by one
and it returns the semantic events each one produced; ``result()`` returns the
accumulated TurnResult. A decoder instance covers exactly one turn.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from nimbus.core.messages import ContentBlock, TextBlock, ThinkingBlock, ToolCall
from nimbus.errors import ProviderError
from nimbus.logging import TRACE, get_logger

_log = get_logger("decoder")


class DecodedKind(Enum):
    """Kinds of semantic events produced by the decoder."""

    TEXT = "text"
    REASONING = "reasoning"
    TOOL_START = "tool_start"
    TOOL_DELTA = "tool_delta"
    TOOL_STOP = "tool_stop"
    TURN_END = "turn_end"


@dataclass(frozen=True, slots=True)
class DecodedEvent:
    """One semantic event.

    Attributes:
        kind: What happened.
        text: Text or reasoning fragment, or raw JSON fragment for TOOL_DELTA.
        tool_call: The completed call for TOOL_STOP, or a shell
            (id and name, empty input) for TOOL_START and TOOL_DELTA.
        stop_reason: Set for TURN_END.
    """

    kind: DecodedKind
    text: str = ""
    tool_call: ToolCall | None = None
    stop_reason: str | None = None


@dataclass
class TurnResult:
    """Everything one provider turn produced."""

    text_chunks: list[str] = field(default_factory=list)
    reasoning: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    stop_reason: str | None = None
    content: list[ContentBlock] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(self.text_chunks)


@dataclass
class _OpenBlock:
    kind: str
    parts: list[str] = field(default_factory=list)
    tool_id: str = ""
    tool_name: str = ""
    preset_input: dict[str, Any] | None = None
    signature: str = ""
    closed: bool = False
    block: ContentBlock | None = None


class EventStreamDecoder:
    """Reduces a provider event stream into a TurnResult.

    Malformed events are skipped. A tool-use block whose accumulated JSON
    cannot be parsed yields a ToolCall with empty input.
    """

    def __init__(self) -> None:
        self._blocks: dict[int, _OpenBlock] = {}
        self._order: list[int] = []
        self._current: int | None = None
        self._text_chunks: list[str] = []
        self._reasoning: list[str] = []
        self._tool_calls: list[ToolCall] = []
        self._stop_reason: str | None = None

    def feed(self, event: Any) -> list[DecodedEvent]:
        """Apply one provider event.

        Raises:
            ProviderError: The stream carried an explicit error event.
        """
        if not isinstance(event, dict):
            _log.log(TRACE, "Skipping non-object event: %r", event)
            return []

        kind = event.get("type")
        if kind == "error":
            error = event.get("error")
            message = error.get("message") if isinstance(error, dict) else None
            raise ProviderError(None, message or json.dumps(event))

        handler = self._HANDLERS.get(kind)
        if handler is None:
            return []
        try:
            return handler(self, event)
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            _log.debug("Skipping malformed %s event: %s", kind, e)
            return []

    def feed_all(self, events: Iterable[Any]) -> TurnResult:
        for event in events:
            self.feed(event)
        return self.result()

    def result(self) -> TurnResult:
        """Return the accumulated turn, closing any block the stream left open."""
        for index in self._order:
            block = self._blocks[index]
            if not block.closed:
                self._close(block)

        content: list[ContentBlock] = []
        for index in self._order:
            block = self._blocks[index]
            if block.block is not None:
                content.append(block.block)

        return TurnResult(
            text_chunks=list(self._text_chunks),
            reasoning="".join(self._reasoning),
            tool_calls=list(self._tool_calls),
            stop_reason=self._stop_reason,
            content=content,
        )

    # Event handlers

    def _on_block_start(self, event: dict[str, Any]) -> list[DecodedEvent]:
        block_data = event["content_block"]
        block_type = block_data["type"]
        index = self._index_of(event, new=True)

        if block_type == "tool_use":
            preset = block_data.get("input")
            block = _OpenBlock(
                kind="tool_use",
                tool_id=str(block_data["id"]),
                tool_name=str(block_data["name"]),
                preset_input=preset if isinstance(preset, dict) and preset else None,
            )
            self._open(index, block)
            shell = ToolCall(id=block.tool_id, name=block.tool_name)
            return [DecodedEvent(DecodedKind.TOOL_START, tool_call=shell)]

        if block_type in ("text", "thinking"):
            block = _OpenBlock(kind=block_type)
            self._open(index, block)
            initial = block_data.get(block_type) or ""
            if initial:
                return self._append_text(block, initial)
            return []

        # Other block kinds (redacted thinking, server tools) are tracked but not surfaced
        self._open(index, _OpenBlock(kind=block_type))
        return []

    def _on_block_delta(self, event: dict[str, Any]) -> list[DecodedEvent]:
        delta = event["delta"]
        delta_type = delta["type"]
        index = self._index_of(event)

        if delta_type == "text_delta":
            block = self._block_for(index, "text")
            return self._append_text(block, delta["text"])

        if delta_type == "thinking_delta":
            block = self._block_for(index, "thinking")
            return self._append_text(block, delta["thinking"])

        if delta_type == "signature_delta":
            block = self._block_for(index, "thinking")
            block.signature += delta["signature"]
            return []

        if delta_type == "input_json_delta":
            block = self._blocks[index]
            if block.kind != "tool_use" or block.closed:
                raise ValueError(f"input_json_delta for non-tool block {index}")
            fragment = delta["partial_json"]
            if not isinstance(fragment, str):
                raise TypeError("partial_json must be a string")
            block.parts.append(fragment)
            shell = ToolCall(id=block.tool_id, name=block.tool_name)
            return [DecodedEvent(DecodedKind.TOOL_DELTA, text=fragment, tool_call=shell)]

        return []

    def _on_block_stop(self, event: dict[str, Any]) -> list[DecodedEvent]:
        index = self._index_of(event)
        block = self._blocks[index]
        if block.closed:
            return []
        self._close(block)
        if isinstance(block.block, ToolCall):
            return [DecodedEvent(DecodedKind.TOOL_STOP, tool_call=block.block)]
        return []

    def _on_message_delta(self, event: dict[str, Any]) -> list[DecodedEvent]:
        stop_reason = event["delta"].get("stop_reason")
        if stop_reason is None:
            return []
        self._stop_reason = str(stop_reason)
        return [DecodedEvent(DecodedKind.TURN_END, stop_reason=self._stop_reason)]

    _HANDLERS = {
        "content_block_start": _on_block_start,
        "content_block_delta": _on_block_delta,
        "content_block_stop": _on_block_stop,
        "message_delta": _on_message_delta,
    }

    # Helpers

    def _index_of(self, event: dict[str, Any], new: bool = False) -> int:
        index = event.get("index")
        if isinstance(index, int):
            return index
        if new or self._current is None:
            return max(self._order, default=-1) + 1
        return self._current

    def _open(self, index: int, block: _OpenBlock) -> None:
        previous = self._blocks.get(index)
        if previous is not None and not previous.closed:
            self._close(previous)
        if index not in self._blocks:
            self._order.append(index)
        self._blocks[index] = block
        self._current = index

    def _block_for(self, index: int, kind: str) -> _OpenBlock:
        # Deltas may arrive without a start event; open an implicit block for them
        block = self._blocks.get(index)
        if block is None or block.closed:
            block = _OpenBlock(kind=kind)
            self._open(index, block)
        elif block.kind != kind:
            raise ValueError(f"{kind} delta for {block.kind} block {index}")
        return block

    def _append_text(self, block: _OpenBlock, fragment: str) -> list[DecodedEvent]:
        if not isinstance(fragment, str):
            raise TypeError("delta text must be a string")
        block.parts.append(fragment)
        if block.kind == "thinking":
            self._reasoning.append(fragment)
            return [DecodedEvent(DecodedKind.REASONING, text=fragment)]
        self._text_chunks.append(fragment)
        return [DecodedEvent(DecodedKind.TEXT, text=fragment)]

    def _close(self, block: _OpenBlock) -> None:
        block.closed = True
        if block.kind == "tool_use":
            call = ToolCall(
                id=block.tool_id,
                name=block.tool_name,
                input=parse_tool_input("".join(block.parts), block.preset_input),
            )
            block.block = call
            self._tool_calls.append(call)
        elif block.kind == "text":
            text = "".join(block.parts)
            if text:
                block.block = TextBlock(text)
        elif block.kind == "thinking" and block.signature:
            block.block = ThinkingBlock("".join(block.parts), block.signature)


def parse_tool_input(raw: str, default: dict[str, Any] | None = None) -> dict[str, Any]:
    """Parse accumulated tool-input JSON, falling back to an empty object."""
    if not raw.strip():
        return dict(default) if default else {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        _log.debug("Unparseable tool input (%s): %.200s", e, raw)
        return {}
    if not isinstance(value, dict):
        _log.debug("Tool input is not an object: %.200s", raw)
        return {}
    return value


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[dict[str, Any]]:
    """Turn server-sent-event lines into JSON event objects.

    Only ``data:`` lines are considered. ``[DONE]`` markers and lines that do
    not hold a JSON object are skipped.
    """
    async for line in lines:
        line = line.strip()
        if not line.startswith("data:"):
            continue
        payload = line[5:].strip()
        if not payload or payload == "[DONE]":
            continue
        try:
            event = json.loads(payload)
        except json.JSONDecodeError:
            _log.debug("Skipping malformed SSE line: %.200s", payload)
            continue
        if isinstance(event, dict):
            yield event
