"""LiteLLM provider implementation.

Supports the providers litellm knows about:
- Anthropic: "anthropic/claude-sonnet-4-5"
- OpenAI: "gpt-4o"
- Local: "ollama/llama3.1", "ollama/qwen2.5-coder"

litellm streams OpenAI-shaped chunks. This module converts the conversation
into OpenAI message format on the way in and re-expresses the chunks as
content-block events on the way out, so the rest of Nimbus sees a single
event shape regardless of backend.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import litellm

from nimbus.errors import ProviderError
from nimbus.logging import get_logger

_log = get_logger("provider")

# OpenAI finish_reason -> content-block stop_reason
_FINISH_REASONS = {
    "stop": "end_turn",
    "tool_calls": "tool_use",
    "function_call": "tool_use",
    "length": "max_tokens",
    "content_filter": "refusal",
}


def to_openai_messages(
    messages: list[dict[str, Any]], system: str | None = None
) -> list[dict[str, Any]]:
    """Convert content-block messages into OpenAI chat messages."""
    converted: list[dict[str, Any]] = []
    if system:
        converted.append({"role": "system", "content": system})

    for message in messages:
        role = message["role"]
        content = message["content"]
        if isinstance(content, str):
            converted.append({"role": role, "content": content})
            continue

        texts = [b["text"] for b in content if b.get("type") == "text"]
        if role == "assistant":
            entry: dict[str, Any] = {"role": "assistant", "content": "".join(texts) or None}
            tool_calls = [
                {
                    "id": b["id"],
                    "type": "function",
                    "function": {"name": b["name"], "arguments": json.dumps(b["input"])},
                }
                for b in content
                if b.get("type") == "tool_use"
            ]
            if tool_calls:
                entry["tool_calls"] = tool_calls
            converted.append(entry)
            continue

        for block in content:
            if block.get("type") == "tool_result":
                converted.append(
                    {
                        "role": "tool",
                        "tool_call_id": block["tool_use_id"],
                        "content": block["content"],
                    }
                )
        if texts:
            converted.append({"role": "user", "content": "".join(texts)})

    return converted


def to_openai_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Convert ``{name, description, input_schema}`` schemas to function tools."""
    return [
        {
            "type": "function",
            "function": {
                "name": t["name"],
                "description": t.get("description", ""),
                "parameters": t.get("input_schema", {"type": "object", "properties": {}}),
            },
        }
        for t in tools
    ]


class _BlockEmitter:
    """Tracks open content blocks while re-expressing OpenAI deltas."""

    def __init__(self) -> None:
        self._next_index = 0
        self._open_kind: str | None = None
        self._open_index: int | None = None
        self._tools: dict[int, int] = {}  # OpenAI tool index -> block index

    def _start(self, block: dict[str, Any]) -> tuple[int, dict[str, Any]]:
        index = self._next_index
        self._next_index += 1
        return index, {"type": "content_block_start", "index": index, "content_block": block}

    def _close_open(self) -> list[dict[str, Any]]:
        if self._open_index is None:
            return []
        event = {"type": "content_block_stop", "index": self._open_index}
        self._open_index = None
        self._open_kind = None
        return [event]

    def text(self, kind: str, fragment: str) -> list[dict[str, Any]]:
        events: list[dict[str, Any]] = []
        if self._open_kind != kind:
            events.extend(self._close_open())
            index, start = self._start({"type": kind, kind: ""})
            events.append(start)
            self._open_index = index
            self._open_kind = kind
        delta_type = "thinking_delta" if kind == "thinking" else "text_delta"
        events.append(
            {
                "type": "content_block_delta",
                "index": self._open_index,
                "delta": {"type": delta_type, kind: fragment},
            }
        )
        return events

    def tool(self, tool_delta: Any) -> list[dict[str, Any]]:
        events: list[dict[str, Any]] = []
        tool_index = getattr(tool_delta, "index", None)
        if not isinstance(tool_index, int):
            tool_index = len(self._tools)
        function = getattr(tool_delta, "function", None)
        name = getattr(function, "name", None)
        arguments = getattr(function, "arguments", None)

        if tool_index not in self._tools:
            events.extend(self._close_open())
            call_id = getattr(tool_delta, "id", None)
            if not isinstance(call_id, str) or not call_id:
                call_id = f"call_{self._next_index}"
            index, start = self._start(
                {"type": "tool_use", "id": call_id, "name": name or "", "input": {}}
            )
            self._tools[tool_index] = index
            events.append(start)

        if isinstance(arguments, str) and arguments:
            events.append(
                {
                    "type": "content_block_delta",
                    "index": self._tools[tool_index],
                    "delta": {"type": "input_json_delta", "partial_json": arguments},
                }
            )
        return events

    def finish(self, finish_reason: str | None) -> list[dict[str, Any]]:
        events = self._close_open()
        for index in self._tools.values():
            events.append({"type": "content_block_stop", "index": index})
        self._tools.clear()
        stop_reason = _FINISH_REASONS.get(finish_reason or "stop", finish_reason)
        events.append({"type": "message_delta", "delta": {"stop_reason": stop_reason}})
        return events


class LiteLLMProvider:
    """Streaming provider backed by litellm.

    Usage:
        provider = LiteLLMProvider("ollama/llama3.1", api_base="http://localhost:11434")
    """

    def __init__(
        self,
        model: str,
        *,
        api_key: str | None = None,
        api_base: str | None = None,
        max_tokens: int = 8192,
        **kwargs: Any,
    ) -> None:
        """Initialize the provider.

        Args:
            model: litellm model identifier.
            api_key: API key (litellm falls back to provider env vars).
            api_base: Custom API base URL.
            max_tokens: Output token cap per turn.
            **kwargs: Additional litellm options.
        """
        self._model = model
        self._api_key = api_key
        self._api_base = api_base
        self._max_tokens = max_tokens
        self._kwargs = kwargs

    @property
    def model(self) -> str:
        return self._model

    def _build_kwargs(
        self,
        messages: list[dict[str, Any]],
        system: str | None,
        tools: list[dict[str, Any]] | None,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": to_openai_messages(messages, system),
            "max_tokens": self._max_tokens,
            "stream": True,
        }
        if tools:
            kwargs["tools"] = to_openai_tools(tools)
            kwargs["tool_choice"] = "auto"
        if self._api_key:
            kwargs["api_key"] = self._api_key
        if self._api_base:
            kwargs["api_base"] = self._api_base
        kwargs.update(self._kwargs)
        return kwargs

    async def stream(
        self,
        messages: list[dict[str, Any]],
        *,
        system: str | None = None,
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        kwargs = self._build_kwargs(messages, system, tools)
        try:
            response = await litellm.acompletion(**kwargs)
        except Exception as e:
            raise ProviderError(getattr(e, "status_code", None), str(e)) from e

        emitter = _BlockEmitter()
        finish_reason: str | None = None
        async for chunk in response:
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            delta = choice.delta

            reasoning = getattr(delta, "reasoning_content", None)
            if isinstance(reasoning, str) and reasoning:
                for event in emitter.text("thinking", reasoning):
                    yield event

            content = getattr(delta, "content", None)
            if isinstance(content, str) and content:
                for event in emitter.text("text", content):
                    yield event

            tool_calls = getattr(delta, "tool_calls", None)
            if isinstance(tool_calls, list):
                for tool_delta in tool_calls:
                    for event in emitter.tool(tool_delta):
                        yield event

            if isinstance(choice.finish_reason, str):
                finish_reason = choice.finish_reason

        _log.debug("litellm turn finished: %s", finish_reason)
        for event in emitter.finish(finish_reason):
            yield event

    async def aclose(self) -> None:
        return None
