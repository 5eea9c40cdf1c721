"""Conversation data model: messages, content blocks and bounded history."""

from __future__ import annotations

import json
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class Role(Enum):
    """Message role in a conversation."""

    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True, slots=True)
class TextBlock:
    """Plain text content."""

    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True, slots=True)
class ThinkingBlock:
    """Reasoning content, replayed to the provider only when it carries a signature."""

    thinking: str
    signature: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "thinking", "thinking": self.thinking, "signature": self.signature}


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A tool invocation emitted by the model.

    Attributes:
        id: Provider-assigned id, echoed unchanged in the paired ToolResult.
        name: Tool name as emitted by the model.
        input: Parsed structured input (``{}`` when the raw JSON was unusable).
    """

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": self.input}


@dataclass(frozen=True, slots=True)
class ToolResult:
    """The outcome of one ToolCall.

    ``payload`` is whatever the dispatcher returned. A payload carrying an
    ``error`` key marks the result as failed.
    """

    tool_use_id: str
    payload: dict[str, Any]

    @property
    def is_error(self) -> bool:
        return "error" in self.payload

    @property
    def success(self) -> bool:
        return not self.is_error

    def to_dict(self) -> dict[str, Any]:
        block: dict[str, Any] = {
            "type": "tool_result",
            "tool_use_id": self.tool_use_id,
            "content": json.dumps(self.payload, default=str),
        }
        if self.is_error:
            block["is_error"] = True
        return block


ContentBlock = Union[TextBlock, ThinkingBlock, ToolCall, ToolResult]


@dataclass(frozen=True, slots=True)
class Message:
    """A message in the conversation.

    ``content`` is either plain text or a sequence of typed blocks.
    """

    role: Role
    content: str | tuple[ContentBlock, ...]

    @classmethod
    def user(cls, text: str) -> Message:
        return cls(Role.USER, text)

    @classmethod
    def assistant(cls, blocks: Sequence[ContentBlock]) -> Message:
        return cls(Role.ASSISTANT, tuple(blocks))

    @classmethod
    def tool_results(cls, results: Sequence[ToolResult]) -> Message:
        return cls(Role.USER, tuple(results))

    @property
    def blocks(self) -> tuple[ContentBlock, ...]:
        if isinstance(self.content, str):
            return (TextBlock(self.content),)
        return self.content

    @property
    def tool_calls(self) -> list[ToolCall]:
        return [b for b in self.blocks if isinstance(b, ToolCall)]

    @property
    def has_tool_results(self) -> bool:
        return any(isinstance(b, ToolResult) for b in self.blocks)

    @property
    def starts_exchange(self) -> bool:
        """True for a user message that is not answering tool calls."""
        return self.role is Role.USER and not self.has_tool_results

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.blocks if isinstance(b, TextBlock))

    def to_dict(self) -> dict[str, Any]:
        if isinstance(self.content, str):
            return {"role": self.role.value, "content": self.content}
        return {"role": self.role.value, "content": [b.to_dict() for b in self.content]}


class ConversationHistory:
    """Ordered, session-scoped message log with a bounded window.

    When the log grows past ``limit`` messages the oldest entries are dropped
    until at most ``trim_to`` remain. The cut always lands on a user message
    that opens an exchange, so an assistant tool-use message is never kept
    without the user message carrying its results (and vice versa).
    """

    def __init__(self, limit: int = 100, trim_to: int = 80) -> None:
        if trim_to > limit:
            raise ValueError("trim_to must not exceed limit")
        self.limit = limit
        self.trim_to = trim_to
        self._messages: list[Message] = []

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self._messages)

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    def append(self, message: Message) -> None:
        self._messages.append(message)
        if len(self._messages) > self.limit:
            self._trim()

    def extend(self, messages: Sequence[Message]) -> None:
        for message in messages:
            self.append(message)

    def clear(self) -> None:
        self._messages.clear()

    def to_list(self) -> list[dict[str, Any]]:
        """Serialize for a provider request."""
        return [m.to_dict() for m in self._messages]

    def _trim(self) -> None:
        cut = self._find_cut(len(self._messages) - self.trim_to)
        if cut > 0:
            del self._messages[:cut]

    def _find_cut(self, wanted: int) -> int:
        # Nearest exchange start at or after the wanted cut, else the latest before it
        for i in range(wanted, len(self._messages)):
            if self._messages[i].starts_exchange:
                return i
        for i in range(min(wanted, len(self._messages)) - 1, 0, -1):
            if self._messages[i].starts_exchange:
                return i
        return 0
