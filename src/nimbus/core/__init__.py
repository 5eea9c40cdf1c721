"""Conversation model, stream decoding and model providers."""

from nimbus.core.decoder import DecodedEvent, DecodedKind, EventStreamDecoder, TurnResult
from nimbus.core.messages import (
    ConversationHistory,
    Message,
    Role,
    TextBlock,
    ThinkingBlock,
    ToolCall,
    ToolResult,
)

__all__ = [
    "ConversationHistory",
    "DecodedEvent",
    "DecodedKind",
    "EventStreamDecoder",
    "Message",
    "Role",
    "TextBlock",
    "ThinkingBlock",
    "ToolCall",
    "ToolResult",
    "TurnResult",
]
