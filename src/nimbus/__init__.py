"""Nimbus: streaming tool-using agent with a capability gate and a browser bridge."""

__version__ = "0.1.0"

# Public API
from nimbus.bridge import RemoteCommandBridge
from nimbus.config import Config, get_config, load_config
from nimbus.core import ConversationHistory, EventStreamDecoder, Message, Role
from nimbus.core.llm import LiteLLMProvider, MessagesProvider, StreamingProvider
from nimbus.runtime import NimbusRuntime
from nimbus.session import (
    CapabilityGate,
    DeletionManager,
    InMemorySessionStore,
    PendingDeletion,
    PendingPermission,
)
from nimbus.session.agent import AgentEvent, EventType, TurnController
from nimbus.tools import ToolDispatcher, ToolName

__all__ = [
    # Main entry points
    "NimbusRuntime",
    "TurnController",
    "AgentEvent",
    "EventType",
    # Config
    "Config",
    "load_config",
    "get_config",
    # LLM
    "StreamingProvider",
    "MessagesProvider",
    "LiteLLMProvider",
    "EventStreamDecoder",
    "ConversationHistory",
    "Message",
    "Role",
    # Session
    "CapabilityGate",
    "DeletionManager",
    "InMemorySessionStore",
    "PendingDeletion",
    "PendingPermission",
    # Tools
    "ToolDispatcher",
    "ToolName",
    # Bridge
    "RemoteCommandBridge",
]
