"""Tool handlers and the dispatcher that runs them."""

from nimbus.tools.base import Handler, ToolContext, ToolInput, ToolName
from nimbus.tools.dispatcher import ToolDispatcher, default_handlers

__all__ = [
    "Handler",
    "ToolContext",
    "ToolDispatcher",
    "ToolInput",
    "ToolName",
    "default_handlers",
]
