"""Model provider abstraction.

Two backends produce the same content-block event stream:
- MessagesProvider: Messages-API endpoints and local proxies, via httpx
- LiteLLMProvider: anything litellm supports, including local Ollama models
"""

from __future__ import annotations

import os

from nimbus.config.schema import LLMConfig
from nimbus.core.llm.litellm_provider import LiteLLMProvider
from nimbus.core.llm.messages_provider import MessagesProvider
from nimbus.core.llm.provider import StreamingProvider

DEFAULT_MESSAGES_BASE = "http://localhost:8080"


def create_provider(config: LLMConfig) -> StreamingProvider:
    """Build the provider selected by configuration.

    Raises:
        ValueError: Unknown provider name.
    """
    api_key = config.api_key or os.environ.get(config.api_key_env)

    if config.provider == "messages":
        return MessagesProvider(
            config.model,
            api_base=config.api_base or DEFAULT_MESSAGES_BASE,
            api_key=api_key,
            max_tokens=config.max_tokens,
            thinking_budget=config.thinking_budget,
            timeout=config.request_timeout,
        )
    if config.provider == "litellm":
        return LiteLLMProvider(
            config.model,
            api_key=api_key,
            api_base=config.api_base,
            max_tokens=config.max_tokens,
            timeout=config.request_timeout,
        )
    raise ValueError(f"Unknown provider: {config.provider!r} (expected 'messages' or 'litellm')")


__all__ = [
    "StreamingProvider",
    "MessagesProvider",
    "LiteLLMProvider",
    "create_provider",
]
