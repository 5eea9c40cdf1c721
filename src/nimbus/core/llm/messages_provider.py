"""Provider for Messages-API compatible HTTP endpoints.

Talks to ``<api_base>/v1/messages`` with ``stream: true``. This covers the
hosted API as well as local proxies that expose the same wire format.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import httpx

from nimbus.core.decoder import iter_sse_events
from nimbus.errors import ProviderError
from nimbus.logging import get_logger

_log = get_logger("provider")

API_VERSION = "2023-06-01"


class MessagesProvider:
    """Streams turns from a Messages-API endpoint using httpx.

    Usage:
        provider = MessagesProvider("claude-sonnet-4-5", api_base="http://localhost:8080")
        async for event in provider.stream(messages, system="...", tools=schemas):
            ...
    """

    def __init__(
        self,
        model: str,
        *,
        api_base: str = "http://localhost:8080",
        api_key: str | None = None,
        max_tokens: int = 8192,
        thinking_budget: int | None = None,
        timeout: float = 300.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            model: Model identifier sent with each request.
            api_base: Base URL of the endpoint (without ``/v1/messages``).
            api_key: Value for the ``x-api-key`` header, if any.
            max_tokens: Output token cap per turn.
            thinking_budget: Enables extended thinking with this token budget.
            timeout: Read timeout in seconds for a streamed turn.
            client: Optional preconfigured client (tests pass a MockTransport).
        """
        self._model = model
        self._url = api_base.rstrip("/") + "/v1/messages"
        self._api_key = api_key
        self._max_tokens = max_tokens
        self._thinking_budget = thinking_budget
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=10.0))

    @property
    def model(self) -> str:
        return self._model

    def _headers(self) -> dict[str, str]:
        headers = {
            "content-type": "application/json",
            "anthropic-version": API_VERSION,
        }
        if self._api_key:
            headers["x-api-key"] = self._api_key
        return headers

    def build_body(
        self,
        messages: list[dict[str, Any]],
        *,
        system: str | None = None,
        tools: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        """Build the JSON request body for one turn."""
        body: dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "messages": messages,
            "stream": True,
        }
        if system:
            body["system"] = system
        if tools:
            body["tools"] = tools
            body["tool_choice"] = {"type": "auto"}
        if self._thinking_budget:
            body["thinking"] = {"type": "enabled", "budget_tokens": self._thinking_budget}
        return body

    async def stream(
        self,
        messages: list[dict[str, Any]],
        *,
        system: str | None = None,
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        body = self.build_body(messages, system=system, tools=tools)
        _log.debug("POST %s (%d messages, %d tools)", self._url, len(messages), len(tools or []))

        try:
            async with self._client.stream(
                "POST", self._url, json=body, headers=self._headers()
            ) as response:
                if not response.is_success:
                    raw = await response.aread()
                    raise ProviderError(response.status_code, raw.decode("utf-8", "replace"))
                async for event in iter_sse_events(response.aiter_lines()):
                    yield event
        except httpx.HTTPError as e:
            raise ProviderError(None, str(e) or type(e).__name__) from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
