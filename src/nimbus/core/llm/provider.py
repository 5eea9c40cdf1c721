"""Streaming provider protocol."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class StreamingProvider(Protocol):
    """A model endpoint that streams one turn as provider events.

    Implementations yield event dicts in the content-block shape consumed by
    :class:`nimbus.core.decoder.EventStreamDecoder` and raise
    :class:`nimbus.errors.ProviderError` on a non-success response.
    """

    @property
    def model(self) -> str:
        """The model identifier being used."""
        ...

    def stream(
        self,
        messages: list[dict[str, Any]],
        *,
        system: str | None = None,
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Issue one provider call and stream its events.

        Args:
            messages: Conversation history as role/content dicts.
            system: Optional system prompt.
            tools: Tool schemas as ``{name, description, input_schema}``.

        Yields:
            Provider events.
        """
        ...

    async def aclose(self) -> None:
        """Release any held connections."""
        ...
