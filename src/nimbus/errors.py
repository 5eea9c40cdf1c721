"""Exception types shared across Nimbus components."""

from __future__ import annotations


class NimbusError(Exception):
    """Base class for Nimbus errors."""


class ProviderError(NimbusError):
    """The model provider returned a non-success response.

    Attributes:
        status: HTTP status code (or None when the transport failed outright).
        body: Response body or transport error text.
    """

    def __init__(self, status: int | None, body: str) -> None:
        self.status = status
        self.body = body
        if status is None:
            super().__init__(f"Provider request failed: {body}")
        else:
            super().__init__(f"API error {status}: {body}")


class BridgeError(NimbusError):
    """Base class for remote command bridge failures."""


class BridgeNotConnected(BridgeError):
    """No automation surface is connected."""

    def __init__(self) -> None:
        super().__init__("Browser extension not connected")


class BridgeTimeout(BridgeError):
    """A bridge command got no response within the timeout window."""

    def __init__(self, action: str, request_id: int) -> None:
        self.action = action
        self.request_id = request_id
        super().__init__(f"Browser command {action} timed out")


class BridgeCommandError(BridgeError):
    """The remote surface answered a command with an explicit error."""
