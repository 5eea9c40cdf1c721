"""Remote command bridge to the browser extension."""

from nimbus.bridge.bridge import RemoteCommandBridge

__all__ = ["RemoteCommandBridge"]
