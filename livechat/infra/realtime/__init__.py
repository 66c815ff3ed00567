"""Live WebSocket connection registry and wire event names."""

from livechat.infra.realtime.events import ClientMessageType, ServerEvent
from livechat.infra.realtime.registry import ConnectionRegistry, LiveConnection

__all__ = ["ClientMessageType", "ConnectionRegistry", "LiveConnection", "ServerEvent"]
