import asyncio
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol
from uuid import UUID, uuid4

from starlette.websockets import WebSocketDisconnect

from livechat.domain.enums import ConnectionState
from livechat.domain.state_machine import ConnectionLifecycle
from livechat.infra.db.models import ChatSession

logger = logging.getLogger(__name__)


class Transport(Protocol):
    async def send_json(self, data: Any) -> None: ...


@dataclass(slots=True, eq=False)
class LiveConnection:
    transport: Transport
    id: str = field(default_factory=lambda: uuid4().hex)
    state: ConnectionState = ConnectionState.CONNECTED
    session_id: UUID | None = None
    customer_id: UUID | None = None
    visitor_id: str | None = None
    session: ChatSession | None = None
    connected_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    bound_at: datetime | None = None
    pending_replies: set[asyncio.Task] = field(default_factory=set)


class ConnectionRegistry:
    """In-process map of live connections.

    Owned by a single ConnectionManager and only touched from the event loop
    thread, so it needs no locking.
    """

    def __init__(self) -> None:
        self._connections: dict[str, LiveConnection] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def register(self, transport: Transport) -> LiveConnection:
        connection = LiveConnection(transport=transport)
        self._connections[connection.id] = connection
        return connection

    def get(self, connection_id: str) -> LiveConnection | None:
        return self._connections.get(connection_id)

    def remove(self, connection_id: str) -> LiveConnection | None:
        return self._connections.pop(connection_id, None)

    def connections(self) -> Iterator[LiveConnection]:
        return iter(list(self._connections.values()))

    async def send(
        self,
        connection: LiveConnection,
        payload: Mapping[str, Any],
    ) -> bool:
        if ConnectionLifecycle.is_terminal(connection.state):
            logger.debug(
                "Dropping %r for closed connection %s",
                payload.get("type"),
                connection.id,
            )
            return False

        try:
            await connection.transport.send_json(dict(payload))
        except (RuntimeError, WebSocketDisconnect, ConnectionError):
            logger.debug(
                "Transport for connection %s is gone, discarded %r",
                connection.id,
                payload.get("type"),
            )
            return False
        return True
