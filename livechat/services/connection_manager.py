import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime
from typing import Any, Protocol
from uuid import UUID, uuid4

from pydantic import ValidationError

from livechat.core.config import Settings, get_settings
from livechat.domain.enums import ConnectionAction, ConnectionState, SenderType
from livechat.domain.exceptions import InvalidConnectionTransition
from livechat.domain.state_machine import ConnectionLifecycle
from livechat.infra.realtime import (
    ClientMessageType,
    ConnectionRegistry,
    LiveConnection,
    ServerEvent,
)
from livechat.infra.realtime.registry import Transport
from livechat.schemas.message import HistoryMessage
from livechat.schemas.realtime import ChatPayload, InitPayload
from livechat.services.errors import ConnectionNotBoundError
from livechat.services.responder import ResponseGenerator

logger = logging.getLogger(__name__)

ESCALATION_NOTICE = (
    "I've flagged this conversation for our support team. "
    "A human agent will follow up with you shortly."
)


class ChatStorePort(Protocol):
    async def get_or_create_customer(self, identifier: str) -> Any: ...

    async def get_or_create_session_by_visitor(
        self, customer_id: UUID, visitor_id: str
    ) -> Any: ...

    async def save_message(
        self,
        session_id: UUID,
        sender_type: SenderType,
        sender_id: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Any: ...

    async def get_session_messages(self, session_id: UUID, limit: int = 50) -> list[Any]: ...

    async def save_analytics_event(
        self,
        customer_id: UUID | None,
        event_type: str,
        data: dict[str, Any] | None = None,
    ) -> None: ...


def typing_delay(
    reply: str,
    per_char_ms: int = 20,
    min_ms: int = 500,
    max_ms: int = 2000,
) -> float:
    """Seconds to show the typing indicator before delivering ``reply``."""
    delay_ms = min(max(len(reply) * per_char_ms, min_ms), max_ms)
    return delay_ms / 1000


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ConnectionManager:
    """Drives every live connection through connect, init, chat turns and close.

    One manager per process owns the registry. Callbacks run on the event loop,
    so per-connection state is mutated without locks. Bot replies are delivered
    from background tasks after a typing delay; a second inbound message does
    not wait for the previous reply, so replies may arrive out of order.
    """

    def __init__(
        self,
        store: ChatStorePort,
        responder: ResponseGenerator,
        registry: ConnectionRegistry | None = None,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.responder = responder
        self.registry = registry or ConnectionRegistry()
        self.settings = settings or get_settings()
        self.sleep = sleep
        self.clock = clock or _utcnow

    async def open(self, transport: Transport) -> LiveConnection:
        connection = self.registry.register(transport)
        logger.info(
            "Connection %s opened (%d live)",
            connection.id,
            len(self.registry),
            extra={"connection_id": connection.id},
        )
        await self._emit(
            connection,
            ServerEvent.CONNECTED,
            connectionId=connection.id,
            timestamp=self._timestamp(),
        )
        return connection

    async def handle_text(self, connection: LiveConnection, raw: str) -> None:
        if raw.strip().lower() == "ping":
            await self._emit(connection, ServerEvent.PONG)
            return

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(
                "Malformed payload on connection %s",
                connection.id,
                extra={"connection_id": connection.id},
            )
            await self._send_error(connection, "Expected JSON payload")
            return

        if not isinstance(payload, dict):
            await self._send_error(connection, "Expected a JSON object with a 'type' field")
            return

        await self.handle_payload(connection, payload)

    async def handle_payload(
        self, connection: LiveConnection, payload: Mapping[str, Any]
    ) -> None:
        message_type = payload.get("type")

        if message_type == ClientMessageType.INIT.value:
            await self._handle_init(connection, payload)
        elif message_type == ClientMessageType.MESSAGE.value:
            await self._handle_message(connection, payload)
        elif message_type == ClientMessageType.PING.value:
            await self._emit(connection, ServerEvent.PONG)
        else:
            logger.info(
                "Ignoring message type %r on connection %s",
                message_type,
                connection.id,
                extra={"connection_id": connection.id},
            )

    async def close(self, connection: LiveConnection) -> None:
        was_bound = connection.state == ConnectionState.BOUND
        connection.state = ConnectionLifecycle.transition(
            connection.state, ConnectionAction.CLOSE
        )
        for task in list(connection.pending_replies):
            task.cancel()
        connection.pending_replies.clear()

        if self.registry.remove(connection.id) is None:
            return

        logger.info(
            "Connection %s closed (%d live)",
            connection.id,
            len(self.registry),
            extra={"connection_id": connection.id},
        )
        if was_bound and connection.bound_at is not None:
            duration = (self.clock() - connection.bound_at).total_seconds()
            await self.store.save_analytics_event(
                connection.customer_id,
                "chat_paused",
                {"sessionId": str(connection.session_id), "duration": round(duration, 3)},
            )

    async def _handle_init(
        self, connection: LiveConnection, payload: Mapping[str, Any]
    ) -> None:
        try:
            request = InitPayload.model_validate(payload)
        except ValidationError:
            await self._send_error(connection, "'init' requires customerId and sessionId")
            return

        try:
            connection.state = ConnectionLifecycle.transition(
                connection.state, ConnectionAction.INIT
            )
        except InvalidConnectionTransition as exc:
            await self._send_error(connection, str(exc))
            return
        self._unbind(connection)

        try:
            customer = await self.store.get_or_create_customer(request.customer_id)
            chat_session = await self.store.get_or_create_session_by_visitor(
                customer.id, request.visitor_id
            )
            stored = await self.store.get_session_messages(
                chat_session.id, limit=self.settings.history_limit
            )
        except Exception:
            logger.exception(
                "Failed to initialize connection %s for visitor %r",
                connection.id,
                request.visitor_id,
                extra={"connection_id": connection.id},
            )
            if connection.state == ConnectionState.INITIALIZING:
                connection.state = ConnectionLifecycle.transition(
                    connection.state, ConnectionAction.FAIL
                )
            await self._send_error(connection, "Failed to initialize chat session")
            return

        if connection.state != ConnectionState.INITIALIZING:
            return

        connection.state = ConnectionLifecycle.transition(
            connection.state, ConnectionAction.BIND
        )
        connection.session = chat_session
        connection.session_id = chat_session.id
        connection.customer_id = customer.id
        connection.visitor_id = request.visitor_id
        connection.bound_at = self.clock()
        logger.info(
            "Connection %s bound to session %s",
            connection.id,
            chat_session.id,
            extra={
                "connection_id": connection.id,
                "session_id": chat_session.id,
                "customer_id": customer.id,
            },
        )

        history = [
            HistoryMessage.from_message(message).model_dump(by_alias=True, mode="json")
            for message in reversed(stored)
        ]
        await self._emit(
            connection,
            ServerEvent.INITIALIZED,
            sessionId=str(chat_session.id),
            history=history,
            timestamp=self._timestamp(),
        )
        await self.store.save_analytics_event(
            customer.id,
            "session_started",
            {"sessionId": str(chat_session.id), "visitorId": request.visitor_id},
        )

    async def _handle_message(
        self, connection: LiveConnection, payload: Mapping[str, Any]
    ) -> None:
        if not ConnectionLifecycle.accepts_chat(connection.state):
            await self._send_error(connection, str(ConnectionNotBoundError(connection.state)))
            return

        try:
            request = ChatPayload.model_validate(payload)
        except ValidationError:
            await self._send_error(connection, "'message' requires a text content field")
            return

        session_id = connection.session_id
        content = request.content
        try:
            await self.store.save_message(
                session_id, SenderType.VISITOR, connection.visitor_id, content
            )
            recent = await self.store.get_session_messages(
                session_id, limit=self.settings.context_window
            )
        except Exception:
            logger.exception(
                "Failed to record visitor message for session %s",
                session_id,
                extra={"connection_id": connection.id, "session_id": session_id},
            )
            await self._send_error(connection, "Failed to process message")
            return

        reply = self.responder.generate_response(content, session_id, list(reversed(recent)))
        sentiment = self.responder.analyze_sentiment(content)
        needs_agent = self.responder.needs_human_agent(content, sentiment)

        if needs_agent:
            await self._emit(
                connection,
                ServerEvent.NOTIFICATION,
                message=ESCALATION_NOTICE,
                needsAgent=True,
            )
            await self.store.save_analytics_event(
                connection.customer_id,
                "escalation_requested",
                {"sessionId": str(session_id), "sentiment": sentiment.value},
            )

        await self._emit(connection, ServerEvent.TYPING, isTyping=True)

        metadata = {
            "intent": reply.intent.value,
            "confidence": reply.confidence,
            "sentiment": sentiment.value,
            "needsAgent": needs_agent,
        }
        task = asyncio.create_task(
            self._deliver_reply(connection, session_id, reply.response, metadata)
        )
        connection.pending_replies.add(task)
        task.add_done_callback(connection.pending_replies.discard)

    async def _deliver_reply(
        self,
        connection: LiveConnection,
        session_id: UUID,
        reply: str,
        metadata: dict[str, Any],
    ) -> None:
        await self.sleep(
            typing_delay(
                reply,
                per_char_ms=self.settings.typing_ms_per_char,
                min_ms=self.settings.typing_min_ms,
                max_ms=self.settings.typing_max_ms,
            )
        )

        try:
            saved = await self.store.save_message(
                session_id,
                SenderType.BOT,
                self.settings.bot_sender_id,
                reply,
                metadata,
            )
            message_id, sent_at = str(saved.id), saved.created_at.isoformat()
        except Exception:
            logger.exception(
                "Failed to persist bot reply for session %s, delivering anyway",
                session_id,
                extra={"connection_id": connection.id, "session_id": session_id},
            )
            message_id, sent_at = str(uuid4()), self._timestamp()

        await self._emit(connection, ServerEvent.TYPING, isTyping=False)
        await self._emit(
            connection,
            ServerEvent.MESSAGE,
            id=message_id,
            message=reply,
            timestamp=sent_at,
            metadata=metadata,
        )

    @staticmethod
    def _unbind(connection: LiveConnection) -> None:
        connection.session = None
        connection.session_id = None
        connection.customer_id = None
        connection.visitor_id = None
        connection.bound_at = None

    async def _send_error(self, connection: LiveConnection, detail: str) -> None:
        await self._emit(connection, ServerEvent.ERROR, error=detail)

    async def _emit(
        self, connection: LiveConnection, event: ServerEvent, **fields: Any
    ) -> bool:
        return await self.registry.send(connection, {"type": event.value, **fields})

    def _timestamp(self) -> str:
        return self.clock().isoformat()
