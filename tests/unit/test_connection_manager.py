import asyncio
import json
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

import pytest

from livechat.core.config import Settings
from livechat.domain.enums import ConnectionState, SenderType, SessionStatus
from livechat.services.classifier import DEFAULT_INTENTS
from livechat.services.connection_manager import (
    ESCALATION_NOTICE,
    ConnectionManager,
    typing_delay,
)
from livechat.services.responder import TELL_ME_MORE_REPLY, ResponseGenerator

# Monday 11:00 in New York.
NOW = datetime(2026, 10, 19, 15, 0, tzinfo=UTC)
GREETINGS = next(intent.replies for intent in DEFAULT_INTENTS if intent.name == "greeting")


@dataclass(slots=True)
class FakeCustomer:
    id: UUID
    identifier: str


@dataclass(slots=True)
class FakeChatSession:
    id: UUID
    customer_id: UUID
    visitor_id: str
    status: SessionStatus = SessionStatus.ACTIVE


@dataclass(slots=True)
class FakeMessage:
    id: UUID
    session_id: UUID
    sender_type: SenderType
    sender_id: str
    content: str
    metadata_json: dict | None
    created_at: datetime


@dataclass
class FakeStore:
    customers: dict[str, FakeCustomer] = field(default_factory=dict)
    sessions: dict[tuple[UUID, str], FakeChatSession] = field(default_factory=dict)
    messages: list[FakeMessage] = field(default_factory=list)
    analytics: list[tuple[UUID | None, str, dict | None]] = field(default_factory=list)
    failing_customer_lookups: int = 0
    fail_bot_messages: bool = False
    fail_visitor_messages: bool = False

    async def get_or_create_customer(self, identifier: str) -> FakeCustomer:
        if self.failing_customer_lookups:
            self.failing_customer_lookups -= 1
            raise ConnectionError("database unavailable")
        if identifier not in self.customers:
            self.customers[identifier] = FakeCustomer(id=uuid4(), identifier=identifier)
        return self.customers[identifier]

    async def get_or_create_session_by_visitor(
        self, customer_id: UUID, visitor_id: str
    ) -> FakeChatSession:
        key = (customer_id, visitor_id)
        if key not in self.sessions:
            self.sessions[key] = FakeChatSession(
                id=uuid4(), customer_id=customer_id, visitor_id=visitor_id
            )
        return self.sessions[key]

    async def save_message(
        self,
        session_id: UUID,
        sender_type: SenderType,
        sender_id: str,
        content: str,
        metadata: dict | None = None,
    ) -> FakeMessage:
        if sender_type == SenderType.BOT and self.fail_bot_messages:
            raise ConnectionError("database unavailable")
        if sender_type == SenderType.VISITOR and self.fail_visitor_messages:
            raise ConnectionError("database unavailable")
        message = FakeMessage(
            id=uuid4(),
            session_id=session_id,
            sender_type=sender_type,
            sender_id=sender_id,
            content=content,
            metadata_json=metadata,
            created_at=NOW + timedelta(seconds=len(self.messages)),
        )
        self.messages.append(message)
        return message

    async def get_session_messages(self, session_id: UUID, limit: int = 50) -> list[FakeMessage]:
        rows = [m for m in self.messages if m.session_id == session_id]
        return list(reversed(rows))[:limit]

    async def save_analytics_event(
        self, customer_id: UUID | None, event_type: str, data: dict | None = None
    ) -> None:
        self.analytics.append((customer_id, event_type, data))

    def event_types(self) -> list[str]:
        return [event_type for _, event_type, _ in self.analytics]


class FakeTransport:
    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.closed = False

    async def send_json(self, data: dict) -> None:
        if self.closed:
            raise RuntimeError('Cannot call "send" once a close message has been sent.')
        self.sent.append(data)

    def types(self) -> list[str]:
        return [event["type"] for event in self.sent]

    def of_type(self, event_type: str) -> list[dict]:
        return [event for event in self.sent if event["type"] == event_type]


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


async def instant_sleep(_: float) -> None:
    return None


async def never_wake(_: float) -> None:
    await asyncio.Event().wait()


def _build(sleep=instant_sleep):
    settings = Settings()
    clock = Clock(NOW)
    store = FakeStore()
    responder = ResponseGenerator(
        settings=settings, choose=lambda options: options[0], clock=clock
    )
    manager = ConnectionManager(
        store, responder, settings=settings, sleep=sleep, clock=clock
    )
    return manager, store, clock


async def _drain(connection) -> None:
    await asyncio.gather(*list(connection.pending_replies))


async def _send(manager, connection, **payload) -> None:
    await manager.handle_text(connection, json.dumps(payload))


async def _bound_connection(manager, visitor_id: str = "v1"):
    transport = FakeTransport()
    connection = await manager.open(transport)
    await _send(manager, connection, type="init", customerId="acme", sessionId=visitor_id)
    return connection, transport


@pytest.mark.asyncio
async def test_open_registers_and_announces_connection() -> None:
    manager, _, _ = _build()
    transport = FakeTransport()

    connection = await manager.open(transport)

    assert manager.registry.get(connection.id) is connection
    assert connection.state == ConnectionState.CONNECTED
    assert transport.sent == [
        {"type": "connected", "connectionId": connection.id, "timestamp": NOW.isoformat()}
    ]


@pytest.mark.asyncio
async def test_init_binds_fresh_session_with_empty_history() -> None:
    manager, store, _ = _build()

    connection, transport = await _bound_connection(manager)

    initialized = transport.of_type("initialized")
    chat_session = store.sessions[(store.customers["acme"].id, "v1")]
    assert connection.state == ConnectionState.BOUND
    assert connection.session_id == chat_session.id
    assert connection.visitor_id == "v1"
    assert initialized[0]["sessionId"] == str(chat_session.id)
    assert initialized[0]["history"] == []
    assert store.analytics == [
        (
            store.customers["acme"].id,
            "session_started",
            {"sessionId": str(chat_session.id), "visitorId": "v1"},
        )
    ]


@pytest.mark.asyncio
async def test_history_is_chronological() -> None:
    manager, store, _ = _build()
    customer = await store.get_or_create_customer("acme")
    chat_session = await store.get_or_create_session_by_visitor(customer.id, "v1")
    for content in ("A", "B", "C"):
        await store.save_message(chat_session.id, SenderType.VISITOR, "v1", content)

    _, transport = await _bound_connection(manager)

    history = transport.of_type("initialized")[0]["history"]
    assert [item["content"] for item in history] == ["A", "B", "C"]
    assert history[0]["senderType"] == "visitor"
    assert history[0]["senderId"] == "v1"
    assert set(history[0]) == {"id", "senderType", "senderId", "content", "metadata", "timestamp"}


@pytest.mark.asyncio
async def test_greeting_turn_types_then_replies() -> None:
    manager, store, _ = _build()
    connection, transport = await _bound_connection(manager)

    await _send(manager, connection, type="message", content="hi", sessionId="v1")
    await _drain(connection)

    assert transport.types()[2:] == ["typing", "typing", "message"]
    typing = transport.of_type("typing")
    assert [event["isTyping"] for event in typing] == [True, False]

    reply = transport.of_type("message")[0]
    assert reply["message"] in GREETINGS
    assert reply["metadata"] == {
        "intent": "matched",
        "confidence": 0.9,
        "sentiment": "neutral",
        "needsAgent": False,
    }
    visitor, bot = store.messages
    assert (visitor.sender_type, visitor.content) == (SenderType.VISITOR, "hi")
    assert bot.sender_type == SenderType.BOT
    assert bot.sender_id == "ai-assistant"
    assert bot.metadata_json == reply["metadata"]
    assert reply["id"] == str(bot.id)


@pytest.mark.asyncio
async def test_reply_waits_for_clamped_typing_delay() -> None:
    delays: list[float] = []

    async def record(seconds: float) -> None:
        delays.append(seconds)

    manager, _, _ = _build(sleep=record)
    connection, transport = await _bound_connection(manager)

    await _send(manager, connection, type="message", content="ok", sessionId="v1")
    await _drain(connection)

    assert delays == [typing_delay(TELL_ME_MORE_REPLY)]
    assert delays[0] == 2.0
    assert transport.of_type("message")[0]["message"] == TELL_ME_MORE_REPLY


@pytest.mark.asyncio
async def test_escalation_notifies_before_typing() -> None:
    manager, store, _ = _build()
    connection, transport = await _bound_connection(manager)

    await _send(
        manager, connection, type="message", content="I need to speak to a human", sessionId="v1"
    )
    await _drain(connection)

    assert transport.types()[2:] == ["notification", "typing", "typing", "message"]
    assert transport.of_type("notification")[0] == {
        "type": "notification",
        "message": ESCALATION_NOTICE,
        "needsAgent": True,
    }
    assert transport.of_type("message")[0]["metadata"]["needsAgent"] is True
    assert "escalation_requested" in store.event_types()


@pytest.mark.asyncio
async def test_message_before_init_is_rejected() -> None:
    manager, store, _ = _build()
    transport = FakeTransport()
    connection = await manager.open(transport)

    await _send(manager, connection, type="message", content="hi", sessionId="v1")

    assert transport.types() == ["connected", "error"]
    assert "init" in transport.of_type("error")[0]["error"]
    assert store.messages == []
    assert not connection.pending_replies


@pytest.mark.asyncio
async def test_ping_and_unknown_types() -> None:
    manager, _, _ = _build()
    transport = FakeTransport()
    connection = await manager.open(transport)

    await _send(manager, connection, type="ping")
    await manager.handle_text(connection, "ping")
    await _send(manager, connection, type="wave", hello="there")

    assert transport.types() == ["connected", "pong", "pong"]
    assert connection.state == ConnectionState.CONNECTED


@pytest.mark.asyncio
async def test_malformed_payloads_surface_errors() -> None:
    manager, _, _ = _build()
    transport = FakeTransport()
    connection = await manager.open(transport)

    await manager.handle_text(connection, "{not json")
    await manager.handle_text(connection, "[1, 2]")
    await _send(manager, connection, type="init", sessionId="v1")

    assert transport.types() == ["connected", "error", "error", "error"]
    assert connection.state == ConnectionState.CONNECTED


@pytest.mark.asyncio
async def test_failed_init_can_be_retried() -> None:
    manager, store, _ = _build()
    store.failing_customer_lookups = 1
    transport = FakeTransport()
    connection = await manager.open(transport)

    await _send(manager, connection, type="init", customerId="acme", sessionId="v1")
    assert transport.types() == ["connected", "error"]
    assert connection.state == ConnectionState.CONNECTED
    assert connection.session_id is None

    await _send(manager, connection, type="init", customerId="acme", sessionId="v1")
    assert transport.types() == ["connected", "error", "initialized"]
    assert connection.state == ConnectionState.BOUND


@pytest.mark.asyncio
async def test_reinit_rebinds_connection() -> None:
    manager, store, _ = _build()
    connection, transport = await _bound_connection(manager, "v1")
    first_session = connection.session_id

    await _send(manager, connection, type="init", customerId="acme", sessionId="v2")

    assert connection.state == ConnectionState.BOUND
    assert connection.session_id != first_session
    assert transport.of_type("initialized")[1]["sessionId"] == str(connection.session_id)


@pytest.mark.asyncio
async def test_visitor_message_persistence_failure_surfaces_error() -> None:
    manager, store, _ = _build()
    connection, transport = await _bound_connection(manager)
    store.fail_visitor_messages = True

    await _send(manager, connection, type="message", content="hi", sessionId="v1")

    assert transport.types()[-1] == "error"
    assert "typing" not in transport.types()
    assert connection.state == ConnectionState.BOUND


@pytest.mark.asyncio
async def test_reply_delivered_even_if_persisting_it_fails() -> None:
    manager, store, _ = _build()
    connection, transport = await _bound_connection(manager)
    store.fail_bot_messages = True

    await _send(manager, connection, type="message", content="hi", sessionId="v1")
    await _drain(connection)

    reply = transport.of_type("message")[0]
    assert reply["message"] in GREETINGS
    assert UUID(reply["id"])
    assert [m.sender_type for m in store.messages] == [SenderType.VISITOR]


@pytest.mark.asyncio
async def test_whitespace_message_still_gets_reply() -> None:
    manager, _, _ = _build()
    connection, transport = await _bound_connection(manager)

    await _send(manager, connection, type="message", content="   ", sessionId="v1")
    await _drain(connection)

    assert transport.of_type("message")[0]["message"] == TELL_ME_MORE_REPLY


@pytest.mark.asyncio
async def test_close_cancels_pending_replies_and_records_pause() -> None:
    manager, store, clock = _build(sleep=never_wake)
    connection, transport = await _bound_connection(manager)
    await _send(manager, connection, type="message", content="hi", sessionId="v1")
    pending = list(connection.pending_replies)
    assert len(pending) == 1

    clock.now = NOW + timedelta(seconds=30)
    await manager.close(connection)
    await asyncio.gather(*pending, return_exceptions=True)

    assert pending[0].cancelled()
    assert connection.state == ConnectionState.CLOSED
    assert manager.registry.get(connection.id) is None
    assert "message" not in transport.types()
    assert store.analytics[-1] == (
        connection.customer_id,
        "chat_paused",
        {"sessionId": str(connection.session_id), "duration": 30.0},
    )
    assert store.sessions[(connection.customer_id, "v1")].status == SessionStatus.ACTIVE


@pytest.mark.asyncio
async def test_close_is_idempotent_and_skips_pause_for_unbound() -> None:
    manager, store, _ = _build()
    connection = await manager.open(FakeTransport())

    await manager.close(connection)
    await manager.close(connection)

    assert connection.state == ConnectionState.CLOSED
    assert len(manager.registry) == 0
    assert store.analytics == []


@pytest.mark.asyncio
async def test_reply_to_vanished_transport_is_discarded() -> None:
    manager, _, _ = _build()
    connection, transport = await _bound_connection(manager)

    await _send(manager, connection, type="message", content="hi", sessionId="v1")
    transport.closed = True
    await _drain(connection)

    assert transport.types()[-1] == "typing"
    assert transport.of_type("typing")[-1]["isTyping"] is True


@pytest.mark.asyncio
async def test_rapid_messages_each_get_a_reply() -> None:
    manager, _, _ = _build()
    connection, transport = await _bound_connection(manager)

    await _send(manager, connection, type="message", content="hi", sessionId="v1")
    await _send(manager, connection, type="message", content="ok", sessionId="v1")
    await _drain(connection)

    replies = [event["message"] for event in transport.of_type("message")]
    assert sorted(replies, key=len) == sorted([GREETINGS[0], TELL_ME_MORE_REPLY], key=len)


@pytest.mark.parametrize(
    ("length", "seconds"),
    [(0, 0.5), (5, 0.5), (25, 0.5), (50, 1.0), (100, 2.0), (1000, 2.0)],
)
def test_typing_delay_is_clamped(length: int, seconds: float) -> None:
    assert typing_delay("x" * length) == seconds
