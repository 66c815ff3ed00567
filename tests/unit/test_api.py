from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID, uuid4

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from livechat.api.router import api_router
from livechat.core.config import Settings
from livechat.domain.enums import SenderType
from livechat.services.classifier import DEFAULT_INTENTS
from livechat.services.connection_manager import ConnectionManager
from livechat.services.errors import InvalidApiKeyError
from livechat.services.responder import ResponseGenerator

NOW = datetime(2026, 10, 19, 15, 0, tzinfo=UTC)
API_KEY = "lc_test_key"
GREETINGS = next(intent.replies for intent in DEFAULT_INTENTS if intent.name == "greeting")


@dataclass(slots=True)
class FakeCustomer:
    id: UUID


@dataclass(slots=True)
class FakeChatSession:
    id: UUID
    customer_id: UUID
    visitor_id: str


@dataclass(slots=True)
class FakeMessage:
    id: UUID
    session_id: UUID
    sender_type: SenderType
    sender_id: str
    content: str
    metadata_json: dict | None
    created_at: datetime


class FakeStore:
    def __init__(self) -> None:
        self.settings = Settings()
        self.customer = FakeCustomer(id=uuid4())
        self.sessions: dict[UUID, FakeChatSession] = {}
        self.messages: list[FakeMessage] = []
        self.analytics: list[str] = []

    async def authenticate_api_key(self, raw_key: str) -> FakeCustomer:
        if raw_key != API_KEY:
            raise InvalidApiKeyError()
        return self.customer

    async def get_or_create_customer(self, identifier: str) -> FakeCustomer:
        return self.customer

    async def create_chat_session(
        self, customer_id: UUID, visitor_id: str, visitor_info: dict | None = None
    ) -> FakeChatSession:
        chat_session = FakeChatSession(id=uuid4(), customer_id=customer_id, visitor_id=visitor_id)
        self.sessions[chat_session.id] = chat_session
        return chat_session

    async def get_or_create_session_by_visitor(
        self, customer_id: UUID, visitor_id: str
    ) -> FakeChatSession:
        for chat_session in self.sessions.values():
            if chat_session.visitor_id == visitor_id:
                return chat_session
        return await self.create_chat_session(customer_id, visitor_id)

    async def get_chat_session(self, session_id: UUID) -> FakeChatSession | None:
        return self.sessions.get(session_id)

    async def save_message(
        self,
        session_id: UUID,
        sender_type: SenderType,
        sender_id: str,
        content: str,
        metadata: dict | None = None,
    ) -> FakeMessage:
        message = FakeMessage(
            id=uuid4(),
            session_id=session_id,
            sender_type=sender_type,
            sender_id=sender_id,
            content=content,
            metadata_json=metadata,
            created_at=NOW,
        )
        self.messages.append(message)
        return message

    async def get_session_messages(self, session_id: UUID, limit: int = 50) -> list[FakeMessage]:
        rows = [m for m in self.messages if m.session_id == session_id]
        return list(reversed(rows))[:limit]

    async def save_analytics_event(
        self, customer_id: UUID | None, event_type: str, data: dict | None = None
    ) -> None:
        self.analytics.append(event_type)


async def instant_sleep(_: float) -> None:
    return None


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def client(store: FakeStore) -> TestClient:
    settings = store.settings
    responder = ResponseGenerator(
        settings=settings, choose=lambda options: options[0], clock=lambda: NOW
    )
    app = FastAPI()
    app.include_router(api_router, prefix="/api")
    app.state.chat_store = store
    app.state.responder = responder
    app.state.connection_manager = ConnectionManager(
        store, responder, settings=settings, sleep=instant_sleep, clock=lambda: NOW
    )
    return TestClient(app)


def test_health(client: TestClient) -> None:
    response = client.get("/api/v1/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_rest_chat_creates_session(client: TestClient, store: FakeStore) -> None:
    response = client.post(
        "/api/chat", json={"message": "hello"}, headers={"X-API-Key": API_KEY}
    )

    assert response.status_code == 200
    body = response.json()
    assert set(body) == {"id", "sessionId", "customerId", "message", "response", "timestamp"}
    assert body["message"] == "hello"
    assert body["response"] == GREETINGS[0]
    assert body["customerId"] == str(store.customer.id)
    chat_session = store.sessions[UUID(body["sessionId"])]
    assert chat_session.visitor_id.startswith("api-")
    assert [m.sender_type for m in store.messages] == [SenderType.VISITOR, SenderType.BOT]
    assert store.messages[1].metadata_json["intent"] == "matched"


def test_rest_chat_reuses_session_and_accepts_query_key(
    client: TestClient, store: FakeStore
) -> None:
    first = client.post("/api/chat", json={"message": "hello"}, params={"apiKey": API_KEY})
    session_id = first.json()["sessionId"]

    second = client.post(
        "/api/chat",
        json={"message": "tell me a joke", "sessionId": session_id},
        params={"apiKey": API_KEY},
    )

    assert second.status_code == 200
    assert second.json()["sessionId"] == session_id
    assert len(store.sessions) == 1


def test_rest_chat_rejects_bad_keys(client: TestClient) -> None:
    missing = client.post("/api/chat", json={"message": "hello"})
    wrong = client.post("/api/chat", json={"message": "hello"}, headers={"X-API-Key": "nope"})

    assert missing.status_code == 401
    assert wrong.status_code == 401


def test_rest_chat_unknown_and_foreign_sessions(client: TestClient, store: FakeStore) -> None:
    foreign = FakeChatSession(id=uuid4(), customer_id=uuid4(), visitor_id="v9")
    store.sessions[foreign.id] = foreign
    headers = {"X-API-Key": API_KEY}

    unknown = client.post(
        "/api/chat", json={"message": "hi", "sessionId": str(uuid4())}, headers=headers
    )
    denied = client.post(
        "/api/chat", json={"message": "hi", "sessionId": str(foreign.id)}, headers=headers
    )

    assert unknown.status_code == 404
    assert denied.status_code == 403


def test_rest_chat_validates_message(client: TestClient) -> None:
    response = client.post("/api/chat", json={"message": ""}, headers={"X-API-Key": API_KEY})

    assert response.status_code == 422


def test_websocket_chat_scenario(client: TestClient) -> None:
    with client.websocket_connect("/api/v1/realtime/ws") as websocket:
        connected = websocket.receive_json()
        assert connected["type"] == "connected"

        websocket.send_json({"type": "init", "customerId": "acme", "sessionId": "v1"})
        initialized = websocket.receive_json()
        assert initialized["type"] == "initialized"
        assert initialized["history"] == []

        websocket.send_json({"type": "message", "content": "hi", "sessionId": "v1"})
        assert websocket.receive_json() == {"type": "typing", "isTyping": True}
        assert websocket.receive_json() == {"type": "typing", "isTyping": False}
        reply = websocket.receive_json()
        assert reply["type"] == "message"
        assert reply["message"] in GREETINGS

        websocket.send_text("ping")
        assert websocket.receive_json() == {"type": "pong"}
