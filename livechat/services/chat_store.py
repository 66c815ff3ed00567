import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from livechat.core.config import Settings, get_settings
from livechat.core.security import hash_api_key
from livechat.domain.enums import SenderType, SessionAction, SessionStatus
from livechat.domain.state_machine import SessionLifecycle
from livechat.infra.db.models import ChatSession, Customer, Message
from livechat.infra.db.repositories import (
    AnalyticsRepository,
    ApiKeyRepository,
    ChatSessionRepository,
    CustomerRepository,
    MessageRepository,
)
from livechat.services.errors import InvalidApiKeyError, SessionNotFoundError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ChatRepositories:
    customers: CustomerRepository
    api_keys: ApiKeyRepository
    sessions: ChatSessionRepository
    messages: MessageRepository
    analytics: AnalyticsRepository

    @classmethod
    def for_session(cls, session: AsyncSession) -> "ChatRepositories":
        return cls(
            customers=CustomerRepository(session),
            api_keys=ApiKeyRepository(session),
            sessions=ChatSessionRepository(session),
            messages=MessageRepository(session),
            analytics=AnalyticsRepository(session),
        )


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ChatStore:
    """Persistence facade used by the conversation engine.

    Every public call runs in its own database session and commits before
    returning, so a failure in one call never leaves another half-written.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        repositories: Callable[[AsyncSession], ChatRepositories] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.repositories = repositories or ChatRepositories.for_session
        self.clock = clock or _utcnow

    @asynccontextmanager
    async def _unit_of_work(self) -> AsyncIterator[ChatRepositories]:
        async with self.session_factory() as session:
            try:
                yield self.repositories(session)
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def get_or_create_customer(self, identifier: str) -> Customer:
        email = f"{identifier}@example.com"
        async with self._unit_of_work() as repos:
            customer = await repos.customers.get_by_email(email)
            if customer is not None:
                return customer

            customer = await repos.customers.create(
                name=f"Customer {identifier}",
                email=email,
            )
            logger.info("Created customer %s for identifier %r", customer.id, identifier)
            return customer

    async def create_chat_session(
        self,
        customer_id: UUID,
        visitor_id: str,
        visitor_info: dict[str, Any] | None = None,
    ) -> ChatSession:
        visitor_info = visitor_info or {}
        async with self._unit_of_work() as repos:
            return await repos.sessions.create(
                customer_id=customer_id,
                visitor_id=visitor_id,
                visitor_name=visitor_info.get("name"),
                visitor_email=visitor_info.get("email"),
                visitor_metadata=visitor_info.get("metadata"),
            )

    async def get_or_create_session_by_visitor(
        self,
        customer_id: UUID,
        visitor_id: str,
    ) -> ChatSession:
        try:
            return await self._resolve_visitor_session(customer_id, visitor_id)
        except IntegrityError:
            # Another connection created the active session first.
            logger.info(
                "Concurrent session create for visitor %r, retrying lookup", visitor_id
            )
            return await self._resolve_visitor_session(customer_id, visitor_id)

    async def _resolve_visitor_session(
        self,
        customer_id: UUID,
        visitor_id: str,
    ) -> ChatSession:
        window = timedelta(hours=self.settings.session_recency_hours)
        started_after = self.clock() - window

        async with self._unit_of_work() as repos:
            existing = await repos.sessions.get_latest_resumable(
                customer_id=customer_id,
                visitor_id=visitor_id,
                started_after=started_after,
            )
            if existing is None:
                chat_session = await repos.sessions.create(
                    customer_id=customer_id,
                    visitor_id=visitor_id,
                )
                logger.info(
                    "No recent session for visitor %r, created %s",
                    visitor_id,
                    chat_session.id,
                )
                return chat_session

            if existing.status != SessionStatus.ACTIVE:
                next_status = SessionLifecycle.transition(
                    existing.status, SessionAction.REACTIVATE
                )
                await repos.sessions.set_status(existing, next_status)
                logger.info("Reactivated session %s for visitor %r", existing.id, visitor_id)
            return existing

    async def get_chat_session(self, session_id: UUID) -> ChatSession | None:
        async with self._unit_of_work() as repos:
            return await repos.sessions.get_by_id(session_id)

    async def get_active_sessions(self, customer_id: UUID) -> list[ChatSession]:
        """Most recently started first."""
        async with self._unit_of_work() as repos:
            return await repos.sessions.list_active(customer_id)

    async def update_session_status(
        self,
        session_id: UUID,
        status: SessionStatus,
    ) -> ChatSession:
        action = (
            SessionAction.CLOSE
            if status == SessionStatus.CLOSED
            else SessionAction.REACTIVATE
        )
        async with self._unit_of_work() as repos:
            chat_session = await repos.sessions.get_by_id(session_id)
            if chat_session is None:
                raise SessionNotFoundError(session_id)
            next_status = SessionLifecycle.transition(chat_session.status, action)
            return await repos.sessions.set_status(chat_session, next_status)

    async def close_chat_session(self, session_id: UUID) -> ChatSession:
        return await self.update_session_status(session_id, SessionStatus.CLOSED)

    async def save_message(
        self,
        session_id: UUID,
        sender_type: SenderType,
        sender_id: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        async with self._unit_of_work() as repos:
            return await repos.messages.create(
                session_id=session_id,
                sender_type=sender_type,
                sender_id=sender_id,
                content=content,
                metadata_json=metadata,
            )

    async def get_session_messages(
        self,
        session_id: UUID,
        limit: int = 50,
    ) -> list[Message]:
        """Newest first; callers reverse for display."""
        async with self._unit_of_work() as repos:
            return await repos.messages.list_recent(session_id, limit)

    async def save_analytics_event(
        self,
        customer_id: UUID | None,
        event_type: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        try:
            async with self._unit_of_work() as repos:
                await repos.analytics.create(
                    customer_id=customer_id,
                    event_type=event_type,
                    event_data=data,
                )
        except Exception:
            logger.warning("Failed to save analytics event %r", event_type, exc_info=True)
        return None

    async def authenticate_api_key(self, raw_key: str) -> Customer:
        if not raw_key or not raw_key.strip():
            raise InvalidApiKeyError()

        key_hash = hash_api_key(raw_key, self.settings.api_key_secret)
        async with self._unit_of_work() as repos:
            api_key = await repos.api_keys.get_active_by_hash(key_hash)
            if api_key is None:
                raise InvalidApiKeyError()
            customer = await repos.customers.get_by_id(api_key.customer_id)
            if customer is None:
                raise InvalidApiKeyError()
            await repos.api_keys.touch(api_key)
            return customer
