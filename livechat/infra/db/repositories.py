from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import Select, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from livechat.domain.enums import SenderType, SessionStatus
from livechat.infra.db.models import (
    AnalyticsEvent,
    ApiKey,
    ChatSession,
    Customer,
    Message,
)


class CustomerRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, customer_id: UUID) -> Customer | None:
        return await self.session.get(Customer, customer_id)

    async def get_by_email(self, email: str) -> Customer | None:
        stmt: Select[tuple[Customer]] = (
            select(Customer).where(Customer.email == email).limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, name: str, email: str, plan: str = "free") -> Customer:
        customer = Customer(name=name, email=email, plan=plan)
        self.session.add(customer)
        await self.session.flush()
        await self.session.refresh(customer)
        return customer


class ApiKeyRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_active_by_hash(self, key_hash: str) -> ApiKey | None:
        stmt: Select[tuple[ApiKey]] = (
            select(ApiKey)
            .where(ApiKey.key_hash == key_hash, ApiKey.is_active.is_(True))
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, customer_id: UUID, key_name: str, key_hash: str) -> ApiKey:
        api_key = ApiKey(customer_id=customer_id, key_name=key_name, key_hash=key_hash)
        self.session.add(api_key)
        await self.session.flush()
        return api_key

    async def touch(self, api_key: ApiKey) -> None:
        api_key.last_used_at = datetime.now(UTC)
        await self.session.flush()


class ChatSessionRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, session_id: UUID) -> ChatSession | None:
        return await self.session.get(ChatSession, session_id)

    async def get_latest_resumable(
        self,
        customer_id: UUID,
        visitor_id: str,
        started_after: datetime,
    ) -> ChatSession | None:
        stmt: Select[tuple[ChatSession]] = (
            select(ChatSession)
            .where(
                ChatSession.customer_id == customer_id,
                ChatSession.visitor_id == visitor_id,
                or_(
                    ChatSession.status == SessionStatus.ACTIVE,
                    ChatSession.started_at > started_after,
                ),
            )
            .order_by(ChatSession.started_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_active(self, customer_id: UUID) -> list[ChatSession]:
        stmt: Select[tuple[ChatSession]] = (
            select(ChatSession)
            .where(
                ChatSession.customer_id == customer_id,
                ChatSession.status == SessionStatus.ACTIVE,
            )
            .order_by(ChatSession.started_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def create(
        self,
        customer_id: UUID,
        visitor_id: str,
        visitor_name: str | None = None,
        visitor_email: str | None = None,
        visitor_metadata: dict | None = None,
    ) -> ChatSession:
        chat_session = ChatSession(
            customer_id=customer_id,
            visitor_id=visitor_id,
            visitor_name=visitor_name,
            visitor_email=visitor_email,
            visitor_metadata=visitor_metadata or {},
            status=SessionStatus.ACTIVE,
        )
        self.session.add(chat_session)
        await self.session.flush()
        await self.session.refresh(chat_session)
        return chat_session

    async def set_status(
        self,
        chat_session: ChatSession,
        status: SessionStatus,
    ) -> ChatSession:
        chat_session.status = status
        if status == SessionStatus.CLOSED:
            chat_session.ended_at = datetime.now(UTC)
        await self.session.flush()
        return chat_session


class MessageRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        session_id: UUID,
        sender_type: SenderType,
        sender_id: str,
        content: str,
        metadata_json: dict | None = None,
    ) -> Message:
        message = Message(
            session_id=session_id,
            sender_type=sender_type,
            sender_id=sender_id or "system",
            content=content,
            metadata_json=metadata_json or {},
        )
        self.session.add(message)
        await self.session.flush()
        await self.session.refresh(message)
        return message

    async def list_recent(self, session_id: UUID, limit: int) -> list[Message]:
        """Newest first."""
        stmt: Select[tuple[Message]] = (
            select(Message)
            .where(Message.session_id == session_id)
            .order_by(Message.created_at.desc(), Message.seq.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class AnalyticsRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        customer_id: UUID | None,
        event_type: str,
        event_data: dict | None = None,
    ) -> AnalyticsEvent:
        event = AnalyticsEvent(
            customer_id=customer_id,
            event_type=event_type,
            event_data=event_data or {},
        )
        self.session.add(event)
        await self.session.flush()
        return event
