import logging
from dataclasses import dataclass
from uuid import UUID, uuid4

from livechat.domain.enums import SenderType
from livechat.infra.db.models import ChatSession, Customer, Message
from livechat.services.chat_store import ChatStore
from livechat.services.errors import SessionAccessDeniedError, SessionNotFoundError
from livechat.services.responder import ResponseGenerator

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ChatExchange:
    chat_session: ChatSession
    visitor_message: Message
    bot_message: Message


class ChatExchangeService:
    """Synchronous request/response chat turn for clients that cannot hold a socket."""

    def __init__(self, store: ChatStore, responder: ResponseGenerator) -> None:
        self.store = store
        self.responder = responder

    async def exchange(
        self,
        customer: Customer,
        message: str,
        session_id: UUID | None = None,
    ) -> ChatExchange:
        chat_session = await self._resolve_session(customer, session_id)

        visitor_message = await self.store.save_message(
            chat_session.id,
            SenderType.VISITOR,
            chat_session.visitor_id,
            message,
        )
        recent = await self.store.get_session_messages(
            chat_session.id, limit=self.store.settings.context_window
        )

        reply = self.responder.generate_response(
            message, chat_session.id, list(reversed(recent))
        )
        sentiment = self.responder.analyze_sentiment(message)
        needs_agent = self.responder.needs_human_agent(message, sentiment)

        bot_message = await self.store.save_message(
            chat_session.id,
            SenderType.BOT,
            self.store.settings.bot_sender_id,
            reply.response,
            {
                "intent": reply.intent.value,
                "confidence": reply.confidence,
                "sentiment": sentiment.value,
                "needsAgent": needs_agent,
            },
        )
        if needs_agent:
            await self.store.save_analytics_event(
                customer.id,
                "escalation_requested",
                {"sessionId": str(chat_session.id), "sentiment": sentiment.value},
            )
        return ChatExchange(
            chat_session=chat_session,
            visitor_message=visitor_message,
            bot_message=bot_message,
        )

    async def _resolve_session(
        self, customer: Customer, session_id: UUID | None
    ) -> ChatSession:
        if session_id is None:
            visitor_id = f"api-{uuid4().hex}"
            chat_session = await self.store.create_chat_session(customer.id, visitor_id)
            logger.info(
                "Started API session %s for customer %s",
                chat_session.id,
                customer.id,
                extra={"session_id": chat_session.id, "customer_id": customer.id},
            )
            return chat_session

        chat_session = await self.store.get_chat_session(session_id)
        if chat_session is None:
            raise SessionNotFoundError(session_id)
        if chat_session.customer_id != customer.id:
            raise SessionAccessDeniedError(session_id)
        return chat_session
