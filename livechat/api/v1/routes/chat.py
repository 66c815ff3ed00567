from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status

from livechat.infra.db.models import Customer
from livechat.schemas.chat import ChatRequest, ChatResponse
from livechat.services.chat_exchange import ChatExchangeService
from livechat.services.chat_store import ChatStore
from livechat.services.errors import (
    InvalidApiKeyError,
    SessionAccessDeniedError,
    SessionNotFoundError,
)

router = APIRouter()


def get_chat_store(request: Request) -> ChatStore:
    store = getattr(request.app.state, "chat_store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Chat store is not initialized",
        )
    return store


def get_chat_exchange_service(
    request: Request,
    store: ChatStore = Depends(get_chat_store),
) -> ChatExchangeService:
    return ChatExchangeService(store, request.app.state.responder)


async def get_authenticated_customer(
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    api_key: str | None = Query(default=None, alias="apiKey"),
    store: ChatStore = Depends(get_chat_store),
) -> Customer:
    raw_key = x_api_key or api_key
    if not raw_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="API key required"
        )
    try:
        return await store.authenticate_api_key(raw_key)
    except InvalidApiKeyError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)
        ) from exc


def _raise_for_service_error(exc: Exception) -> None:
    if isinstance(exc, SessionAccessDeniedError):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)
        ) from exc
    if isinstance(exc, SessionNotFoundError):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)
        ) from exc
    raise exc


@router.post("/chat", response_model=ChatResponse)
async def post_chat_message(
    payload: ChatRequest,
    customer: Customer = Depends(get_authenticated_customer),
    service: ChatExchangeService = Depends(get_chat_exchange_service),
) -> ChatResponse:
    try:
        result = await service.exchange(
            customer=customer,
            message=payload.message,
            session_id=payload.session_id,
        )
    except (SessionAccessDeniedError, SessionNotFoundError) as exc:
        _raise_for_service_error(exc)

    return ChatResponse(
        id=result.bot_message.id,
        session_id=result.chat_session.id,
        customer_id=customer.id,
        message=payload.message,
        response=result.bot_message.content,
        timestamp=result.bot_message.created_at,
    )
