from fastapi import APIRouter

from livechat.api.v1.routes import chat, health, realtime

api_router = APIRouter()
api_router.include_router(health.router, prefix="/v1", tags=["health"])
api_router.include_router(realtime.router, prefix="/v1/realtime", tags=["realtime"])
api_router.include_router(chat.router, tags=["chat"])
