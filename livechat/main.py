import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.httpsredirect import HTTPSRedirectMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from livechat.api.router import api_router
from livechat.core.config import get_settings
from livechat.core.db import close_engine, create_schema, get_session_factory, init_engine
from livechat.core.logging_config import setup_logging
from livechat.infra.realtime import ConnectionRegistry
from livechat.services.chat_store import ChatStore
from livechat.services.connection_manager import ConnectionManager
from livechat.services.responder import ResponseGenerator

settings = get_settings()
settings.validate_security_settings()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level, settings.log_json)

    # Initialize infrastructure
    engine = init_engine()
    app.state.db_engine = engine
    if settings.db_auto_create:
        await create_schema(engine)

    store = ChatStore(get_session_factory(), settings=settings)
    responder = ResponseGenerator(settings=settings)
    app.state.chat_store = store
    app.state.responder = responder
    app.state.connection_manager = ConnectionManager(
        store,
        responder,
        registry=ConnectionRegistry(),
        settings=settings,
    )
    logger.info("Live chat service started (env=%s)", settings.app_env)

    yield

    # Graceful shutdown
    await close_engine(engine)
    logger.info("Live chat service stopped")


app = FastAPI(
    title="Live Chat API",
    version="0.1.0",
    docs_url="/docs" if settings.app_env != "production" else None,
    redoc_url="/redoc" if settings.app_env != "production" else None,
    lifespan=lifespan,
)

if settings.trusted_hosts:
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=settings.trusted_hosts,
    )

if settings.force_https:
    app.add_middleware(HTTPSRedirectMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "X-API-Key"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault(
        "Referrer-Policy",
        "strict-origin-when-cross-origin",
    )
    if settings.force_https:
        response.headers.setdefault(
            "Strict-Transport-Security",
            "max-age=31536000; includeSubDomains",
        )
    return response


app.include_router(api_router, prefix="/api")


@app.get("/", tags=["meta"])
async def root() -> dict[str, str]:
    return {"service": "livechat-backend", "status": "ok"}
