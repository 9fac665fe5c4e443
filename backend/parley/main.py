"""Parley Backend Application.

This is the main entry point for the Parley chat service: a REST API
over a DuckDB conversation store plus one WebSocket per client for live
delivery of messages, typing, read receipts and presence.

Modules:
    - auth: bearer JWT accounts (register/login/profile)
    - chat: WebSocket transport, delivery coordinator, unread ledger
    - presence: who is online, on which connections
    - store: DuckDB-backed users, chats and messages
    - users: user directory and search
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from parley import __version__
from parley.auth import IdentityGate
from parley.auth.router import router as auth_router
from parley.chat import ConnectionManager, DeliveryCoordinator, UnreadLedger
from parley.chat.router import router as chat_router
from parley.config import AppConfig, get_config
from parley.errors import ChatError, Internal
from parley.presence import PresenceRegistry
from parley.responses import fail
from parley.store import ChatStore
from parley.users.router import router as users_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
for _noisy in ("httpx", "httpcore", "uvicorn.access"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the components on startup and close the store on shutdown."""
    config: AppConfig = app.state.config

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in parley.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    store = ChatStore(db_path=config.database.path)
    gate = IdentityGate(
        store,
        secret_key=config.secrets.jwt.secret_key,
        algorithm=config.secrets.jwt.algorithm,
        token_ttl_seconds=config.auth.token_expire_minutes * 60,
        bcrypt_rounds=config.auth.bcrypt_rounds,
    )
    presence = PresenceRegistry(store)
    ledger = UnreadLedger(store)
    transport = ConnectionManager()

    app.state.store = store
    app.state.gate = gate
    app.state.presence = presence
    app.state.coordinator = DeliveryCoordinator(store, ledger, presence, transport, config.chat)
    logger.info(
        f"Parley ready on http://{config.server.host}:{config.server.port} "
        f"(database={config.database.path})"
    )

    yield  # Application runs here

    # Shutdown
    store.close()
    logger.info("Application shutdown complete")


async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    if isinstance(exc, Internal) or exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return fail(exc.message, exc.status_code, error=exc.code)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:]) or "request"
    return fail(f"{field}: {first.get('msg', 'invalid value')}", 400, error="validation")


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return fail(Internal.default_message, 500, error=Internal.code)


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Explicit configuration; when omitted the YAML files are
            loaded via ``get_config()``.
    """
    app = FastAPI(
        title="Parley API",
        description="Real-time chat: presence, delivery and unread tracking",
        version=__version__,
        lifespan=lifespan,
    )
    config = config or get_config()
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ChatError, chat_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # Register all routers
    app.include_router(auth_router)
    app.include_router(chat_router)
    app.include_router(users_router)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object indicating the server is running.
        """
        return {"status": "ok"}

    return app


app = create_app()
