"""
Chat Gateway - streaming chat completion service.

Accepts a conversation from a browser client, resolves which upstream
model and persona to use, calls an OpenAI-compatible provider (OpenAI or
Volcengine Ark) and streams the reply back as a UI message stream.

Endpoints (each also served under the ``/api`` prefix):
    - POST /chat        - Stream an assistant reply
    - GET /agents       - List agent presets
    - POST /agents      - Create an agent preset
    - GET /models       - List the model catalog
    - GET /health       - Liveness
    - GET /healthcheck  - Provider configuration report
    - OPTIONS *         - CORS preflight (204)

Every response, including errors and preflights, carries CORS headers.
Every error response body is ``{"error": "<message>"}``.
"""
import logging
import sys
import time
import uuid
from contextlib import asynccontextmanager
from typing import Callable, Mapping, Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from chat_gateway import __version__
from chat_gateway.config import GatewaySettings, get_settings
from chat_gateway.routers import agents, chat, health, models
from chat_gateway.services.agents import AgentStore, InMemoryAgentStore
from chat_gateway.services.chat_pipeline import ChatPipeline
from chat_gateway.services.cors import cors_headers
from chat_gateway.services.errors import GatewayError, error_message, error_response
from chat_gateway.services.model_registry import ModelRegistry
from chat_gateway.services.providers import (
    ProviderClientFactory,
    check_provider_configuration,
    close_provider_clients,
)

API_PREFIX = "/api"


# ============================================================================
# Logging Configuration
# ============================================================================

# SDK transport loggers that log every upstream request at INFO.
_NOISY_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "openai")


def configure_logging(settings: GatewaySettings) -> None:
    """
    Configure structlog from LOG_LEVEL / LOG_FORMAT.

    JSON lines by default, coloured console output when
    LOG_FORMAT=console. Upstream SDK transport logging is held at
    WARNING unless LOG_LEVEL=DEBUG, so one chat call logs once.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level if level <= logging.DEBUG else logging.WARNING)

    if settings.log_format == "console":
        renderers: list[structlog.types.Processor] = [structlog.dev.ConsoleRenderer(colors=True)]
    else:
        renderers = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            *renderers,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger("chat-gateway")


# ============================================================================
# Application Lifespan
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
        - Logs which providers have credentials configured

    Shutdown:
        - Closes cached provider clients and their connections
    """
    configured = check_provider_configuration(app.state.settings)
    logger.info(
        "chat_gateway.startup",
        version=__version__,
        providers={provider.value: ok for provider, ok in configured.items()},
        default_model_id=app.state.settings.default_model_id,
    )

    yield

    logger.info("chat_gateway.shutdown")
    await close_provider_clients()
    logger.info("chat_gateway.shutdown.complete")


# ============================================================================
# Application Factory
# ============================================================================

def create_app(
    settings: Optional[GatewaySettings] = None,
    *,
    env: Optional[Mapping[str, str]] = None,
    agent_store: Optional[AgentStore] = None,
    registry: Optional[ModelRegistry] = None,
) -> FastAPI:
    """
    Build the gateway application.

    Args:
        settings: Gateway settings; defaults to the cached process settings.
        env: Mapping holding per-model Volcengine endpoint variables;
            defaults to ``os.environ``.
        agent_store: Preset store; defaults to a fresh in-memory store.
        registry: Model registry; defaults to one built from *settings*.

    Returns:
        FastAPI: The configured application.
    """
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title="Chat Gateway",
        description="Streaming chat completion gateway for OpenAI-compatible providers",
        version=__version__,
        lifespan=lifespan,
    )

    store = agent_store if agent_store is not None else InMemoryAgentStore()
    model_registry = registry or ModelRegistry(ProviderClientFactory(settings), env=env)

    app.state.settings = settings
    app.state.agent_store = store
    app.state.registry = model_registry
    app.state.pipeline = ChatPipeline(model_registry, store, settings)

    _register_exception_handlers(app)
    _register_middleware(app, settings)

    for router in (chat.router, agents.router, models.router, health.router):
        app.include_router(router)
        app.include_router(router, prefix=API_PREFIX, include_in_schema=False)

    return app


# ============================================================================
# Exception Handlers
# ============================================================================

def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        """Map gateway errors onto the ``{"error": message}`` envelope."""
        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            "chat_gateway.request_error",
            path=request.url.path,
            status_code=exc.status_code,
            error_type=type(exc).__name__,
            error=exc.message,
        )
        return error_response(exc.message, status_code=exc.status_code)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """
        Unmatched routes and wrong methods both report 404 Not Found,
        since routes are matched on method and path together.
        """
        if exc.status_code in (404, 405):
            return error_response("Not Found", status_code=404)

        logger.warning(
            "chat_gateway.http_error",
            path=request.url.path,
            status_code=exc.status_code,
            detail=str(exc.detail),
        )
        return error_response(str(exc.detail), status_code=exc.status_code)


# ============================================================================
# Middleware
# ============================================================================

def _register_middleware(app: FastAPI, settings: GatewaySettings) -> None:
    allowed_origins = settings.cors_origins()

    # Registered first so it runs inside the CORS middleware below.
    @app.middleware("http")
    async def log_requests(request: Request, call_next: Callable):
        """
        Bind a request id for every log line of the request and time it.

        The id comes from ``X-Request-ID`` or is generated, and is echoed
        back. For event streams the timing covers time to first byte
        (headers sent), not the whole stream.
        """
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        start_time = time.perf_counter()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            path=request.url.path,
            method=request.method,
        )

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        streaming = response.headers.get("content-type", "").startswith("text/event-stream")
        logger.info(
            "chat_gateway.request.stream_open" if streaming else "chat_gateway.request.complete",
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
        return response

    @app.middleware("http")
    async def apply_cors(request: Request, call_next: Callable):
        """
        Answer preflights and attach CORS headers to every response.

        Also the last line of defence: unhandled exceptions become a
        500 envelope here so they still carry CORS headers.
        """
        headers = cors_headers(request.headers.get("origin"), allowed_origins)

        if request.method == "OPTIONS":
            return Response(status_code=204, headers=headers)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.exception(
                "chat_gateway.unhandled_error",
                path=request.url.path,
                method=request.method,
                error_type=type(exc).__name__,
            )
            return error_response(
                error_message(exc, fallback="Internal Server Error"),
                status_code=500,
                headers=headers,
            )

        for name, value in headers.items():
            response.headers[name] = value
        return response


def run() -> None:
    """Console entry point: build the app and serve it with uvicorn."""
    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
