import logging
import os
import time
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from limits.storage import storage_from_string
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import models
from .chatbase_client import ChatbaseClient
from .config import Settings, get_settings
from .errors import ChatProxyError, InvalidInput, MessageTooLong, NotFound
from .middleware import error_response, install_middleware
from .rate_limit import ChatRateLimiter

logger = logging.getLogger("chat_proxy")

router = APIRouter(prefix="/api")


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # httpx logs every upstream request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_chatbase(request: Request) -> ChatbaseClient:
    return request.app.state.chatbase


@router.post(
    "/chat",
    response_model=models.ChatResponse,
    responses={
        status_code: {"model": models.ErrorResponse}
        for status_code in (400, 413, 429, 500, 504)
    },
)
async def chat_endpoint(
    chat_request: models.ChatRequest,
    chatbase: ChatbaseClient = Depends(get_chatbase),
):
    """Forward a message to Chatbase and return its reply"""
    reply = await chatbase.send_message(chat_request.message)
    return {
        "response": reply,
        "timestamp": models.utc_timestamp(),
    }

@router.get("/health", response_model=models.HealthCheck)
async def health_check(request: Request):
    """Liveness check with process uptime in seconds"""
    return {
        "status": "OK",
        "timestamp": models.utc_timestamp(),
        "uptime": time.monotonic() - request.app.state.started_at,
    }


async def chat_proxy_error_handler(request: Request, exc: ChatProxyError):
    return error_response(exc)

async def validation_error_handler(request: Request, exc: RequestValidationError):
    too_long = any(
        error.get("type") == "string_too_long" and tuple(error.get("loc", ()))[-1:] == ("message",)
        for error in exc.errors()
    )
    logger.info("Rejected chat request on %s: %s", request.url.path, exc.errors())
    return error_response(MessageTooLong() if too_long else InvalidInput())

async def http_error_handler(request: Request, exc: StarletteHTTPException):
    # 405 on a known path is reported like any other unknown endpoint
    if exc.status_code in (404, 405):
        return error_response(NotFound())
    return JSONResponse(
        {"error": str(exc.detail)},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )

async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Server Error on %s %s", request.method, request.url.path, exc_info=exc)
    return error_response(ChatProxyError())


def create_app(
    settings: Optional[Settings] = None,
    rate_limiter: Optional[ChatRateLimiter] = None,
    upstream_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the chat proxy application.

    Settings are read from the environment when not given, which fails fast if
    the Chatbase credentials are missing.
    """
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    if rate_limiter is None:
        rate_limiter = ChatRateLimiter(
            max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
            storage=storage_from_string(settings.RATE_LIMIT_STORAGE_URI),
        )

    app = FastAPI(
        title="Chat Proxy API",
        description="Proxy that forwards frontend chat messages to Chatbase",
        version="1.0.0",
    )
    app.state.settings = settings
    app.state.rate_limiter = rate_limiter
    app.state.chatbase = ChatbaseClient(settings, transport=upstream_transport)
    app.state.started_at = time.monotonic()

    install_middleware(app, settings, rate_limiter)

    app.add_exception_handler(ChatProxyError, chat_proxy_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(router)

    # Static frontend, consulted only after the API routes
    if settings.STATIC_DIR and os.path.isdir(settings.STATIC_DIR):
        app.mount("/", StaticFiles(directory=settings.STATIC_DIR, html=True), name="static")
        logger.info("Serving static files from %s", settings.STATIC_DIR)

    @app.on_event("startup")
    async def startup_event():
        logger.info("Chat proxy listening on port %s", settings.PORT)
        logger.info("Health check: http://localhost:%s/api/health", settings.PORT)

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Shutting down, closing upstream client")
        await app.state.chatbase.aclose()

    return app


def main():
    import uvicorn

    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    main()
