import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.util import get_remote_address

from .config import Settings
from .errors import ChatProxyError, PayloadTooLarge, RateLimited
from .models import utc_timestamp
from .rate_limit import ChatRateLimiter, rate_limit_headers

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "Content-Security-Policy": (
        "default-src 'self';base-uri 'self';font-src 'self' https: data:;"
        "form-action 'self';frame-ancestors 'self';img-src 'self' data:;"
        "object-src 'none';script-src 'self';script-src-attr 'none';"
        "style-src 'self' https: 'unsafe-inline';upgrade-insecure-requests"
    ),
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Origin-Agent-Cluster": "?1",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Frame-Options": "SAMEORIGIN",
    "X-Permitted-Cross-Domain-Policies": "none",
    "X-XSS-Protection": "0",
}


def error_response(error: ChatProxyError, headers=None) -> JSONResponse:
    return JSONResponse({"error": error.message}, status_code=error.status_code, headers=headers)


class BodySizeLimitMiddleware:
    """Buffer the request body, refusing it with 413 once it passes ``max_body_bytes``.

    Declared lengths are checked up front; chunked bodies are counted as they
    arrive, so neither kind is read past the limit.
    """

    def __init__(self, app, max_body_bytes: int):
        self.app = app
        self.max_body_bytes = max_body_bytes

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        content_length = request.headers.get("content-length", "")
        if content_length.isdigit() and int(content_length) > self.max_body_bytes:
            await self._refuse(scope, receive, send, content_length)
            return

        chunks = []
        received = 0
        more_body = True
        while more_body:
            message = await receive()
            if message["type"] == "http.disconnect":
                return
            chunk = message.get("body", b"")
            received += len(chunk)
            if received > self.max_body_bytes:
                await self._refuse(scope, receive, send, f"over {self.max_body_bytes}")
                return
            chunks.append(chunk)
            more_body = message.get("more_body", False)

        body = b"".join(chunks)
        replayed = False

        async def replay_receive():
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        await self.app(scope, replay_receive, send)

    async def _refuse(self, scope, receive, send, size):
        logger.warning("Rejected %s byte body on %s", size, scope["path"])
        await error_response(PayloadTooLarge())(scope, receive, send)


def install_middleware(app: FastAPI, settings: Settings, rate_limiter: ChatRateLimiter):
    """Register the request pipeline.

    Starlette runs the last registered middleware first, so registration order
    is the reverse of the order a request passes through:
    security headers -> CORS -> rate limit -> body size -> request log -> error boundary.
    """
    prefix = settings.RATE_LIMIT_PATH_PREFIX.rstrip("/")

    @app.middleware("http")
    async def catch_unhandled_errors(request: Request, call_next):
        # Inside CORS and security headers, so a 500 still carries them
        try:
            return await call_next(request)
        except Exception:
            logger.exception("Server Error on %s %s", request.method, request.url.path)
            return error_response(ChatProxyError())

    @app.middleware("http")
    async def log_request(request: Request, call_next):
        logger.info("%s - %s %s", utc_timestamp(), request.method, request.url.path)
        return await call_next(request)

    app.add_middleware(BodySizeLimitMiddleware, max_body_bytes=settings.MAX_BODY_BYTES)

    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        path = request.url.path
        if not (path == prefix or path.startswith(prefix + "/")):
            return await call_next(request)

        # Preflight requests are answered by the CORS layer before reaching here.
        key = get_remote_address(request)
        decision = rate_limiter.hit(key)
        headers = rate_limit_headers(decision)
        if not decision.allowed:
            logger.warning("Rate limit exceeded for %s on %s", key, path)
            return error_response(RateLimited(), headers=headers)

        response = await call_next(request)
        response.headers.update(headers)
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response
