"""Client-IP rate limiting for public endpoints."""

from contextvars import ContextVar

from fastapi import FastAPI, Request
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .config import Settings

_chat_limit: ContextVar[str] = ContextVar(
    "chat_rate_limit", default=Settings().chat_rate_limit
)


def get_client_ip(request: Request) -> str:
    """Extract a best-effort client IP for rate limiting.

    Prefer ``X-Forwarded-For`` (first hop) if present, otherwise use the
    socket peer address.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def chat_rate_limit() -> str:
    """Limit for ``/chat`` taken from the settings of the serving app."""
    return _chat_limit.get()


limiter = Limiter(key_func=get_client_ip)


def install_rate_limits(app: FastAPI, settings: Settings) -> None:
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    @app.middleware("http")
    async def bind_rate_limits(request: Request, call_next):
        token = _chat_limit.set(settings.chat_rate_limit)
        try:
            return await call_next(request)
        finally:
            _chat_limit.reset(token)
