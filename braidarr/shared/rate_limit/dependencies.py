"""Rate limiting dependencies and handlers for FastAPI."""

import math

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from braidarr.shared.errors.handlers import error_body

from .limiter import rate_limiter


def client_ip(request: Request) -> str:
    """Address used to key per-IP limits."""
    return get_remote_address(request)


def rate_limit(operation: str):
    """Dependency factory enforcing an operation's tiers per client IP.

    Usage:
        @router.post("/register", dependencies=[Depends(rate_limit("register"))])
    """

    async def limiter_dependency(request: Request) -> None:
        rate_limiter.admit(operation, client_ip(request))

    return limiter_dependency


def enforce_rate_limit(operation: str, request: Request, subject: str) -> None:
    """Enforce an operation's tiers for the client IP combined with a subject (e.g. an email)."""
    rate_limiter.admit(operation, f"{client_ip(request)}:{subject.lower()}")


def global_rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Render the slowapi global limit in the standard error format.

    Synchronous: SlowAPIMiddleware calls the registered handler directly.
    """
    retry_after = max(1, math.ceil(exc.limit.limit.get_expiry())) if getattr(exc, "limit", None) else 60
    return JSONResponse(
        status_code=429,
        content=error_body("Too many requests. Please try again later.", "rate_limited", retry_after=retry_after),
        headers={"Retry-After": str(retry_after)},
    )
