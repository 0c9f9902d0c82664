"""CSRF protection middleware.

Validates the CSRF header on state-changing requests that carry a session
cookie. Bearer-only and API key clients are not exposed to cross-site
forgery and are left alone, as are the exempt paths where no session exists
yet (or where the session is being created or ended).
"""

import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from braidarr.config.settings import settings
from braidarr.features.auth.exceptions import AuthenticationException
from braidarr.features.auth.jwt_utils import decode_refresh_token, verify_access_token
from braidarr.shared.errors.handlers import error_body

from .csrf import csrf_manager

logger = logging.getLogger(__name__)

# Methods that require CSRF validation
CSRF_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

# Paths exempt from CSRF validation
CSRF_EXEMPT_PATHS = {
    f"{settings.api_prefix}/auth/login",
    f"{settings.api_prefix}/auth/register",
    f"{settings.api_prefix}/auth/refresh",
    f"{settings.api_prefix}/auth/logout",
    f"{settings.api_prefix}/auth/password/reset",
    f"{settings.api_prefix}/auth/password/confirm",
    f"{settings.api_prefix}/auth/verify-email",
    "/health",
}


def session_id_from_cookies(request: Request) -> str | None:
    """Session id of the first session cookie that verifies, if any."""
    refresh_cookie = request.cookies.get(settings.refresh_cookie_name)
    if refresh_cookie:
        try:
            return decode_refresh_token(refresh_cookie)["sid"]
        except AuthenticationException:
            pass

    access_cookie = request.cookies.get(settings.access_cookie_name)
    if access_cookie:
        try:
            return verify_access_token(access_cookie).sid
        except AuthenticationException:
            pass

    return None


class CSRFMiddleware(BaseHTTPMiddleware):
    """Validates CSRF token on state-changing requests."""

    async def dispatch(self, request: Request, call_next):
        # Only validate state-changing methods
        if request.method not in CSRF_METHODS:
            return await call_next(request)

        # Skip exempt paths
        if request.url.path.rstrip("/") in CSRF_EXEMPT_PATHS:
            return await call_next(request)

        # Skip if using API key auth (no CSRF needed for programmatic access)
        if request.headers.get("X-API-Key") or request.headers.get("apikey"):
            return await call_next(request)

        # Cookies that don't verify carry no session; authentication rejects them later
        session_id = session_id_from_cookies(request)
        if session_id is None:
            return await call_next(request)

        csrf_token = request.headers.get(settings.csrf_header_name)
        if not csrf_token:
            logger.warning(f"CSRF token missing on {request.method} {request.url.path}")
            return JSONResponse(status_code=403, content=error_body("CSRF token missing", "csrf_missing"))

        if not csrf_manager.validate(session_id, csrf_token):
            logger.warning(f"CSRF token invalid on {request.method} {request.url.path}")
            return JSONResponse(status_code=403, content=error_body("CSRF token invalid", "csrf_invalid"))

        return await call_next(request)
