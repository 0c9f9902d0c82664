import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from braidarr.config.logging_config import configure_logging
from braidarr.config.settings import settings
from braidarr.database import client as db_client
from braidarr.features.api_keys.router import router as api_keys_router
from braidarr.features.auth.router import router as auth_router
from braidarr.features.auth.service import AuthService
from braidarr.features.user.router import router as user_router
from braidarr.shared.csrf.csrf_middleware import CSRFMiddleware
from braidarr.shared.errors.handlers import register_error_handlers
from braidarr.shared.rate_limit.dependencies import global_rate_limit_handler
from braidarr.shared.rate_limit.limiter import limiter

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Handle startup and shutdown events."""
    # Startup
    configure_logging()
    await db_client.init_db()
    async with db_client.get_session() as session:
        await AuthService.cleanup_expired_tokens(session)
    logger.info(f"{settings.app_name} {settings.app_version} started ({settings.environment})")
    yield
    # Shutdown
    await db_client.close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs" if settings.environment != "production" else None,
    redoc_url="/redoc" if settings.environment != "production" else None,
)

register_error_handlers(app)

# Global per-IP rate limit
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, global_rate_limit_handler)
app.add_middleware(SlowAPIMiddleware)

# Anti-forgery check for cookie sessions
app.add_middleware(CSRFMiddleware)

# CORS (outermost, so preflight and error responses carry the headers)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-API-Key", settings.csrf_header_name],
)

# Router Registration
routers: list[APIRouter] = [
    auth_router,
    user_router,
    api_keys_router,
]

for router in routers:
    app.include_router(router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    return {"message": f"{settings.app_name} API", "status": "running"}


@app.get("/health")
async def health():
    return {"status": "healthy"}


def main():
    """Run the API server."""
    uvicorn.run(
        "braidarr.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
