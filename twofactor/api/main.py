"""
twofactor REST API.

Exposes password login with a second-factor challenge, TOTP/backup code
verification and MFA management. Sessions are opaque bearer tokens, so the
API sets no cookies and CORS runs without credentials.

Usage:
    uvicorn twofactor.api.main:app --host 0.0.0.0 --port 8000
"""
import os
import time
import uuid
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .errors import register_error_handlers
from .routes import mfa_router

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv(
    "LOG_FORMAT",
    "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"
)


class RequestIdFilter(logging.Filter):
    """Add request_id to log records."""
    def filter(self, record):
        if not hasattr(record, 'request_id'):
            record.request_id = '-'
        return True


logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format=LOG_FORMAT,
)
for handler in logging.getLogger().handlers:
    handler.addFilter(RequestIdFilter())
logger = logging.getLogger(__name__)

API_VERSION = os.getenv("APP_VERSION", "0.1.0")

# Headers clients need to read on cross-origin responses
EXPOSED_HEADERS = ["X-MFA-Error", "X-Request-ID", "Retry-After"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Create the schema and clear challenges that expired while we were down.
    """
    logger.info(f"Starting twofactor API v{API_VERSION}")

    try:
        from .deps import get_db, get_mfa_service
        get_db().init_schema()
        get_mfa_service().challenges.purge_expired()
    except Exception as e:
        logger.warning(f"Startup maintenance skipped: {e}")

    yield

    logger.info("Shutting down twofactor API")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI instance.
    """
    app = FastAPI(
        title="twofactor API",
        description=(
            "Password login followed by a TOTP or backup code challenge. "
            "`POST /auth/login` returns a session, or a challenge token when 2FA is enabled; "
            "`POST /auth/mfa/verify` exchanges the token and a code for a session."
        ),
        version=API_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000").split(","),
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=EXPOSED_HEADERS,
    )

    @app.middleware("http")
    async def request_tracking(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request.state.request_id = request_id

        start_time = time.time()
        response = await call_next(request)
        process_time = (time.time() - start_time) * 1000

        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} ({process_time:.1f}ms)",
            extra={"request_id": request_id},
        )

        response.headers["X-Request-ID"] = request_id
        # Responses carry sessions, seeds and backup codes
        response.headers["Cache-Control"] = "no-store"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        return response

    register_error_handlers(app)
    app.include_router(mfa_router)

    @app.get("/health", include_in_schema=False)
    async def health():
        return {"status": "ok", "version": API_VERSION}

    return app


app = create_app()
