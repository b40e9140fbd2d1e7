"""
Error responses for the MFA API.

Every error leaves the API as an ErrorResponse body:
    {"error": "<status phrase>", "detail": "<public message>", "code": "<machine code>"}

For engine failures the code is the MFAError value (also sent in the
X-MFA-Error header) so clients can branch on it without parsing messages.
"""
import logging
from http import HTTPStatus
from typing import Dict, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .models import ErrorResponse
from ..auth.results import MFAError, Result

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    MFAError.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    MFAError.NOT_CONFIGURED: status.HTTP_400_BAD_REQUEST,
    MFAError.ALREADY_ENABLED: status.HTTP_409_CONFLICT,
    MFAError.NOT_ENABLED: status.HTTP_409_CONFLICT,
    MFAError.INCORRECT_CODE: status.HTTP_401_UNAUTHORIZED,
    MFAError.CHALLENGE_EXPIRED: status.HTTP_401_UNAUTHORIZED,
    MFAError.TOO_MANY_ATTEMPTS: status.HTTP_429_TOO_MANY_REQUESTS,
    MFAError.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    MFAError.RACE_CONDITION_CONFLICT: status.HTTP_409_CONFLICT,
    MFAError.SESSION_FAILED: status.HTTP_503_SERVICE_UNAVAILABLE,
}


class APIError(HTTPException):
    """HTTPException carrying a machine-readable error code."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        code: str,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.code = code


def raise_for(result: Result) -> None:
    """Translate a failed engine Result into an APIError."""
    if result.ok:
        return
    raise APIError(
        status_code=ERROR_STATUS[result.error],
        detail=result.message,
        code=result.error.value,
        headers={"X-MFA-Error": result.error.value},
    )


def _error_body(status_code: int, detail: Optional[str], code: str) -> dict:
    return ErrorResponse(
        error=HTTPStatus(status_code).phrase,
        detail=detail,
        code=code,
    ).model_dump()


# ============================================
# Handlers
# ============================================

async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = getattr(exc, "code", None) or f"http_{exc.status_code}"
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.status_code, str(exc.detail), code),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for error in exc.errors():
        loc = " -> ".join(str(part) for part in error["loc"])
        errors.append(f"{loc}: {error['msg']}")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_body(status.HTTP_422_UNPROCESSABLE_ENTITY, "; ".join(errors), "invalid_request"),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")
    logger.error(f"Unhandled exception: {exc}", exc_info=True, extra={"request_id": request_id})
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            f"Request {request_id} failed",
            "internal_error",
        ),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
