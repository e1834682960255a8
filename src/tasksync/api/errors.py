"""JSON error envelopes for the HTTP API.

Every error response has the shape ``{"error", "timestamp", "path"}``.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from tasksync.core.settings import settings
from tasksync.db.time import utcnow

logger = logging.getLogger(__name__)


def error_body(request: Request, message: str) -> dict[str, str]:
    """Build the standard error payload for ``request``."""
    return {
        "error": message,
        "timestamp": utcnow().isoformat(),
        "path": request.url.path,
    }


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Render ``HTTPException`` using the standard envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(request, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report the first validation problem as a 400."""
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    # pydantic prefixes messages raised from validators with "Value error, ".
    message = message.removeprefix("Value error, ")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(request, message),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unexpected failures and hide their details outside debug mode."""
    logger.error("Unhandled error on %s: %s", request.url.path, exc, exc_info=exc)
    message = str(exc) if settings.debug and str(exc) else "Internal Server Error"
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(request, message),
    )


def install_error_handlers(app: FastAPI) -> None:
    """Register the JSON error handlers on ``app``."""
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
