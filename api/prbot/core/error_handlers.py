"""
Centralized error handlers for the PR Reaction Bot.

Every error leaves the API in the same envelope:
    {"error": {"code": ..., "message": ..., "status_code": ...}}
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from prbot.core.exceptions import BaseAppException

logger = logging.getLogger(__name__)


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": code,
                "message": message,
                "status_code": status_code,
            }
        },
    )


async def base_exception_handler(
    request: Request, exc: BaseAppException
) -> JSONResponse:
    """Handle application exceptions raised at the HTTP boundary.

    Rejected webhooks are logged as warnings: they never reached the
    reconciliation engine and the sender is expected to fix and redeliver.
    """
    logger.warning(
        f"Rejected request: {exc.error_code} - {exc.detail}",
        extra={
            "error_code": exc.error_code,
            "status_code": exc.status_code,
            "path": request.url.path,
            "github_event": request.headers.get("X-GitHub-Event"),
            "github_delivery": request.headers.get("X-GitHub-Delivery"),
        },
    )
    return _error_response(exc.status_code, exc.error_code, str(exc.detail))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected errors without leaking internals."""
    logger.exception(
        f"Unhandled exception: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "exception_type": type(exc).__name__,
        },
    )
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_SERVER_ERROR",
        "An unexpected error occurred",
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BaseAppException, base_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)
