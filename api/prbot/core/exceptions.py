"""
Custom exception hierarchy for the PR Reaction Bot.

HTTP boundary errors derive from BaseAppException and are rendered by the
handlers in error_handlers. Collaborator failures (Slack, cache) are plain
exceptions that the reconciliation engine catches and logs.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class BaseAppException(HTTPException):
    """Base exception for all application errors."""

    def __init__(
        self,
        detail: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        headers: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code or self.__class__.__name__


# Webhook Boundary Exceptions


class MissingWebhookHeadersError(BaseAppException):
    """Raised when a webhook arrives without its required headers or body."""

    def __init__(self, detail: str = "Missing headers or payload"):
        super().__init__(
            detail, status.HTTP_400_BAD_REQUEST, error_code="MISSING_HEADERS"
        )


class InvalidSignatureError(BaseAppException):
    """Raised when a webhook or slash command signature does not verify."""

    def __init__(self, detail: str = "Invalid signature"):
        super().__init__(
            detail, status.HTTP_401_UNAUTHORIZED, error_code="INVALID_SIGNATURE"
        )


class InvalidPayloadError(BaseAppException):
    """Raised when a verified payload cannot be decoded into an event."""

    def __init__(self, detail: str, event_type: Optional[str] = None):
        error_code = (
            f"INVALID_PAYLOAD_{event_type.upper()}" if event_type else "INVALID_PAYLOAD"
        )
        super().__init__(
            detail, status.HTTP_422_UNPROCESSABLE_ENTITY, error_code=error_code
        )


class ServiceNotConfiguredError(BaseAppException):
    """Raised when an endpoint is hit before its secret/service is configured."""

    def __init__(self, service: str):
        super().__init__(
            f"{service} is not configured",
            status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="SERVICE_NOT_CONFIGURED",
        )


# Collaborator Exceptions


IDEMPOTENT_CONFLICT_CODES = frozenset({"already_reacted", "not_reacted", "no_reaction"})


class SlackAPIError(Exception):
    """Raised when a Slack Web API call fails.

    Attributes:
        error: Slack error code (e.g. "already_reacted", "ratelimited") or a
            transport-level code ("timeout", "http_error")
        method: Web API method that failed
    """

    def __init__(self, error: str, method: str = "", detail: str = ""):
        self.error = error
        self.method = method
        self.detail = detail
        message = f"Slack API {method or 'call'} failed: {error}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)

    @property
    def is_idempotent_conflict(self) -> bool:
        """True when the failure only means the desired end state already holds."""
        return self.error in IDEMPOTENT_CONFLICT_CODES


class CacheOperationError(Exception):
    """Raised when a PR tracking cache operation fails or times out."""

    def __init__(self, operation: str, key: str, detail: str):
        self.operation = operation
        self.key = key
        super().__init__(f"Cache {operation} failed for '{key}': {detail}")
