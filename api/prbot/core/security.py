"""
Request signature verification for inbound GitHub webhooks and Slack commands.
"""

import hashlib
import hmac
import logging
import secrets
import time
from typing import Optional

from fastapi import Request
from prbot.core.exceptions import (
    InvalidSignatureError,
    MissingWebhookHeadersError,
    ServiceNotConfiguredError,
)

logger = logging.getLogger(__name__)

GITHUB_SIGNATURE_PREFIX = "sha256="
SLACK_SIGNATURE_VERSION = "v0"
# Slack requests older than this are treated as replays
SLACK_MAX_REQUEST_AGE_SECONDS = 300


def compute_github_signature(payload: bytes, secret: str) -> str:
    """Compute the X-Hub-Signature-256 header value for a payload."""
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return f"{GITHUB_SIGNATURE_PREFIX}{digest}"


def verify_github_signature(payload: bytes, signature: str, secret: str) -> bool:
    """Verify a GitHub webhook signature.

    Args:
        payload: Raw request body exactly as delivered
        signature: Value of the X-Hub-Signature-256 header
        secret: Shared webhook secret

    Returns:
        bool: True if the signature matches
    """
    if not secret or not signature.startswith(GITHUB_SIGNATURE_PREFIX):
        return False
    expected = compute_github_signature(payload, secret)
    return secrets.compare_digest(expected, signature)


def compute_slack_signature(body: str, timestamp: str, signing_secret: str) -> str:
    """Compute the X-Slack-Signature header value for a request body."""
    base_string = f"{SLACK_SIGNATURE_VERSION}:{timestamp}:{body}"
    digest = hmac.new(
        signing_secret.encode("utf-8"), base_string.encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return f"{SLACK_SIGNATURE_VERSION}={digest}"


def verify_slack_signature(
    body: str,
    timestamp: str,
    signature: str,
    signing_secret: str,
    now: Optional[float] = None,
) -> bool:
    """Verify a Slack request signature, rejecting stale timestamps.

    Args:
        body: Raw form-encoded request body
        timestamp: Value of the X-Slack-Request-Timestamp header
        signature: Value of the X-Slack-Signature header
        signing_secret: Slack app signing secret
        now: Current epoch seconds (defaults to time.time())

    Returns:
        bool: True if the signature matches and the request is fresh
    """
    try:
        request_ts = int(timestamp)
    except (TypeError, ValueError):
        return False

    current = time.time() if now is None else now
    if abs(current - request_ts) > SLACK_MAX_REQUEST_AGE_SECONDS:
        logger.warning("Slack request timestamp outside replay window")
        return False

    expected = compute_slack_signature(body, timestamp, signing_secret)
    return secrets.compare_digest(expected, signature)


async def verify_slack_request(request: Request) -> str:
    """FastAPI dependency that authenticates a Slack slash command.

    Returns:
        str: The raw request body, for form parsing by the route

    Raises:
        ServiceNotConfiguredError: If SLACK_SIGNING_SECRET is not set
        InvalidSignatureError: If headers are missing or the signature is bad
    """
    settings = request.app.state.settings
    if not settings.SLACK_SIGNING_SECRET:
        logger.warning("Slack command received but SLACK_SIGNING_SECRET is not set")
        raise ServiceNotConfiguredError("Slack command signing")

    signature = request.headers.get("X-Slack-Signature")
    timestamp = request.headers.get("X-Slack-Request-Timestamp")
    if not signature or not timestamp:
        raise InvalidSignatureError("Missing signature or timestamp")

    try:
        body = (await request.body()).decode("utf-8")
    except UnicodeDecodeError:
        raise InvalidSignatureError("Request body is not valid UTF-8")

    if not verify_slack_signature(
        body, timestamp, signature, settings.SLACK_SIGNING_SECRET
    ):
        raise InvalidSignatureError()

    return body


async def verify_github_request(request: Request) -> tuple[str, bytes]:
    """FastAPI dependency that authenticates a GitHub webhook delivery.

    Returns:
        tuple: (event type, raw payload bytes)

    Raises:
        MissingWebhookHeadersError: If headers or body are missing
        InvalidSignatureError: If the signature does not verify
    """
    settings = request.app.state.settings
    signature = request.headers.get("X-Hub-Signature-256")
    event_type = request.headers.get("X-GitHub-Event")
    payload = await request.body()

    if not signature or not event_type or not payload:
        logger.warning(
            f"Received webhook with missing headers or payload "
            f"(signature={bool(signature)}, event={event_type}, payload={bool(payload)})"
        )
        raise MissingWebhookHeadersError()

    if not verify_github_signature(payload, signature, settings.GITHUB_WEBHOOK_SECRET):
        logger.error(f"Webhook signature verification failed for event {event_type}")
        raise InvalidSignatureError()

    return event_type, payload
