"""GitHub webhook endpoint.

Architecture:
    GitHub -> POST /github-webhook -> signature check -> event model
           -> ReconciliationEngine -> Slack reactions

Once a delivery is authenticated and decoded it is always acknowledged with
200, whatever happened downstream; a non-2xx response makes GitHub redeliver
the same event.
"""

import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from prbot.core.exceptions import InvalidPayloadError
from prbot.core.security import verify_github_request
from prbot.metrics.reconciliation_metrics import webhook_events_total
from prbot.models.github import EVENT_MODELS
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter()


class WebhookResponse(BaseModel):
    """Response from the webhook endpoint."""

    message: str
    event: str
    outcome: Optional[Dict[str, Any]] = None


@router.post("/github-webhook", response_model=WebhookResponse)
async def receive_github_webhook(
    request: Request,
    verified: tuple[str, bytes] = Depends(verify_github_request),
) -> WebhookResponse:
    """Receive a GitHub webhook delivery and reconcile the PR it concerns.

    Handles `pull_request`, `pull_request_review` and
    `pull_request_review_comment`; other event types are acknowledged and
    ignored.
    """
    event_type, payload = verified
    delivery_id = request.headers.get("X-GitHub-Delivery", "unknown")

    model = EVENT_MODELS.get(event_type)
    if model is None:
        logger.debug(f"Unhandled GitHub event type received: {event_type}")
        return WebhookResponse(message="Event type ignored", event=event_type)

    try:
        data = json.loads(payload)
    except ValueError as e:
        raise InvalidPayloadError(
            f"Payload is not valid JSON: {e}", event_type
        ) from e

    try:
        event = model.model_validate(data)
    except ValidationError as e:
        raise InvalidPayloadError(
            f"Payload does not describe a {event_type} event: "
            f"{e.error_count()} validation error(s)",
            event_type,
        ) from e

    action = getattr(event, "action", "")
    if event_type == "pull_request_review":
        action = event.review.state  # type: ignore[union-attr]
    webhook_events_total.labels(event_type, action).inc()
    logger.info(
        f"GitHub webhook {event_type}/{action} received and verified "
        f"(delivery {delivery_id})"
    )

    engine = request.app.state.engine
    outcome = await engine.dispatch(event)

    return WebhookResponse(
        message="Webhook received and processed",
        event=event_type,
        outcome=outcome.to_dict(),
    )
