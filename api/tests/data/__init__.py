"""Shared test data: GitHub webhook payloads and a fake Slack Web API."""

from .fake_slack import FakeSlack
from .webhooks import (
    REPO_FULL_NAME,
    REPO_ID,
    STRICT_REPO_FULL_NAME,
    TEST_SIGNING_SECRET,
    TEST_WEBHOOK_SECRET,
    parse_event,
    pull_request_event,
    review_comment_event,
    review_event,
)

__all__ = [
    "FakeSlack",
    "REPO_FULL_NAME",
    "REPO_ID",
    "STRICT_REPO_FULL_NAME",
    "TEST_SIGNING_SECRET",
    "TEST_WEBHOOK_SECRET",
    "parse_event",
    "pull_request_event",
    "review_comment_event",
    "review_event",
]
