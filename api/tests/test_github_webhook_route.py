"""Tests for POST /github-webhook: authentication, decoding and dispatch."""

import json

import pytest
from prbot.core.security import compute_github_signature
from prbot.models.tracking import make_pr_key
from tests.data import (
    REPO_ID,
    TEST_WEBHOOK_SECRET,
    pull_request_event,
    review_event,
)


def _post(client, event_type, payload, secret=TEST_WEBHOOK_SECRET, **headers):
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    request_headers = {
        "Content-Type": "application/json",
        "X-GitHub-Event": event_type,
        "X-GitHub-Delivery": "72d3162e-cc78-11e3-81ab-4c9367dc0958",
        "X-Hub-Signature-256": compute_github_signature(body, secret),
    }
    request_headers.update(headers)
    return client.post("/github-webhook", content=body, headers=request_headers)


@pytest.mark.security
class TestWebhookAuthentication:
    def test_missing_signature_is_400(self, test_client):
        response = test_client.post(
            "/github-webhook",
            content=b"{}",
            headers={"X-GitHub-Event": "pull_request"},
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "MISSING_HEADERS"

    def test_missing_event_header_is_400(self, test_client):
        body = b"{}"
        response = test_client.post(
            "/github-webhook",
            content=body,
            headers={
                "X-Hub-Signature-256": compute_github_signature(
                    body, TEST_WEBHOOK_SECRET
                )
            },
        )
        assert response.status_code == 400

    def test_bad_signature_is_401(self, test_client, fake_slack):
        response = _post(
            test_client,
            "pull_request",
            pull_request_event("review_requested", teams=["backend"]),
            secret="wrong-secret",
        )
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_SIGNATURE"
        assert fake_slack.posted == []


@pytest.mark.integration
class TestWebhookDispatch:
    def test_unknown_event_is_acknowledged(self, test_client):
        response = _post(test_client, "push", {"ref": "refs/heads/main"})
        assert response.status_code == 200
        assert response.json()["message"] == "Event type ignored"
        assert response.json()["outcome"] is None

    def test_invalid_json_is_422(self, test_client):
        response = _post(test_client, "pull_request", b"{not json")
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_PAYLOAD_PULL_REQUEST"

    def test_payload_missing_fields_is_422(self, test_client):
        response = _post(test_client, "pull_request_review", {"action": "submitted"})
        assert response.status_code == 422

    def test_review_requested_announces(self, test_client, fake_slack, pr_cache):
        response = _post(
            test_client,
            "pull_request",
            pull_request_event("review_requested", teams=["backend"]),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["event"] == "pull_request"
        assert data["outcome"]["status"] == "announced"
        assert data["outcome"]["key"] == make_pr_key(REPO_ID, 7)
        assert [ch for ch, _, _ in fake_slack.posted] == ["C-BACKEND"]

    def test_review_updates_reactions(self, test_client, fake_slack):
        _post(
            test_client,
            "pull_request",
            pull_request_event("review_requested", teams=["backend"]),
        )
        response = _post(
            test_client, "pull_request_review", review_event("approved", "bob")
        )

        assert response.status_code == 200
        outcome = response.json()["outcome"]
        assert outcome["status"] == "applied"
        assert outcome["readiness"] == "ready_to_merge"
        assert fake_slack.on_message("C-BACKEND") == {"white_check_mark", "rocket"}

    def test_untracked_pr_is_acknowledged(self, test_client, fake_slack):
        response = _post(
            test_client, "pull_request", pull_request_event("synchronize")
        )
        assert response.status_code == 200
        assert response.json()["outcome"]["status"] == "untracked"
        assert fake_slack.calls == []

    def test_slack_failure_is_still_acknowledged(self, test_client, fake_slack):
        _post(
            test_client,
            "pull_request",
            pull_request_event("review_requested", teams=["backend"]),
        )
        fake_slack.fail("C-BACKEND", "add", error="ratelimited")

        response = _post(
            test_client, "pull_request_review", review_event("approved", "bob")
        )

        assert response.status_code == 200
        assert response.json()["outcome"]["status"] == "partial"
