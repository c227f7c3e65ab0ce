"""Builders for GitHub webhook payloads as GitHub delivers them."""

from typing import Any, Dict, List, Optional

from prbot.models.github import EVENT_MODELS

REPO_ID = 4242
REPO_FULL_NAME = "acme/widgets"
# Configured as a two-approval repository in the test settings
STRICT_REPO_FULL_NAME = "acme/core"

TEST_WEBHOOK_SECRET = "test-webhook-secret"
TEST_SIGNING_SECRET = "test-signing-secret"


def pull_request_payload(
    number: int = 7,
    repo_full_name: str = REPO_FULL_NAME,
    merged: Optional[bool] = False,
    teams: Optional[List[str]] = None,
) -> Dict[str, Any]:
    return {
        "number": number,
        "title": "Add widget sprockets",
        "html_url": f"https://github.com/{repo_full_name}/pull/{number}",
        "user": {"login": "alice"},
        "merged": merged,
        "requested_teams": [{"slug": slug} for slug in (teams or [])],
        "requested_reviewers": [],
        "head": {"sha": "0f1e2d3c"},
    }


def pull_request_event(
    action: str,
    number: int = 7,
    repo_full_name: str = REPO_FULL_NAME,
    repo_id: int = REPO_ID,
    merged: Optional[bool] = False,
    teams: Optional[List[str]] = None,
    requested_team: Optional[str] = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "action": action,
        "number": number,
        "pull_request": pull_request_payload(number, repo_full_name, merged, teams),
        "repository": {"id": repo_id, "full_name": repo_full_name},
        "sender": {"login": "alice"},
    }
    if requested_team:
        payload["requested_team"] = {"slug": requested_team, "name": requested_team}
    return payload


def review_event(state: str, reviewer: str, **kwargs: Any) -> Dict[str, Any]:
    payload = pull_request_event("submitted", **kwargs)
    payload["review"] = {"state": state, "user": {"login": reviewer}}
    return payload


def review_comment_event(**kwargs: Any) -> Dict[str, Any]:
    payload = pull_request_event("created", **kwargs)
    payload["comment"] = {"body": "nit: rename this", "user": {"login": "carol"}}
    return payload


def parse_event(event_type: str, payload: Dict[str, Any]):
    return EVENT_MODELS[event_type].model_validate(payload)
