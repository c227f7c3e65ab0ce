"""Tests for the Slack Web API client against an httpx.MockTransport."""

import json
from typing import Callable, List

import httpx
import pytest
from prbot.core.exceptions import SlackAPIError
from prbot.services.slack_client import SlackClient


def _client(
    handler: Callable[[httpx.Request], httpx.Response], max_retries: int = 2
) -> SlackClient:
    return SlackClient(
        token="xoxb-test",
        base_url="https://slack.test/api",
        timeout=1.0,
        max_retries=max_retries,
        retry_backoff=0,
        transport=httpx.MockTransport(handler),
    )


def _recording(responses: List[httpx.Response], seen: List[httpx.Request]):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return responses.pop(0)

    return handler


@pytest.mark.unit
class TestSlackClientCalls:
    @pytest.mark.asyncio
    async def test_post_message_returns_ts(self):
        seen: List[httpx.Request] = []
        client = _client(
            _recording([httpx.Response(200, json={"ok": True, "ts": "171.42"})], seen)
        )

        ts = await client.post_message("C1", "hello")

        assert ts == "171.42"
        request = seen[0]
        assert request.url.path == "/api/chat.postMessage"
        assert request.headers["Authorization"] == "Bearer xoxb-test"
        assert json.loads(request.content) == {
            "channel": "C1",
            "text": "hello",
            "mrkdwn": True,
        }
        await client.aclose()

    @pytest.mark.asyncio
    async def test_post_message_without_ts_fails(self):
        client = _client(_recording([httpx.Response(200, json={"ok": True})], []))
        with pytest.raises(SlackAPIError) as exc_info:
            await client.post_message("C1", "hello")
        assert exc_info.value.error == "missing_ts"

    @pytest.mark.asyncio
    async def test_add_and_remove_reaction_payloads(self):
        seen: List[httpx.Request] = []
        client = _client(
            _recording(
                [
                    httpx.Response(200, json={"ok": True}),
                    httpx.Response(200, json={"ok": True}),
                ],
                seen,
            )
        )

        await client.add_reaction("C1", "1.1", "rocket")
        await client.remove_reaction("C1", "1.1", "rocket")

        assert [r.url.path for r in seen] == [
            "/api/reactions.add",
            "/api/reactions.remove",
        ]
        assert json.loads(seen[0].content) == {
            "channel": "C1",
            "timestamp": "1.1",
            "name": "rocket",
        }


@pytest.mark.unit
class TestSlackClientErrors:
    @pytest.mark.asyncio
    async def test_slack_error_code_is_surfaced(self):
        client = _client(
            _recording(
                [httpx.Response(200, json={"ok": False, "error": "already_reacted"})],
                [],
            )
        )
        with pytest.raises(SlackAPIError) as exc_info:
            await client.add_reaction("C1", "1.1", "rocket")
        assert exc_info.value.error == "already_reacted"
        assert exc_info.value.is_idempotent_conflict
        assert exc_info.value.method == "reactions.add"

    @pytest.mark.asyncio
    async def test_non_retryable_error_is_not_retried(self):
        seen: List[httpx.Request] = []
        client = _client(
            _recording(
                [httpx.Response(200, json={"ok": False, "error": "channel_not_found"})],
                seen,
            )
        )
        with pytest.raises(SlackAPIError) as exc_info:
            await client.add_reaction("C1", "1.1", "rocket")
        assert exc_info.value.error == "channel_not_found"
        assert not exc_info.value.is_idempotent_conflict
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self):
        seen: List[httpx.Request] = []
        client = _client(
            _recording(
                [
                    httpx.Response(429, headers={"Retry-After": "1"}),
                    httpx.Response(200, json={"ok": True}),
                ],
                seen,
            )
        )
        await client.add_reaction("C1", "1.1", "rocket")
        assert len(seen) == 2

    @pytest.mark.asyncio
    async def test_server_errors_exhaust_retries(self):
        seen: List[httpx.Request] = []
        client = _client(
            _recording([httpx.Response(503) for _ in range(3)], seen), max_retries=2
        )
        with pytest.raises(SlackAPIError) as exc_info:
            await client.add_reaction("C1", "1.1", "rocket")
        assert exc_info.value.error == "http_error"
        assert len(seen) == 3

    @pytest.mark.asyncio
    async def test_client_error_maps_to_invalid_request(self):
        client = _client(_recording([httpx.Response(404)], []))
        with pytest.raises(SlackAPIError) as exc_info:
            await client.remove_reaction("C1", "1.1", "rocket")
        assert exc_info.value.error == "invalid_request"

    @pytest.mark.asyncio
    async def test_invalid_json_maps_to_invalid_response(self):
        client = _client(_recording([httpx.Response(200, content=b"<html>")], []))
        with pytest.raises(SlackAPIError) as exc_info:
            await client.add_reaction("C1", "1.1", "rocket")
        assert exc_info.value.error == "invalid_response"

    @pytest.mark.asyncio
    async def test_timeout_is_retried_then_raised(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            raise httpx.ReadTimeout("slow", request=request)

        client = _client(handler, max_retries=1)
        with pytest.raises(SlackAPIError) as exc_info:
            await client.add_reaction("C1", "1.1", "rocket")
        assert exc_info.value.error == "timeout"
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_connection_error_maps_to_http_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = _client(handler, max_retries=0)
        with pytest.raises(SlackAPIError) as exc_info:
            await client.post_message("C1", "hello")
        assert exc_info.value.error == "http_error"
