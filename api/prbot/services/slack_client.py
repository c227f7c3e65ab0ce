"""
Async client for the subset of the Slack Web API the bot uses.

Features:
- Single pooled httpx.AsyncClient with a bounded per-request timeout
- Retry with exponential backoff for network errors, rate limits and 5xx
- Slack `ok: false` responses surfaced as SlackAPIError with the Slack error code
"""

import logging
from typing import Any, Dict, Optional

import httpx
from prbot.core.exceptions import SlackAPIError
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

# Error codes worth another attempt; everything else is final
RETRYABLE_ERRORS = frozenset({"ratelimited", "timeout", "http_error"})


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, SlackAPIError) and exc.error in RETRYABLE_ERRORS


class SlackClient:
    """Thin async wrapper around chat.postMessage and reactions.add/remove."""

    def __init__(
        self,
        token: str,
        base_url: str = "https://slack.com/api",
        timeout: float = 10.0,
        max_retries: int = 2,
        retry_backoff: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the Slack client.

        Args:
            token: Bot token (xoxb-...)
            base_url: Web API base URL
            timeout: Per-request timeout in seconds
            max_retries: Extra attempts for retryable failures
            retry_backoff: Exponential backoff multiplier in seconds
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._token = token
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
                headers={
                    "Authorization": f"Bearer {self._token}",
                    "Content-Type": "application/json; charset=utf-8",
                },
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def _call_once(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        client = self._get_client()
        try:
            response = await client.post(f"/{method}", json=payload)
        except httpx.TimeoutException as e:
            raise SlackAPIError("timeout", method, str(e)) from e
        except httpx.HTTPError as e:
            raise SlackAPIError("http_error", method, str(e)) from e

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After", "")
            raise SlackAPIError("ratelimited", method, f"retry after {retry_after}s")
        if response.status_code >= 500:
            raise SlackAPIError("http_error", method, f"HTTP {response.status_code}")
        if response.status_code >= 400:
            raise SlackAPIError(
                "invalid_request", method, f"HTTP {response.status_code}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise SlackAPIError("invalid_response", method, str(e)) from e

        if not data.get("ok", False):
            raise SlackAPIError(data.get("error", "unknown_error"), method)
        return data

    async def call(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Call a Web API method, retrying transient failures.

        Raises:
            SlackAPIError: If Slack rejects the call or all attempts fail
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.retry_backoff, max=5),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        f"Retrying Slack {method} "
                        f"(attempt {attempt.retry_state.attempt_number})"
                    )
                return await self._call_once(method, payload)
        raise SlackAPIError("unknown_error", method)  # pragma: no cover

    async def post_message(self, channel: str, text: str) -> str:
        """Post a message and return its timestamp (Slack message ID)."""
        data = await self.call(
            "chat.postMessage",
            {"channel": channel, "text": text, "mrkdwn": True},
        )
        ts = data.get("ts")
        if not ts:
            raise SlackAPIError("missing_ts", "chat.postMessage")
        return ts

    async def add_reaction(self, channel: str, timestamp: str, name: str) -> None:
        await self.call(
            "reactions.add",
            {"channel": channel, "timestamp": timestamp, "name": name},
        )

    async def remove_reaction(self, channel: str, timestamp: str, name: str) -> None:
        await self.call(
            "reactions.remove",
            {"channel": channel, "timestamp": timestamp, "name": name},
        )
