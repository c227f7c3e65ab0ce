"""Posting the "new pull request" announcement that reactions are mirrored onto."""

import asyncio
import logging
from typing import List, Optional, Protocol, Sequence

from prbot.core.exceptions import SlackAPIError
from prbot.metrics.reconciliation_metrics import announcements_total
from prbot.models.tracking import MessageLocation

logger = logging.getLogger(__name__)


class MessagePoster(Protocol):
    async def post_message(self, channel: str, text: str) -> str: ...


def build_announcement_text(
    pr_url: str,
    pr_number: int,
    pr_title: str,
    creator_login: str,
    repo_full_name: str,
    creator_handle: Optional[str] = None,
    required_approvals: int = 1,
) -> str:
    """Render the Slack mrkdwn announcement for a PR.

    The creator is @-mentioned when their GitHub login is linked to a Slack
    user, otherwise shown in bold.
    """
    creator = f"<@{creator_handle}>" if creator_handle else f"*{creator_login}*"
    approval_note = (
        f" *({required_approvals} approvals required)*" if required_approvals > 1 else ""
    )

    lines = [
        "*New Pull Request!* :rocket:",
        "",
        f"<{pr_url}|*#{pr_number}* - *{pr_title}*>{approval_note}",
        "",
        f"*Created by:* {creator}",
        "",
        f"_Repo:_ <https://github.com/{repo_full_name}|{repo_full_name}>",
        "_Watch for reactions on this message to see its status._",
    ]
    return "\n".join(lines)


class AnnouncementService:
    """Posts an announcement to several channels at once."""

    def __init__(self, poster: MessagePoster, timeout: float = 10.0):
        self.poster = poster
        self.timeout = timeout

    async def announce(
        self, channels: Sequence[str], text: str
    ) -> List[MessageLocation]:
        """Post `text` to every channel in parallel.

        Returns:
            Locations of the posts that succeeded, in channel order. Failed
            channels are logged and left out so a later review request can
            try them again.
        """
        results = await asyncio.gather(
            *(self._post(channel, text) for channel in channels)
        )
        return [location for location in results if location is not None]

    async def _post(self, channel: str, text: str) -> Optional[MessageLocation]:
        try:
            ts = await asyncio.wait_for(
                self.poster.post_message(channel, text), timeout=self.timeout
            )
        except SlackAPIError as e:
            announcements_total.labels("failed").inc()
            logger.error(f"Error posting announcement to channel {channel}: {e}")
            return None
        except asyncio.TimeoutError:
            announcements_total.labels("failed").inc()
            logger.error(f"Timed out posting announcement to channel {channel}")
            return None
        except Exception as e:
            announcements_total.labels("failed").inc()
            logger.error(
                f"Unexpected error posting announcement to channel {channel}: "
                f"{type(e).__name__}: {e}",
                exc_info=True,
            )
            return None

        announcements_total.labels("success").inc()
        logger.info(f"Posted PR announcement to channel {channel}. Message TS: {ts}")
        return MessageLocation(channel=channel, ts=ts)
