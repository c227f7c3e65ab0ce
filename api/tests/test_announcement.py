"""Tests for announcement rendering and multi-channel posting."""

import asyncio

import pytest
from prbot.models.tracking import MessageLocation
from prbot.services.announcement import AnnouncementService, build_announcement_text
from tests.data import FakeSlack


@pytest.mark.unit
class TestBuildAnnouncementText:
    def _text(self, **kwargs) -> str:
        defaults = dict(
            pr_url="https://github.com/acme/widgets/pull/7",
            pr_number=7,
            pr_title="Add widget sprockets",
            creator_login="alice",
            repo_full_name="acme/widgets",
        )
        defaults.update(kwargs)
        return build_announcement_text(**defaults)

    def test_links_pr_and_repo(self):
        text = self._text()
        assert "<https://github.com/acme/widgets/pull/7|*#7* - *Add widget sprockets*>" in text
        assert "<https://github.com/acme/widgets|acme/widgets>" in text

    def test_unlinked_creator_is_bold(self):
        assert "*Created by:* *alice*" in self._text()

    def test_linked_creator_is_mentioned(self):
        assert "*Created by:* <@U-ALICE>" in self._text(creator_handle="U-ALICE")

    def test_single_approval_has_no_note(self):
        assert "approvals required" not in self._text(required_approvals=1)

    def test_strict_repo_notes_required_approvals(self):
        assert "*(2 approvals required)*" in self._text(required_approvals=2)


@pytest.mark.unit
class TestAnnouncementService:
    @pytest.mark.asyncio
    async def test_posts_to_every_channel_in_order(self):
        slack = FakeSlack()
        locations = await AnnouncementService(slack).announce(["C1", "C2"], "hi")

        assert [loc.channel for loc in locations] == ["C1", "C2"]
        assert all(isinstance(loc, MessageLocation) for loc in locations)
        assert {(ch, text) for ch, _, text in slack.posted} == {("C1", "hi"), ("C2", "hi")}

    @pytest.mark.asyncio
    async def test_failed_channel_is_left_out(self):
        slack = FakeSlack()
        slack.fail("C1", "post")
        locations = await AnnouncementService(slack).announce(["C1", "C2"], "hi")
        assert [loc.channel for loc in locations] == ["C2"]

    @pytest.mark.asyncio
    async def test_unexpected_error_is_left_out(self):
        slack = FakeSlack()
        slack.crash("C1", "post", RuntimeError("connection reset"))
        locations = await AnnouncementService(slack).announce(["C1", "C2"], "hi")
        assert [loc.channel for loc in locations] == ["C2"]

    @pytest.mark.asyncio
    async def test_timed_out_channel_is_left_out(self):
        class SlowPoster(FakeSlack):
            async def post_message(self, channel: str, text: str) -> str:
                if channel == "C-SLOW":
                    await asyncio.sleep(5)
                return await super().post_message(channel, text)

        service = AnnouncementService(SlowPoster(), timeout=0.01)
        locations = await service.announce(["C-SLOW", "C2"], "hi")
        assert [loc.channel for loc in locations] == ["C2"]
