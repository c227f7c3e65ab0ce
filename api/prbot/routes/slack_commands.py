"""Slack slash commands for managing GitHub <-> Slack identity links.

    /addGithubUser <login>      link the invoking Slack user to a GitHub login
    /removeGithubUser <login>   remove that link
    /addChannel <team-slug>     announce PRs for a GitHub team in this channel
    /removeChannel <team-slug>  stop announcing them here

All replies are ephemeral (only the invoking user sees them).
"""

import logging
from typing import Optional
from urllib.parse import parse_qs

from fastapi import APIRouter, Depends, Request
from prbot.core.security import verify_slack_request
from prbot.services.identity_repository import IdentityRepository
from pydantic import BaseModel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/slack")


class SlashCommandPayload(BaseModel):
    """The fields of a slash command form body the bot reads."""

    user_id: Optional[str] = None
    channel_id: Optional[str] = None
    text: Optional[str] = None

    @classmethod
    def from_form(cls, body: str) -> "SlashCommandPayload":
        params = parse_qs(body)
        return cls(
            user_id=params.get("user_id", [None])[0] or None,
            channel_id=params.get("channel_id", [None])[0] or None,
            text=(params.get("text", [""])[0] or "").strip() or None,
        )


class SlashCommandResponse(BaseModel):
    response_type: str = "ephemeral"
    text: str


def _identity(request: Request) -> IdentityRepository:
    return request.app.state.identity


def _reply(text: str) -> SlashCommandResponse:
    return SlashCommandResponse(text=text)


@router.post("/addGithubUser", response_model=SlashCommandResponse)
async def add_github_user(
    request: Request, body: str = Depends(verify_slack_request)
) -> SlashCommandResponse:
    command = SlashCommandPayload.from_form(body)
    if not command.text:
        return _reply(
            "Please provide a GitHub username. Usage: /addGithubUser <github-username>"
        )
    if not command.user_id:
        logger.warning("Unable to identify Slack user in /addGithubUser command")
        return _reply("Unable to identify user. Please try again.")

    _identity(request).set_chat_handle(command.text, command.user_id)
    return _reply(
        f":white_check_mark: Successfully linked your Slack account to GitHub "
        f"username: {command.text}"
    )


@router.post("/removeGithubUser", response_model=SlashCommandResponse)
async def remove_github_user(
    request: Request, body: str = Depends(verify_slack_request)
) -> SlashCommandResponse:
    command = SlashCommandPayload.from_form(body)
    if not command.text:
        return _reply(
            "Please provide a GitHub username. "
            "Usage: /removeGithubUser <github-username>"
        )
    if not command.user_id:
        logger.warning("Unable to identify Slack user in /removeGithubUser command")
        return _reply("Unable to identify user. Please try again.")

    if not _identity(request).delete_chat_handle(command.text):
        return _reply(f"No Slack account is linked to GitHub username: {command.text}")
    return _reply(
        f":boom: Successfully removed the Slack user linked with GitHub user: "
        f"{command.text}"
    )


@router.post("/addChannel", response_model=SlashCommandResponse)
async def add_channel(
    request: Request, body: str = Depends(verify_slack_request)
) -> SlashCommandResponse:
    command = SlashCommandPayload.from_form(body)
    if not command.text:
        return _reply(
            "Please provide a GitHub team name. Usage: /addChannel <github-team>"
        )
    if not command.channel_id:
        logger.warning("Unable to identify Slack channel in /addChannel command")
        return _reply("Unable to identify channel. Please try again.")

    _identity(request).add_team_channel(command.text, command.channel_id)
    return _reply(
        f":white_check_mark: Successfully linked this channel to GitHub team: "
        f"{command.text}"
    )


@router.post("/removeChannel", response_model=SlashCommandResponse)
async def remove_channel(
    request: Request, body: str = Depends(verify_slack_request)
) -> SlashCommandResponse:
    command = SlashCommandPayload.from_form(body)
    if not command.text:
        return _reply(
            "Please provide a GitHub team name. Usage: /removeChannel <github-team>"
        )
    if not command.channel_id:
        logger.warning("Unable to identify Slack channel in /removeChannel command")
        return _reply("Unable to identify channel. Please try again.")

    if not _identity(request).remove_team_channel(command.text, command.channel_id):
        return _reply(f"This channel is not linked to GitHub team: {command.text}")
    return _reply(
        f":boom: Successfully unlinked this channel from GitHub team: {command.text}"
    )
