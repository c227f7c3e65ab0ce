import json
import logging
import os
from functools import lru_cache
from pathlib import Path

from pydantic import ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Retention window for PR tracking records (3 days)
THREE_DAYS_IN_SECONDS = 259200


class Settings(BaseSettings):
    # API settings
    DEBUG: bool = False
    PROJECT_NAME: str = "PR Reaction Bot"
    LOG_LEVEL: str = "INFO"

    # Environment settings
    ENVIRONMENT: str = "development"

    # Directory settings
    DATA_DIR: str = "api/data"

    # GitHub webhook settings
    GITHUB_WEBHOOK_SECRET: str = ""

    # Slack settings
    SLACK_BOT_TOKEN: str = ""
    SLACK_SIGNING_SECRET: str = ""  # Slash commands are disabled when empty
    SLACK_API_URL: str = "https://slack.com/api"
    SLACK_API_TIMEOUT: float = 10.0  # Seconds, per outbound call
    SLACK_API_MAX_RETRIES: int = 2  # Extra attempts for network errors/rate limits

    # PR tracking cache settings
    PR_CACHE_BACKEND: str = "sqlite"  # "memory" or "sqlite"
    PR_CACHE_TTL_SECONDS: int = THREE_DAYS_IN_SECONDS
    PR_CACHE_MAX_ENTRIES: int = 10000
    PR_CACHE_TIMEOUT: float = 5.0  # Seconds, per cache operation

    # Approval policy - repos (owner/repo) that need two approvals
    TWO_APPROVAL_REPOS: str | list[str] = ""

    # Identity seeds, loaded into the identity store at startup
    REVIEWER_GROUP_CHANNEL_MAP: str | dict = "{}"
    GITHUB_TO_SLACK_USER_MAP: str | dict = "{}"

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="allow",
        validate_default=True,
    )

    @property
    def IDENTITY_DB_PATH(self) -> str:
        """Complete path to the identity mapping database"""
        return os.path.join(self.DATA_DIR, "identity.db")

    @property
    def PR_CACHE_DB_PATH(self) -> str:
        """Complete path to the persistent PR tracking cache"""
        return os.path.join(self.DATA_DIR, "pr_cache.db")

    def required_approvals(self, repo_full_name: str) -> int:
        """Number of approvals a PR in this repository needs to be mergeable.

        Consulted on every merge-readiness evaluation so that policy changes
        apply to already-tracked PRs without touching their records.
        """
        return 2 if repo_full_name in self.TWO_APPROVAL_REPOS else 1

    @field_validator("SLACK_API_URL")
    @classmethod
    def validate_slack_api_url(cls, v: str) -> str:
        """Normalize the Slack Web API base URL.

        Raises:
            ValueError: If SLACK_API_URL is empty
        """
        v = v.strip()
        if not v:
            raise ValueError("SLACK_API_URL must be non-empty")
        if "://" not in v:
            v = "https://" + v
        return v.rstrip("/")

    @field_validator("SLACK_API_TIMEOUT", "PR_CACHE_TIMEOUT")
    @classmethod
    def validate_timeouts(cls, v: float, info: ValidationInfo) -> float:
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive, got {v}")
        return v

    @field_validator("SLACK_API_MAX_RETRIES")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"SLACK_API_MAX_RETRIES must be >= 0, got {v}")
        return v

    @field_validator("PR_CACHE_TTL_SECONDS", "PR_CACHE_MAX_ENTRIES")
    @classmethod
    def validate_positive_ints(cls, v: int, info: ValidationInfo) -> int:
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive, got {v}")
        return v

    @field_validator("PR_CACHE_BACKEND")
    @classmethod
    def validate_cache_backend(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in {"memory", "sqlite"}:
            raise ValueError(
                f"PR_CACHE_BACKEND must be 'memory' or 'sqlite', got '{v}'"
            )
        return v

    @field_validator("TWO_APPROVAL_REPOS", mode="before")
    @classmethod
    def parse_two_approval_repos(cls, v: str | list[str]) -> list[str]:
        """Normalize TWO_APPROVAL_REPOS to a list of owner/repo names.

        Accepts either a comma-separated string or a list of strings.
        Handles trimming whitespace and ignores empty entries.
        """
        if isinstance(v, list):
            return [
                repo.strip() for repo in v if isinstance(repo, str) and repo.strip()
            ]

        if isinstance(v, str):
            return [repo.strip() for repo in v.split(",") if repo.strip()]

        return []

    @field_validator("REVIEWER_GROUP_CHANNEL_MAP", mode="before")
    @classmethod
    def parse_channel_map(cls, v: str | dict) -> dict[str, list[str]]:
        """Normalize the team -> channel seed map.

        Values may be a single channel ID or a list of channel IDs; the
        result always maps a team slug to a list.
        """
        raw = _load_json_object(v, "REVIEWER_GROUP_CHANNEL_MAP")
        normalized: dict[str, list[str]] = {}
        for team, channels in raw.items():
            if isinstance(channels, str):
                channels = [channels]
            if not isinstance(channels, list):
                raise ValueError(
                    f"REVIEWER_GROUP_CHANNEL_MAP['{team}'] must be a string or list"
                )
            normalized[str(team)] = [
                str(c).strip() for c in channels if str(c).strip()
            ]
        return normalized

    @field_validator("GITHUB_TO_SLACK_USER_MAP", mode="before")
    @classmethod
    def parse_user_map(cls, v: str | dict) -> dict[str, str]:
        raw = _load_json_object(v, "GITHUB_TO_SLACK_USER_MAP")
        return {str(k): str(val) for k, val in raw.items() if val}

    @classmethod
    def _is_production(cls, info: ValidationInfo) -> bool:
        raw_env = info.data.get("ENVIRONMENT", "development")
        environment = str(raw_env).strip().lower()
        if environment in {"prod"}:
            environment = "production"
        return environment == "production"

    @field_validator("GITHUB_WEBHOOK_SECRET", "SLACK_BOT_TOKEN")
    @classmethod
    def validate_secrets_in_production(cls, v: str, info: ValidationInfo) -> str:
        """Ensure the webhook secret and bot token are set in production."""
        if cls._is_production(info) and not v.strip():
            raise ValueError(f"{info.field_name} required in production")
        return v.strip()

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Make paths absolute
        self.DATA_DIR = os.path.abspath(self.DATA_DIR)

    def ensure_data_dirs(self) -> None:
        """Create required data directories if they don't exist.

        Called during application startup (lifespan) to avoid import-time I/O.
        """
        Path(self.DATA_DIR).mkdir(parents=True, exist_ok=True)


def _load_json_object(value: str | dict, field_name: str) -> dict:
    if isinstance(value, dict):
        return value
    if value is None or not str(value).strip():
        return {}
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        raise ValueError(f"{field_name} must be a JSON object: {e}") from e
    if not isinstance(parsed, dict):
        raise ValueError(f"{field_name} must be a JSON object")
    return parsed


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached application settings instance with lazy initialization.

    Settings are only created once on first access, then cached for subsequent calls.
    This prevents module-level side effects and allows testing without environment variables.

    Returns:
        Settings: Application settings object
    """
    return Settings()


def reset_settings() -> None:
    """Reset the cached settings instance.

    Useful for testing when you need to reload settings with different values.
    """
    get_settings.cache_clear()
