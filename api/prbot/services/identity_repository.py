"""SQLite repository mapping GitHub identities to Slack identities.

Two small key-value tables:
- github_slack_users: GitHub login -> Slack user ID (for @-mentions)
- github_team_channels: GitHub team slug -> Slack channel IDs (many-to-many)
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)

CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS github_slack_users (
    github_username TEXT PRIMARY KEY,
    slack_user_id TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS github_team_channels (
    github_team TEXT NOT NULL,
    slack_channel TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (github_team, slack_channel)
);
"""


class IdentityRepository:
    """Identity resolver backed by SQLite.

    Lookups are local and fast, so this repository is synchronous; a lock
    serializes writers sharing the file from the threadpool.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._lock = threading.Lock()
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._create_tables()
        logger.info(f"IdentityRepository initialized at {db_path}")

    def _create_tables(self) -> None:
        with self._connect() as conn:
            conn.executescript(CREATE_TABLES_SQL)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_channels_for_teams(self, team_slugs: List[str]) -> List[str]:
        """Return the distinct Slack channels mapped to any of the given teams.

        Channels are ordered by the position of the first team that maps to
        them, so announcement order follows the order GitHub lists teams.
        """
        if not team_slugs:
            logger.debug("No GitHub teams provided for channel lookup")
            return []

        placeholders = ", ".join("?" for _ in team_slugs)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT github_team, slack_channel FROM github_team_channels "
                f"WHERE github_team IN ({placeholders}) "
                f"ORDER BY created_at, slack_channel",
                list(team_slugs),
            ).fetchall()

        by_team: Dict[str, List[str]] = {}
        for team, channel in rows:
            by_team.setdefault(team, []).append(channel)

        channels: List[str] = []
        for team in team_slugs:
            for channel in by_team.get(team, []):
                if channel not in channels:
                    channels.append(channel)

        logger.debug(f"Resolved teams {team_slugs} to channels {channels}")
        return channels

    def resolve_chat_handle(self, github_username: str) -> Optional[str]:
        """Return the Slack user ID linked to a GitHub login, if any."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT slack_user_id FROM github_slack_users WHERE github_username = ?",
                (github_username,),
            ).fetchone()
        return row[0] if row else None

    # ------------------------------------------------------------------
    # User mappings
    # ------------------------------------------------------------------

    def set_chat_handle(self, github_username: str, slack_user_id: str) -> None:
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO github_slack_users (github_username, slack_user_id)
                VALUES (?, ?)
                ON CONFLICT(github_username) DO UPDATE
                SET slack_user_id = excluded.slack_user_id
                """,
                (github_username, slack_user_id),
            )
        logger.info(f"Linked GitHub user {github_username} to Slack user {slack_user_id}")

    def delete_chat_handle(self, github_username: str) -> bool:
        """Remove a user mapping. Returns True if a mapping existed."""
        with self._lock, self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM github_slack_users WHERE github_username = ?",
                (github_username,),
            )
            removed = cursor.rowcount > 0
        if removed:
            logger.info(f"Removed Slack link for GitHub user {github_username}")
        else:
            logger.info(f"No Slack link found to remove for GitHub user {github_username}")
        return removed

    # ------------------------------------------------------------------
    # Team -> channel mappings
    # ------------------------------------------------------------------

    def get_team_channels(self, github_team: str) -> List[str]:
        return self.resolve_channels_for_teams([github_team])

    def add_team_channel(self, github_team: str, slack_channel: str) -> bool:
        """Link a team to a channel. Returns False if already linked."""
        with self._lock, self._connect() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO github_team_channels (github_team, slack_channel) "
                "VALUES (?, ?)",
                (github_team, slack_channel),
            )
            added = cursor.rowcount > 0
        logger.info(
            f"Team channel mapping {github_team} -> {slack_channel} "
            f"{'added' if added else 'already exists'}"
        )
        return added

    def remove_team_channel(self, github_team: str, slack_channel: str) -> bool:
        with self._lock, self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM github_team_channels "
                "WHERE github_team = ? AND slack_channel = ?",
                (github_team, slack_channel),
            )
            removed = cursor.rowcount > 0
        if not removed:
            logger.info(f"No team channel mapping {github_team} -> {slack_channel} to remove")
        return removed

    def set_team_channels(self, github_team: str, slack_channels: List[str]) -> None:
        """Replace every channel mapping for a team."""
        with self._lock, self._connect() as conn:
            conn.execute(
                "DELETE FROM github_team_channels WHERE github_team = ?",
                (github_team,),
            )
            conn.executemany(
                "INSERT OR IGNORE INTO github_team_channels (github_team, slack_channel) "
                "VALUES (?, ?)",
                [(github_team, channel) for channel in slack_channels],
            )
        logger.info(f"Set {len(slack_channels)} channel(s) for GitHub team {github_team}")

    # ------------------------------------------------------------------
    # Bootstrapping and health
    # ------------------------------------------------------------------

    def seed(
        self,
        channel_map: Optional[Dict[str, List[str]]] = None,
        user_map: Optional[Dict[str, str]] = None,
    ) -> None:
        """Load mappings from configuration without removing existing ones.

        Existing user links win over the configured ones, so a link changed
        with /addGithubUser survives a restart.
        """
        for team, channels in (channel_map or {}).items():
            for channel in channels:
                self.add_team_channel(team, channel)
        if user_map:
            with self._lock, self._connect() as conn:
                conn.executemany(
                    "INSERT OR IGNORE INTO github_slack_users "
                    "(github_username, slack_user_id) VALUES (?, ?)",
                    list(user_map.items()),
                )
            logger.info(f"Seeded {len(user_map)} GitHub user link(s)")

    def is_healthy(self) -> bool:
        try:
            with self._connect() as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error as e:
            logger.error(f"Identity database health check failed: {e}")
            return False
