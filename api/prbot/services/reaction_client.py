"""Idempotent reaction fan-out across every message tracked for a PR.

A label counts as applied (or removed) only when every location reports
success. Slack's "already_reacted" / "not_reacted" responses mean the desired
end state already holds and count as success.
"""

import asyncio
import logging
from typing import List, Protocol, Sequence

from prbot.core.exceptions import SlackAPIError
from prbot.metrics.reconciliation_metrics import reaction_operations_total
from prbot.models.tracking import MessageLocation

logger = logging.getLogger(__name__)


class ReactionAPI(Protocol):
    """The part of the messaging platform the reaction client drives."""

    async def add_reaction(self, channel: str, timestamp: str, name: str) -> None: ...

    async def remove_reaction(
        self, channel: str, timestamp: str, name: str
    ) -> None: ...


class ReactionClient:
    """Applies and removes reaction labels on all of a PR's messages in parallel."""

    def __init__(self, api: ReactionAPI, timeout: float = 10.0):
        """
        Args:
            api: Messaging platform client
            timeout: Upper bound in seconds for a single location's call,
                including the client's own retries
        """
        self.api = api
        self.timeout = timeout

    async def apply(self, locations: Sequence[MessageLocation], label: str) -> bool:
        """Add `label` to every location. True only if all locations succeed."""
        return await self._fan_out("add", locations, label)

    async def unapply(self, locations: Sequence[MessageLocation], label: str) -> bool:
        """Remove `label` from every location. True only if all locations succeed."""
        return await self._fan_out("remove", locations, label)

    async def _fan_out(
        self, operation: str, locations: Sequence[MessageLocation], label: str
    ) -> bool:
        if not locations:
            logger.debug(f"No message locations to {operation} :{label}: on")
            return True

        results: List[bool] = await asyncio.gather(
            *(self._one(operation, location, label) for location in locations)
        )
        succeeded = all(results)
        if not succeeded:
            failed = sum(1 for ok in results if not ok)
            logger.error(
                f"Reaction {operation} :{label}: failed on {failed}/{len(locations)} "
                f"message(s); local state left unchanged"
            )
        return succeeded

    async def _one(self, operation: str, location: MessageLocation, label: str) -> bool:
        call = self.api.add_reaction if operation == "add" else self.api.remove_reaction
        try:
            await asyncio.wait_for(
                call(location.channel, location.ts, label), timeout=self.timeout
            )
        except SlackAPIError as e:
            if e.is_idempotent_conflict:
                reaction_operations_total.labels(operation, "idempotent").inc()
                logger.info(
                    f"Slack reported '{e.error}' for :{label}: on message "
                    f"{location.ts} in {location.channel}; treating as done"
                )
                return True
            reaction_operations_total.labels(operation, "failed").inc()
            logger.error(
                f"Error during reaction {operation} :{label}: on message "
                f"{location.ts} in {location.channel}: {e}"
            )
            return False
        except asyncio.TimeoutError:
            reaction_operations_total.labels(operation, "failed").inc()
            logger.error(
                f"Timed out after {self.timeout}s during reaction {operation} "
                f":{label}: on message {location.ts} in {location.channel}"
            )
            return False
        except Exception as e:
            reaction_operations_total.labels(operation, "failed").inc()
            logger.error(
                f"Unexpected error during reaction {operation} :{label}: on message "
                f"{location.ts} in {location.channel}: {type(e).__name__}: {e}",
                exc_info=True,
            )
            return False

        reaction_operations_total.labels(operation, "success").inc()
        logger.info(
            f"Reaction {operation} :{label}: on message {location.ts} "
            f"in {location.channel}"
        )
        return True
