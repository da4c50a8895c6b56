"""
Goal generation webhook client

GET <GOAL_WEBHOOK_URL>/<userId> returns plaintext, one goal per line:

    Drink 2 litres of water;Diet;Easy
    Run 5km;Exercise;Hard

Malformed lines are dropped individually with a warning.
"""

import logging
from typing import Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError as PydanticValidationError

from healthquest.config import GOAL_WEBHOOK_URL, WEBHOOK_TIMEOUT_SECONDS
from healthquest.exceptions import GenerationError, GoalSourceError
from healthquest.models.recommendation import Category, Difficulty, GoalSuggestion

logger = logging.getLogger(__name__)

VALID_CATEGORIES = {c.value for c in Category}
VALID_DIFFICULTIES = {d.value for d in Difficulty}


def parse_goal_lines(text: str, user_id: Optional[str] = None) -> list[GoalSuggestion]:
    """
    Parse `goal;category;difficulty` lines.

    Lines with other than exactly two semicolons, an empty goal, or a
    category/difficulty outside the fixed sets are skipped.

    Raises:
        GenerationError: the text had lines but none of them parsed
    """
    lines = [line.strip() for line in text.strip().splitlines()]
    lines = [line for line in lines if line]

    goals = []
    for line in lines:
        parts = line.split(";")
        if len(parts) != 3:
            logger.warning(f"Skipping malformed goal line: {line}")
            continue

        goal, category, difficulty = (part.strip() for part in parts)
        if category not in VALID_CATEGORIES or difficulty not in VALID_DIFFICULTIES:
            logger.warning(f"Skipping goal with invalid category/difficulty: {line}")
            continue

        try:
            goals.append(GoalSuggestion(goal=goal, category=category, difficulty=difficulty))
        except PydanticValidationError:
            logger.warning(f"Skipping goal with empty text: {line}")

    if not goals and lines:
        raise GenerationError(
            f"Failed to parse any goals from {len(lines)} response lines",
            user_id=user_id,
            operation="parse_goals",
        )

    return goals


class GoalSourceClient:
    """Fetches suggested goals for a user from the goal webhook"""

    def __init__(
        self,
        base_url: str = GOAL_WEBHOOK_URL,
        timeout: float = WEBHOOK_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def fetch_goals(self, user_id: str) -> list[GoalSuggestion]:
        """
        Call the webhook and parse its response.

        Returns:
            Parsed goals (empty when the response body was empty)

        Raises:
            GoalSourceError: network failure, timeout or non-success status
            GenerationError: non-empty response with no usable lines
        """
        url = f"{self.base_url}/{quote(user_id, safe='')}"
        logger.info(f"Requesting goals for user {user_id}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.TimeoutException as e:
            raise GoalSourceError(
                f"Goal webhook timed out after {self.timeout}s",
                user_id=user_id,
                operation="fetch_goals",
                cause=e,
            ) from e
        except httpx.HTTPStatusError as e:
            raise GoalSourceError(
                f"Goal webhook failed with status: {e.response.status_code}",
                status_code=e.response.status_code,
                user_id=user_id,
                operation="fetch_goals",
                cause=e,
            ) from e
        except httpx.HTTPError as e:
            raise GoalSourceError(
                f"Goal webhook request failed: {e}",
                user_id=user_id,
                operation="fetch_goals",
                cause=e,
            ) from e

        goals = parse_goal_lines(response.text, user_id=user_id)
        logger.info(f"Goal webhook returned {len(goals)} usable goals for user {user_id}")
        return goals
