"""
Points Ledger

Single source of truth for a user's cumulative score. Every earning event
funnels through award(), which adds a delta in one atomic statement at the
storage boundary (no read-modify-write in the caller), so concurrent awards
for the same user cannot lose updates.

Point Award Rules:
- Daily metrics submission: 25 points (once per UTC day)
- Finished mini-game: 10 points
- Completed goal: Easy 2, Medium 5, Hard 8
"""

import logging
from typing import Dict

from healthquest.db.gateway import DataGateway
from healthquest.exceptions import ValidationError
from healthquest.models.recommendation import Difficulty
from healthquest.models.session import Session

logger = logging.getLogger(__name__)

METRICS_SUBMISSION_POINTS = 25
GAME_SESSION_POINTS = 10
DIFFICULTY_POINTS: Dict[Difficulty, int] = {
    Difficulty.EASY: 2,
    Difficulty.MEDIUM: 5,
    Difficulty.HARD: 8,
}

POINTS_COLLECTION = "user_points"


class PointsLedger:
    """Atomic points storage keyed by user id"""

    def __init__(self, gateway: DataGateway):
        self.gateway = gateway

    async def initialize(self, user_id: str) -> None:
        """Create (or reset) the user's ledger row at zero"""
        await self.gateway.upsert(
            POINTS_COLLECTION,
            [{"userId": user_id, "points": 0}],
            on_conflict=("userId",),
        )
        logger.info(f"Initialized points ledger for user {user_id}")

    async def get_points(self, user_id: str) -> int:
        """Stored total, or 0 when the user has no ledger row"""
        row = await self.gateway.select_one(POINTS_COLLECTION, {"userId": user_id}, columns=["points"])
        if not row or row.get("points") is None:
            return 0
        return int(row["points"])

    async def award(self, user_id: str, delta: int, source: str = "activity") -> int:
        """
        Add points to the user's ledger.

        Args:
            user_id: User id
            delta: Points to add (>= 0)
            source: What earned them, for the log line

        Returns:
            The persisted total after the award

        Raises:
            ValidationError: delta is negative
            PersistenceError: the ledger write failed
        """
        if delta < 0:
            raise ValidationError(
                "Point awards cannot be negative",
                field="delta",
                value=delta,
                user_id=user_id,
                operation="award_points",
            )

        new_total = await self.gateway.increment(POINTS_COLLECTION, {"userId": user_id}, "points", delta)
        logger.info(f"Awarded {delta} points to user {user_id} for {source}. Total: {new_total}")
        return new_total

    async def award_to_session(self, session: Session, delta: int, source: str = "activity") -> int:
        """
        Award points to the session's user, then mirror the persisted total
        into the session. A failed write leaves the session untouched.
        """
        user = session.require_user()
        new_total = await self.award(user.id, delta, source=source)
        user.points = new_total
        return new_total
