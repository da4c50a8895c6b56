"""
Goal/Recommendation Reconciler

Fetches suggested goals at most once per local calendar day, replaces the
user's recommendation set with each new batch, and awards points for goals
saved as complete while storage still records them as incomplete.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from pydantic import BaseModel

from healthquest.config import GOAL_TIMEZONE
from healthquest.db.gateway import DataGateway
from healthquest.exceptions import GenerationError, GoalSourceError, ValidationError
from healthquest.gamification.points_ledger import DIFFICULTY_POINTS, PointsLedger
from healthquest.models.recommendation import Recommendation, RecommendationStatus, WorkingSet
from healthquest.models.session import Session
from healthquest.services.generation_log import GenerationLog
from healthquest.services.goal_source import GoalSourceClient
from healthquest.utils.datetime_helpers import is_same_local_day, now_utc

logger = logging.getLogger(__name__)

RECOMMENDATIONS_COLLECTION = "recommendations"
STATUS_COLLECTION = "recommendation_status"
STATUS_CONFLICT_KEY = ("userId", "recommendationId")


class SaveOutcome(BaseModel):
    """Result of saving a working set"""
    points_awarded: int = 0
    message: str


class RecommendationService:
    """Daily goal generation and completion scoring"""

    def __init__(
        self,
        gateway: DataGateway,
        ledger: PointsLedger,
        goal_source: GoalSourceClient,
        generation_log: GenerationLog,
        clock: Callable[[], datetime] = now_utc,
        tz_name: Optional[str] = GOAL_TIMEZONE,
    ):
        self.gateway = gateway
        self.ledger = ledger
        self.goal_source = goal_source
        self.generation_log = generation_log
        self.clock = clock
        self.tz_name = tz_name

    async def can_generate_today(self, user_id: str) -> bool:
        """False when a batch was already generated for the user on the current local day"""
        last = await self.generation_log.last_generated(user_id)
        if last is None:
            return True
        return not is_same_local_day(last, self.clock(), self.tz_name)

    async def fetch(self, user_id: str) -> WorkingSet:
        """
        Load the user's recommendations joined with their completion status.

        A recommendation without a status row is incomplete.
        """
        rows = await self.gateway.select(RECOMMENDATIONS_COLLECTION, {"userId": user_id}, order_by="id")
        statuses = await self.gateway.select(
            STATUS_COLLECTION,
            {"userId": user_id},
            columns=["recommendationId", "isCompleted"],
        )
        completed = {s["recommendationId"]: bool(s["isCompleted"]) for s in statuses}

        recommendations = [
            Recommendation.model_validate({**row, "isCompleted": completed.get(row["id"], False)})
            for row in rows
        ]
        return WorkingSet.from_persisted(recommendations)

    async def generate(self, user_id: str) -> list[Recommendation]:
        """
        Replace the user's recommendations with a fresh batch from the goal source.

        Returns:
            The new recommendations, all incomplete

        Raises:
            GenerationError: daily limit reached (no webhook call), webhook
                failure, or no usable goals (no writes in either case)
            PersistenceError: the replacement failed and was rolled back
        """
        if not await self.can_generate_today(user_id):
            raise GenerationError(
                "Goals were already generated today",
                user_id=user_id,
                operation="generate_goals",
                user_message="You can only generate new goals once per day.",
            )

        try:
            goals = await self.goal_source.fetch_goals(user_id)
        except GoalSourceError as e:
            raise GenerationError(
                f"Goal source unavailable: {e.message}",
                user_id=user_id,
                operation="generate_goals",
                cause=e,
            ) from e

        if not goals:
            raise GenerationError(
                "Goal source returned no goals",
                user_id=user_id,
                operation="generate_goals",
            )

        async with self.gateway.transaction():
            await self.gateway.delete(STATUS_COLLECTION, {"userId": user_id})
            await self.gateway.delete(RECOMMENDATIONS_COLLECTION, {"userId": user_id})
            stored = await self.gateway.insert(
                RECOMMENDATIONS_COLLECTION,
                [{**goal.to_record(), "userId": user_id} for goal in goals],
            )

        await self.generation_log.record(user_id, self.clock())
        logger.info(f"Generated {len(stored)} new goals for user {user_id}")
        return [Recommendation.model_validate({**row, "isCompleted": False}) for row in stored]

    @staticmethod
    def toggle_local(working_set: WorkingSet, recommendation_id: int) -> Recommendation:
        """Flip one item's completion flag in memory; nothing is persisted"""
        rec = working_set.get(recommendation_id)
        if rec is None:
            raise ValidationError(
                f"Recommendation {recommendation_id} is not in the working set",
                field="recommendationId",
                value=recommendation_id,
                operation="toggle_recommendation",
            )
        rec.is_completed = not rec.is_completed
        return rec

    async def _persist(self, user_id: str, working_set: WorkingSet) -> tuple[int, int]:
        """
        Write every status in the working set and award the points earned,
        in one transaction.

        Earned points are diffed against the statuses in storage, not the
        working set's snapshot: a goal already completed by another session
        earns nothing here. The user's recommendation rows are locked first
        so that concurrent saves for the same user run one after the other.
        Items whose recommendation no longer exists are skipped.

        Returns:
            (points earned, ledger total after the save)
        """
        async with self.gateway.transaction():
            rows = await self.gateway.select(
                RECOMMENDATIONS_COLLECTION,
                {"userId": user_id},
                columns=["id"],
                for_update=True,
            )
            stored_ids = {row["id"] for row in rows}
            statuses = await self.gateway.select(
                STATUS_COLLECTION,
                {"userId": user_id},
                columns=["recommendationId", "isCompleted"],
            )
            persisted = {s["recommendationId"]: bool(s["isCompleted"]) for s in statuses}

            current = [rec for rec in working_set.items if rec.id in stored_ids]
            if len(current) < len(working_set.items):
                logger.warning(
                    f"Skipping {len(working_set.items) - len(current)} stale goals for user {user_id}"
                )

            earned = sum(
                DIFFICULTY_POINTS[rec.difficulty]
                for rec in current
                if rec.is_completed and not persisted.get(rec.id, False)
            )

            await self.gateway.upsert(
                STATUS_COLLECTION,
                [
                    RecommendationStatus(
                        user_id=user_id, recommendation_id=rec.id, is_completed=rec.is_completed
                    ).to_record()
                    for rec in current
                ],
                on_conflict=STATUS_CONFLICT_KEY,
            )
            if earned > 0:
                new_total = await self.ledger.award(user_id, earned, source="completed goals")
            else:
                new_total = await self.ledger.get_points(user_id)

        working_set.mark_persisted()
        return earned, new_total

    @staticmethod
    def _outcome(earned: int) -> SaveOutcome:
        if earned > 0:
            return SaveOutcome(points_awarded=earned, message=f"Changes saved! You've earned {earned} points!")
        return SaveOutcome(points_awarded=0, message="Your progress has been saved.")

    async def save_changes(self, user_id: str, working_set: WorkingSet) -> SaveOutcome:
        """
        Persist completion flags and award points for newly completed goals.

        Points = sum of DIFFICULTY_POINTS over items that are complete in
        the working set and incomplete (or without a status) in storage.
        Saving the same completion twice, from one session or from two,
        pays once.

        Raises:
            PersistenceError: a write failed; nothing was saved or awarded
        """
        earned, _ = await self._persist(user_id, working_set)
        return self._outcome(earned)

    # ------------------------------------------------------------------
    # Session helpers
    # ------------------------------------------------------------------

    async def load_for_session(self, session: Session) -> WorkingSet:
        user = session.require_user()
        session.working_set = await self.fetch(user.id)
        return session.working_set

    async def generate_for_session(self, session: Session) -> WorkingSet:
        user = session.require_user()
        recommendations = await self.generate(user.id)
        session.working_set = WorkingSet.from_persisted(recommendations)
        return session.working_set

    async def save_for_session(self, session: Session) -> SaveOutcome:
        user = session.require_user()
        if session.working_set is None:
            raise ValidationError(
                "No recommendations loaded",
                field="recommendations",
                user_id=user.id,
                operation="save_recommendations",
            )

        earned, new_total = await self._persist(user.id, session.working_set)
        user.points = new_total
        return self._outcome(earned)
