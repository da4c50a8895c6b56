"""
Daily Metrics Gate

At most one biometric submission per user per UTC calendar day. The store
does not enforce this; callers check has_submitted_today() before submit().
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Mapping

from healthquest.db.gateway import DataGateway
from healthquest.exceptions import ValidationError
from healthquest.gamification.points_ledger import METRICS_SUBMISSION_POINTS, PointsLedger
from healthquest.models.activity import METRIC_FIELDS, DailyMetricRecord
from healthquest.models.session import Session
from healthquest.utils.datetime_helpers import now_utc, utc_day_bounds

logger = logging.getLogger(__name__)

METRICS_COLLECTION = "daily_metrics"


def parse_metric_fields(raw_fields: Mapping[str, Any]) -> Dict[str, float]:
    """
    Parse raw form values into numbers.

    Empty values, values that are not decimal numbers, and unknown field
    names are dropped; they never fail the submission and are never stored
    as zero or null.

    Example:
        parse_metric_fields({"heartRate": "72", "steps": ""}) == {"heartRate": 72.0}
    """
    parsed: Dict[str, float] = {}
    for field, value in raw_fields.items():
        if field not in METRIC_FIELDS:
            logger.warning(f"Dropping unknown metric field '{field}'")
            continue
        if value is None or isinstance(value, bool):
            continue
        text = str(value).strip()
        if not text:
            continue
        try:
            number = float(text)
        except ValueError:
            logger.warning(f"Dropping non-numeric value for '{field}': {text!r}")
            continue
        if number != number or number in (float("inf"), float("-inf")):
            logger.warning(f"Dropping non-finite value for '{field}': {text!r}")
            continue
        parsed[field] = number
    return parsed


class DailyMetricsGate:
    """Daily metrics submission with a once-per-UTC-day award"""

    def __init__(
        self,
        gateway: DataGateway,
        ledger: PointsLedger,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.gateway = gateway
        self.ledger = ledger
        self.clock = clock

    async def has_submitted_today(self, user_id: str) -> bool:
        """True iff a record exists for the user within [today 00:00 UTC, tomorrow 00:00 UTC)"""
        start, end = utc_day_bounds(self.clock())
        rows = await self.gateway.select(
            METRICS_COLLECTION,
            {"userId": user_id},
            gte={"createdAt": start},
            lt={"createdAt": end},
            columns=["id"],
            limit=1,
        )
        return len(rows) > 0

    async def _store(self, user_id: str, raw_fields: Mapping[str, Any]) -> DailyMetricRecord:
        metrics = parse_metric_fields(raw_fields)
        stored = await self.gateway.insert(METRICS_COLLECTION, [{"userId": user_id, **metrics}])
        logger.info(f"Saved daily metrics for user {user_id}: {sorted(metrics)}")
        return DailyMetricRecord.model_validate(stored[0])

    async def submit(self, user_id: str, raw_fields: Mapping[str, Any]) -> DailyMetricRecord:
        """
        Persist one submission and award the fixed metrics points.

        Always inserts; the once-per-day check is the caller's job.

        Returns:
            The stored record

        Raises:
            PersistenceError: the insert failed (no points awarded) or the
                award failed after the insert
        """
        record = await self._store(user_id, raw_fields)
        await self.ledger.award(user_id, METRICS_SUBMISSION_POINTS, source="daily metrics")
        return record

    async def submit_for_session(self, session: Session, raw_fields: Mapping[str, Any]) -> DailyMetricRecord:
        """
        Gate, submit and award for an authenticated session, then mark the
        day as submitted on the session.

        Raises:
            ValidationError: metrics were already submitted today
        """
        user = session.require_user()

        if await self.has_submitted_today(user.id):
            session.metrics_submitted_today = True
            raise ValidationError(
                "Metrics have already been submitted today",
                field="metrics",
                user_id=user.id,
                operation="submit_metrics",
                user_message="Thanks for submitting today! Come back tomorrow.",
            )

        record = await self._store(user.id, raw_fields)
        await self.ledger.award_to_session(session, METRICS_SUBMISSION_POINTS, source="daily metrics")
        session.metrics_submitted_today = True
        return record
