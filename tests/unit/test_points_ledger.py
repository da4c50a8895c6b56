"""Unit tests for the points ledger (healthquest/gamification/points_ledger.py)"""
import asyncio
import pytest

from healthquest.exceptions import PersistenceError, ValidationError
from healthquest.gamification.points_ledger import (
    DIFFICULTY_POINTS,
    GAME_SESSION_POINTS,
    METRICS_SUBMISSION_POINTS,
)
from healthquest.models.recommendation import Difficulty


# ============================================================================
# Tariffs
# ============================================================================

def test_fixed_tariffs():
    """Point values per earning event"""
    assert METRICS_SUBMISSION_POINTS == 25
    assert GAME_SESSION_POINTS == 10
    assert DIFFICULTY_POINTS == {Difficulty.EASY: 2, Difficulty.MEDIUM: 5, Difficulty.HARD: 8}


# ============================================================================
# Ledger Operations
# ============================================================================

class TestPointsLedger:

    async def test_get_points_defaults_to_zero(self, ledger):
        assert await ledger.get_points("nobody") == 0

    async def test_initialize_resets_to_zero(self, ledger):
        await ledger.award("u1", 30)
        await ledger.initialize("u1")
        assert await ledger.get_points("u1") == 0

    async def test_award_returns_persisted_total(self, ledger):
        await ledger.initialize("u1")
        assert await ledger.award("u1", 25) == 25
        assert await ledger.award("u1", 10) == 35
        assert await ledger.get_points("u1") == 35

    async def test_negative_award_rejected(self, ledger):
        with pytest.raises(ValidationError):
            await ledger.award("u1", -5)
        assert await ledger.get_points("u1") == 0

    async def test_concurrent_awards_all_count(self, ledger):
        await ledger.initialize("u1")
        await asyncio.gather(
            ledger.award("u1", METRICS_SUBMISSION_POINTS),
            ledger.award("u1", GAME_SESSION_POINTS),
            ledger.award("u1", DIFFICULTY_POINTS[Difficulty.HARD]),
        )
        assert await ledger.get_points("u1") == 43


class TestAwardToSession:

    async def test_session_mirrors_persisted_total(self, ledger, authenticated_session, test_user_id):
        total = await ledger.award_to_session(authenticated_session, 10)

        assert total == 10
        assert authenticated_session.user.points == 10
        assert await ledger.get_points(test_user_id) == 10

    async def test_failed_write_leaves_session_unchanged(self, ledger, gateway, authenticated_session):
        gateway.fail_next("increment", "user_points")

        with pytest.raises(PersistenceError):
            await ledger.award_to_session(authenticated_session, 10)

        assert authenticated_session.user.points == 0
