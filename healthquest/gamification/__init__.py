"""
Gamification for healthquest

Every point-earning activity (metrics submission, mini-games, completed
goals) is awarded through the points ledger.
"""

from healthquest.gamification.points_ledger import (
    PointsLedger,
    METRICS_SUBMISSION_POINTS,
    GAME_SESSION_POINTS,
    DIFFICULTY_POINTS,
)

__all__ = [
    "PointsLedger",
    "METRICS_SUBMISSION_POINTS",
    "GAME_SESSION_POINTS",
    "DIFFICULTY_POINTS",
]
