"""Daily metrics and game session models"""
from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import Field

from healthquest.models.base import RecordModel


# Recognised metric fields, camelCase as submitted
METRIC_FIELDS = (
    "heartRate",          # bpm
    "steps",              # count
    "sleepHours",         # hours
    "breathingRate",      # breaths/min
    "distanceTravelled",  # km
    "caloriesBurnt",      # kcal
)


class DailyMetrics(RecordModel):
    """One submission's measurements; every field optional"""
    heart_rate: Optional[float] = None
    steps: Optional[float] = None
    sleep_hours: Optional[float] = None
    breathing_rate: Optional[float] = None
    distance_travelled: Optional[float] = None
    calories_burnt: Optional[float] = None


class DailyMetricRecord(DailyMetrics):
    """Persisted submission (append-only)"""
    id: Optional[int] = None
    user_id: str
    created_at: Optional[datetime] = None


class GameType(str, Enum):
    CLICKER = "Clicker"
    MEMORY = "Memory"


class GameSession(RecordModel):
    """Append-only record of a finished mini-game"""
    user_id: str
    game_type: GameType
    score: int = Field(..., ge=0)
