"""Goal/recommendation models"""
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field

from healthquest.models.base import RecordModel


class Category(str, Enum):
    DIET = "Diet"
    EXERCISE = "Exercise"
    MENTAL_HEALTH = "Mental Health"
    GENERAL = "General"


class Difficulty(str, Enum):
    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"


class GoalSuggestion(RecordModel):
    """A parsed goal from the goal source, before it is persisted"""
    goal: str = Field(..., min_length=1)
    category: Category
    difficulty: Difficulty


class Recommendation(GoalSuggestion):
    """
    Persisted goal joined with its completion status.

    is_completed is derived from recommendation_status and is never written
    to the recommendations collection.
    """
    id: int
    user_id: str
    is_completed: bool = False

    def to_record(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json", exclude={"is_completed"})


class RecommendationStatus(RecordModel):
    """Completion flag keyed by (userId, recommendationId)"""
    user_id: str
    recommendation_id: int
    is_completed: bool


class WorkingSet(BaseModel):
    """
    Recommendations the user is editing, plus the completion flags as this
    working set last saw them in storage. The snapshot only tells the client
    what changed locally; points are scored against storage at save time.
    """
    items: list[Recommendation] = Field(default_factory=list)
    snapshot: dict[int, bool] = Field(default_factory=dict)

    @classmethod
    def from_persisted(cls, recommendations: list[Recommendation]) -> "WorkingSet":
        return cls(
            items=[rec.model_copy() for rec in recommendations],
            snapshot={rec.id: rec.is_completed for rec in recommendations},
        )

    def get(self, recommendation_id: int) -> Optional[Recommendation]:
        for rec in self.items:
            if rec.id == recommendation_id:
                return rec
        return None

    def mark_persisted(self) -> None:
        self.snapshot = {rec.id: rec.is_completed for rec in self.items}
