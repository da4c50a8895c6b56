"""Pydantic models for API request/response validation"""
from typing import Optional, List
from pydantic import Field

from healthquest.models.activity import DailyMetricRecord, GameType
from healthquest.models.base import RecordModel
from healthquest.models.recommendation import Recommendation
from healthquest.models.user import HealthFields, HealthProfile, ProfileFields, User


class SignUpRequest(RecordModel):
    """Request model for sign-up"""
    email: str = Field(..., description="Account email")
    password: str = Field(..., description="At least 8 characters")
    confirm_password: Optional[str] = Field(default=None, description="Must equal password when given")


class ProvisionalIdentityResponse(RecordModel):
    id: str
    email: str


class CompleteProfileRequest(RecordModel):
    """Second sign-up step for a provisional identity"""
    id: str = Field(..., description="Provisional identity id from sign-up")
    email: str = Field(..., description="Provisional identity email")
    profile: ProfileFields
    health: HealthFields = Field(default_factory=HealthFields)


class SignInRequest(RecordModel):
    email: str
    password: str


class SignInResponse(RecordModel):
    """Sign-in accepted; the OTP has been sent"""
    session_token: str = Field(..., description="Bearer token for the rest of the session")
    state: str


class VerifyOtpRequest(RecordModel):
    email: str
    code: str = Field(..., description="Code from the OTP email")


class ProfileResponse(RecordModel):
    """Response with the signed-in user's profile"""
    user: User
    health: Optional[HealthProfile] = None


class UpdateDetailsRequest(RecordModel):
    """Fields to change; omitted fields stay as they are"""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class SubmittedTodayResponse(RecordModel):
    submitted_today: bool


class MetricsResponse(RecordModel):
    record: DailyMetricRecord
    points_awarded: int
    total_points: int


class GameRequest(RecordModel):
    game_type: GameType
    score: int = Field(..., description="Final score")


class PointsResponse(RecordModel):
    points_awarded: int
    total_points: int


class RecommendationsResponse(RecordModel):
    items: List[Recommendation]
    can_generate_today: bool


class SaveRecommendationsResponse(RecordModel):
    points_awarded: int
    total_points: int
    message: str


class HealthCheckResponse(RecordModel):
    """Response for health check endpoint"""
    status: str
    version: str
