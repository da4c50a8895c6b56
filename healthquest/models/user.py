"""User-related Pydantic models"""
from typing import Optional
from pydantic import Field

from healthquest.models.base import RecordModel


class ProvisionalIdentity(RecordModel):
    """Credential created by sign-up; not usable until the profile is completed"""
    id: str
    email: str


class User(RecordModel):
    """Identity plus cumulative points"""
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    points: int = Field(default=0, ge=0)


class ProfileFields(RecordModel):
    """Editable identity fields collected at sign-up"""
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)


class HealthProfile(RecordModel):
    """One-to-one with User; created at sign-up completion"""
    user_id: str
    age: Optional[int] = Field(default=None, ge=0)
    height: Optional[float] = Field(default=None, ge=0)  # cm
    weight: Optional[float] = Field(default=None, ge=0)  # kg
    gender: Optional[str] = None  # Male, Female, Other
    fitness_level: Optional[str] = None  # Sedentary, Active, Very Active
    existing_conditions: str = ""
    allergies: str = ""
    medications: str = ""
    preferred_language: str = "English"


class HealthFields(RecordModel):
    """HealthProfile without its key, as submitted by the user"""
    age: Optional[int] = Field(default=None, ge=0)
    height: Optional[float] = Field(default=None, ge=0)
    weight: Optional[float] = Field(default=None, ge=0)
    gender: Optional[str] = None
    fitness_level: Optional[str] = None
    existing_conditions: str = ""
    allergies: str = ""
    medications: str = ""
    preferred_language: str = "English"
