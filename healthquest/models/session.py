"""Per-user session state"""
from enum import Enum
from typing import Optional
from pydantic import BaseModel

from healthquest.exceptions import AuthError
from healthquest.models.recommendation import WorkingSet
from healthquest.models.user import User, HealthProfile


class SessionState(str, Enum):
    ANONYMOUS = "anonymous"
    PENDING_OTP = "pending_otp"  # credentials verified, second factor outstanding
    AUTHENTICATED = "authenticated"


class Session(BaseModel):
    """
    In-memory session for one user.

    Transitions: ANONYMOUS -> PENDING_OTP -> AUTHENTICATED. AUTHENTICATED is
    left only through logout (or a failed verification, which falls back
    to ANONYMOUS). Points on `user` are only ever replaced with a value the
    ledger has already persisted.
    """
    state: SessionState = SessionState.ANONYMOUS
    email: Optional[str] = None
    backend_token: Optional[str] = None
    user: Optional[User] = None
    health: Optional[HealthProfile] = None
    metrics_submitted_today: bool = False
    working_set: Optional[WorkingSet] = None

    @property
    def is_authenticated(self) -> bool:
        return self.state == SessionState.AUTHENTICATED and self.user is not None

    def require_user(self) -> User:
        """Return the authenticated user or raise AuthError"""
        if not self.is_authenticated:
            raise AuthError("Session is not authenticated", operation="require_user")
        return self.user

    def clear(self) -> None:
        """Discard in-memory profile state and return to ANONYMOUS"""
        self.state = SessionState.ANONYMOUS
        self.email = None
        self.backend_token = None
        self.user = None
        self.health = None
        self.metrics_submitted_today = False
        self.working_set = None
