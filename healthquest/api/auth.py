"""API authentication using bearer session tokens"""
import logging
import secrets
from datetime import datetime
from typing import Callable, Optional
from fastapi import Request, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from healthquest.config import OTP_TTL_SECONDS, SESSION_IDLE_SECONDS, SESSION_MAX_ENTRIES, SESSION_TTL_SECONDS
from healthquest.exceptions import AuthError
from healthquest.models.session import Session
from healthquest.utils.datetime_helpers import now_utc
from healthquest.utils.expiring_map import ExpiringMap

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


class SessionRegistry:
    """
    Client sessions keyed by the bearer token handed out at sign-in.

    A new session lives for pending_ttl (long enough to enter the OTP);
    renew() after verification gives it the full session_ttl. Sessions
    also end after idle_timeout without a request, and the least recently
    used are evicted past max_sessions.
    """

    def __init__(
        self,
        pending_ttl: int = OTP_TTL_SECONDS,
        session_ttl: int = SESSION_TTL_SECONDS,
        idle_timeout: int = SESSION_IDLE_SECONDS,
        max_sessions: int = SESSION_MAX_ENTRIES,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.pending_ttl = pending_ttl
        self._sessions: ExpiringMap[Session] = ExpiringMap(
            ttl=session_ttl,
            idle_timeout=idle_timeout,
            max_entries=max_sessions,
            clock=clock,
            name="API sessions",
        )

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self) -> tuple[str, Session]:
        token = secrets.token_urlsafe(32)
        session = Session()
        self._sessions.put(token, session, ttl=self.pending_ttl)
        return token, session

    def get(self, token: Optional[str]) -> Optional[Session]:
        return self._sessions.get(token) if token else None

    def renew(self, token: Optional[str]) -> bool:
        return bool(token) and self._sessions.renew(token)

    def drop(self, token: Optional[str]) -> None:
        if token:
            self._sessions.pop(token)


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


async def current_session(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security)
) -> Session:
    """
    Resolve the bearer token to its session (any state)

    Raises:
        AuthError: missing or unknown token
    """
    token = credentials.credentials if credentials else None
    session = get_registry(request).get(token)
    if session is None:
        if token:
            logger.warning(f"Unknown session token: {token[:6]}...")
        raise AuthError("Missing or unknown session token", operation="resolve_session")
    return session


async def authenticated_session(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security)
) -> Session:
    """Like current_session, but the session must have passed the OTP step"""
    session = await current_session(request, credentials)
    session.require_user()
    return session


def bearer_token(credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    return credentials.credentials if credentials else None
