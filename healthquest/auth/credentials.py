"""Email/password credentials and backend sessions"""
import asyncio
import logging
import secrets
from datetime import datetime
from typing import Callable, Optional
from uuid import uuid4

import bcrypt

from healthquest.config import OTP_TTL_SECONDS, SESSION_IDLE_SECONDS, SESSION_MAX_ENTRIES, SESSION_TTL_SECONDS
from healthquest.db.gateway import DataGateway
from healthquest.exceptions import AuthError
from healthquest.models.user import ProvisionalIdentity
from healthquest.services.otp import normalize_email
from healthquest.utils.datetime_helpers import now_utc
from healthquest.utils.expiring_map import ExpiringMap

logger = logging.getLogger(__name__)

CREDENTIALS_COLLECTION = "auth_credentials"


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        logger.error("Stored password hash is malformed")
        return False


class CredentialStore:
    """
    Credential records in the `auth_credentials` collection, plus the
    backend sessions opened against them.

    A backend session is opened by a successful password check and only
    becomes usable once confirm_session() is called after the second
    factor. Sessions live in process memory: an unconfirmed session
    expires after pending_ttl (the OTP lifetime), a confirmed one after
    session_ttl or idle_timeout, and the oldest are evicted past
    max_sessions.
    """

    def __init__(
        self,
        gateway: DataGateway,
        clock: Callable[[], datetime] = now_utc,
        pending_ttl: int = OTP_TTL_SECONDS,
        session_ttl: int = SESSION_TTL_SECONDS,
        idle_timeout: int = SESSION_IDLE_SECONDS,
        max_sessions: int = SESSION_MAX_ENTRIES,
    ):
        self.gateway = gateway
        self.pending_ttl = pending_ttl
        self._sessions: ExpiringMap[dict] = ExpiringMap(
            ttl=session_ttl,
            idle_timeout=idle_timeout,
            max_entries=max_sessions,
            clock=clock,
            name="backend sessions",
        )

    async def _find_by_email(self, email: str) -> Optional[dict]:
        return await self.gateway.select_one(CREDENTIALS_COLLECTION, {"email": normalize_email(email)})

    async def create(self, email: str, password: str) -> ProvisionalIdentity:
        """
        Raises:
            AuthError: the email already has a credential
        """
        email = normalize_email(email)
        if await self._find_by_email(email) is not None:
            raise AuthError(
                f"Credential already exists for {email}",
                operation="sign_up",
                user_message="An account with this email already exists.",
            )

        password_hash = await asyncio.to_thread(hash_password, password)
        user_id = str(uuid4())
        await self.gateway.insert(
            CREDENTIALS_COLLECTION,
            [{"id": user_id, "email": email, "passwordHash": password_hash}],
        )
        logger.info(f"Created credential {user_id} for {email}")
        return ProvisionalIdentity(id=user_id, email=email)

    async def find(self, user_id: str) -> Optional[dict]:
        """Credential row for a user id (without the password hash), or None"""
        return await self.gateway.select_one(CREDENTIALS_COLLECTION, {"id": user_id}, columns=["id", "email"])

    async def authenticate(self, email: str, password: str) -> str:
        """
        Returns:
            The user id

        Raises:
            AuthError: unknown email or wrong password (indistinguishable)
        """
        row = await self._find_by_email(email)
        if row is None or not await asyncio.to_thread(verify_password, password, row["passwordHash"]):
            raise AuthError(
                f"Invalid credentials for {normalize_email(email)}",
                operation="sign_in",
                user_message="Invalid email or password.",
            )
        return row["id"]

    # ------------------------------------------------------------------
    # Backend sessions
    # ------------------------------------------------------------------

    def open_session(self, user_id: str) -> str:
        token = secrets.token_urlsafe(32)
        self._sessions.put(token, {"user_id": user_id, "confirmed": False}, ttl=self.pending_ttl)
        return token

    def confirm_session(self, token: Optional[str]) -> str:
        """Mark a session usable and start its full lifetime; returns its user id"""
        entry = self._sessions.get(token) if token else None
        if entry is None:
            raise AuthError("Unknown or expired backend session", operation="confirm_session")
        entry["confirmed"] = True
        self._sessions.renew(token)
        return entry["user_id"]

    def end_session(self, token: Optional[str]) -> None:
        if token:
            self._sessions.pop(token)

    def session_user(self, token: Optional[str]) -> Optional[str]:
        """User id of a live confirmed session, else None"""
        entry = self._sessions.get(token) if token else None
        if entry is None or not entry["confirmed"]:
            return None
        return entry["user_id"]

    # ------------------------------------------------------------------
    # Account changes
    # ------------------------------------------------------------------

    async def change_password(self, user_id: str, new_password: str) -> None:
        password_hash = await asyncio.to_thread(hash_password, new_password)
        await self.gateway.update(CREDENTIALS_COLLECTION, {"passwordHash": password_hash}, {"id": user_id})
        logger.info(f"Changed password for user {user_id}")

    async def change_email(self, user_id: str, new_email: str) -> str:
        new_email = normalize_email(new_email)
        existing = await self._find_by_email(new_email)
        if existing is not None and existing["id"] != user_id:
            raise AuthError(
                f"Email {new_email} is already registered",
                user_id=user_id,
                operation="change_email",
                user_message="An account with this email already exists.",
            )
        await self.gateway.update(CREDENTIALS_COLLECTION, {"email": new_email}, {"id": user_id})
        logger.info(f"Changed email for user {user_id}")
        return new_email
