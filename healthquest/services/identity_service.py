"""
Identity & Session Manager

Sign-up is two steps: sign_up() creates the credential and returns a
provisional identity, complete_profile() writes the user, health profile
and ledger rows. Sign-in is two factors: sign_in() checks the password and
sends an OTP, verify_otp() checks the code and loads the profile.
"""

import logging
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from healthquest.auth.credentials import CredentialStore
from healthquest.db.gateway import DataGateway
from healthquest.exceptions import (
    AuthError,
    HealthQuestError,
    OtpDeliveryError,
    PersistenceError,
    RecordNotFoundError,
    ValidationError,
)
from healthquest.gamification.points_ledger import PointsLedger
from healthquest.models.session import Session, SessionState
from healthquest.models.user import (
    HealthFields,
    HealthProfile,
    ProfileFields,
    ProvisionalIdentity,
    User,
)
from healthquest.services.otp import OtpService, normalize_email

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8

USERS_COLLECTION = "users"
HEALTH_COLLECTION = "user_health_profiles"


def validate_password(password: str, confirm_password: Optional[str] = None) -> None:
    """Client-side password rules, checked before any backend call"""
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long",
            field="password",
        )
    if confirm_password is not None and confirm_password != password:
        raise ValidationError("Passwords do not match", field="confirmPassword")


def validate_email(email: str) -> str:
    email = normalize_email(email or "")
    local, _, domain = email.partition("@")
    if not local or "." not in domain:
        raise ValidationError("Please enter a valid email address", field="email", value=email)
    return email


def _coerce(model, fields, field_name: str, user_id: Optional[str] = None):
    if isinstance(fields, model):
        return fields
    try:
        return model.model_validate(dict(fields))
    except PydanticValidationError as e:
        error = e.errors()[0]
        location = ".".join(str(part) for part in error["loc"])
        raise ValidationError(
            f"Invalid {field_name}: {location} {error['msg']}",
            field=location or field_name,
            user_id=user_id,
        ) from e


class IdentityService:
    """Sign-up, two-factor sign-in and profile maintenance"""

    def __init__(
        self,
        gateway: DataGateway,
        credentials: CredentialStore,
        otp: OtpService,
        ledger: PointsLedger,
    ):
        self.gateway = gateway
        self.credentials = credentials
        self.otp = otp
        self.ledger = ledger

    # ------------------------------------------------------------------
    # Sign-up
    # ------------------------------------------------------------------

    async def sign_up(
        self,
        email: str,
        password: str,
        confirm_password: Optional[str] = None,
    ) -> ProvisionalIdentity:
        """
        Create a credential. The account is not usable until
        complete_profile() succeeds for the returned identity.

        Raises:
            ValidationError: short password, confirmation mismatch or bad email
            AuthError: the email is already registered
        """
        validate_password(password, confirm_password)
        email = validate_email(email)
        identity = await self.credentials.create(email, password)
        logger.info(f"Signed up {email} as provisional identity {identity.id}")
        return identity

    async def complete_profile(
        self,
        identity: ProvisionalIdentity,
        profile_fields: Union[ProfileFields, Mapping[str, Any]],
        health_fields: Union[HealthFields, Mapping[str, Any]],
    ) -> User:
        """
        Write the users row, the health profile and a zero points ledger,
        in that order, as one transaction.

        The identity must match a credential (same id and email); the
        stored email is always the credential's.

        Raises:
            AuthError: no credential has this id and email
            ValidationError: missing names, invalid health values, or the
                profile was already completed
            PersistenceError: names the failing write; earlier writes are
                rolled back
        """
        credential = await self.credentials.find(identity.id)
        if credential is None or credential["email"] != normalize_email(identity.email):
            raise AuthError(
                f"No sign-up matches identity {identity.id}",
                user_id=identity.id,
                operation="complete_profile",
                user_message="We couldn't find that sign-up. Please sign up again.",
            )
        if await self.gateway.select_one(USERS_COLLECTION, {"id": identity.id}, columns=["id"]) is not None:
            raise ValidationError(
                f"Profile for {identity.id} already exists",
                field="id",
                user_id=identity.id,
                operation="complete_profile",
                user_message="This account is already set up. Please sign in.",
            )

        profile = _coerce(ProfileFields, profile_fields, "profile", identity.id)
        health = _coerce(HealthFields, health_fields, "health profile", identity.id)

        user = User(
            id=identity.id,
            email=credential["email"],
            first_name=profile.first_name,
            last_name=profile.last_name,
            points=0,
        )
        health_profile = HealthProfile(user_id=identity.id, **health.model_dump())
        user_record = {k: v for k, v in user.to_record().items() if k != "points"}

        steps = (
            ("create user", lambda: self.gateway.insert(USERS_COLLECTION, [user_record])),
            ("create health profile", lambda: self.gateway.insert(HEALTH_COLLECTION, [health_profile.to_record()])),
            ("initialize points", lambda: self.ledger.initialize(identity.id)),
        )

        async with self.gateway.transaction():
            for step, write in steps:
                try:
                    await write()
                except PersistenceError as e:
                    raise PersistenceError(
                        f"Profile creation failed at '{step}': {e.message}",
                        collection=e.collection,
                        user_id=identity.id,
                        operation="complete_profile",
                        context={"step": step},
                        cause=e,
                    ) from e

        logger.info(f"Completed profile for user {identity.id}")
        return user

    # ------------------------------------------------------------------
    # Sign-in
    # ------------------------------------------------------------------

    async def sign_in(self, session: Session, email: str, password: str) -> None:
        """
        Check the password and send an OTP; the session moves to PENDING_OTP.

        Raises:
            AuthError: bad credentials, or the OTP could not be sent (the
                backend session is ended and no challenge is kept)
        """
        self.logout(session)
        email = normalize_email(email)
        user_id = await self.credentials.authenticate(email, password)
        token = self.credentials.open_session(user_id)

        try:
            await self.otp.issue_challenge(email)
        except OtpDeliveryError as e:
            self.credentials.end_session(token)
            self.otp.cancel(email)
            raise AuthError(
                f"Could not send OTP to {email}",
                user_id=user_id,
                operation="sign_in",
                cause=e,
                user_message="We couldn't send your verification code. Please try again.",
            ) from e

        session.state = SessionState.PENDING_OTP
        session.email = email
        session.backend_token = token
        logger.info(f"Credentials verified for {email}; awaiting OTP")

    async def verify_otp(self, session: Session, email: str, code: str) -> User:
        """
        Complete sign-in with the emailed code.

        On failure the backend session is ended and the session returns
        to ANONYMOUS; sign-in has to start over.

        Raises:
            AuthError: no pending sign-in for this email, or the code does
                not match
        """
        email = normalize_email(email)
        if session.state != SessionState.PENDING_OTP or session.email != email:
            self._abort(session)
            raise AuthError(
                f"No pending sign-in for {email}",
                operation="verify_otp",
                user_message="Please sign in again.",
            )

        if not self.otp.verify(email, code or ""):
            self._abort(session)
            raise AuthError(f"Invalid OTP for {email}", operation="verify_otp", user_message="Invalid OTP.")

        try:
            user_id = self.credentials.confirm_session(session.backend_token)
            user, health = await self.load_profile(user_id)
        except HealthQuestError:
            self._abort(session)
            raise

        session.state = SessionState.AUTHENTICATED
        session.user = user
        session.health = health
        logger.info(f"User {user_id} signed in")
        return user

    def _abort(self, session: Session) -> None:
        self.credentials.end_session(session.backend_token)
        session.clear()

    async def load_profile(self, user_id: str) -> tuple[User, Optional[HealthProfile]]:
        """
        Read the users row, health profile and points together.

        Raises:
            RecordNotFoundError: the profile was never completed
        """
        async with self.gateway.transaction():
            user_row = await self.gateway.select_one(USERS_COLLECTION, {"id": user_id})
            health_row = await self.gateway.select_one(HEALTH_COLLECTION, {"userId": user_id})
            points = await self.ledger.get_points(user_id)

        if user_row is None:
            raise RecordNotFoundError(
                f"No profile for user {user_id}",
                record_type="Profile",
                record_id=user_id,
                user_id=user_id,
                operation="load_profile",
            )

        user = User.model_validate({**user_row, "points": points})
        health = HealthProfile.model_validate(health_row) if health_row else None
        return user, health

    def logout(self, session: Session) -> None:
        """Drop in-memory profile state; persisted data is untouched"""
        if session.user is not None:
            logger.info(f"User {session.user.id} logged out")
        self.credentials.end_session(session.backend_token)
        session.clear()

    # ------------------------------------------------------------------
    # Profile maintenance
    # ------------------------------------------------------------------

    async def update_details(
        self,
        session: Session,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        email: Optional[str] = None,
        password: Optional[str] = None,
    ) -> User:
        """
        Change names, email and/or password. Omitted values stay as they are.

        Raises:
            ValidationError: empty name, bad email or short password
            AuthError: the new email belongs to another account
        """
        user = session.require_user()

        changes: dict[str, Any] = {}
        for field, value in (("firstName", first_name), ("lastName", last_name)):
            if value is None:
                continue
            if not value.strip():
                raise ValidationError("Name cannot be empty", field=field, user_id=user.id)
            changes[field] = value.strip()

        new_email = validate_email(email) if email is not None else None
        if password is not None:
            validate_password(password)

        async with self.gateway.transaction():
            if new_email is not None and new_email != user.email:
                await self.credentials.change_email(user.id, new_email)
                changes["email"] = new_email
            if password is not None:
                await self.credentials.change_password(user.id, password)
            if changes:
                await self.gateway.update(USERS_COLLECTION, changes, {"id": user.id})

        updated = User.model_validate({**user.to_record(), **changes})
        session.user = updated
        if "email" in changes:
            session.email = changes["email"]
        logger.info(f"Updated details for user {user.id}: {sorted(changes) + (['password'] if password else [])}")
        return updated

    async def update_health_profile(
        self,
        session: Session,
        fields: Union[HealthFields, Mapping[str, Any]],
    ) -> HealthProfile:
        user = session.require_user()
        health = _coerce(HealthFields, fields, "health profile", user.id)
        profile = HealthProfile(user_id=user.id, **health.model_dump())

        await self.gateway.upsert(HEALTH_COLLECTION, [profile.to_record()], on_conflict=("userId",))
        session.health = profile
        logger.info(f"Updated health profile for user {user.id}")
        return profile
