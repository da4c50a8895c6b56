"""
One-time passcode challenges

The OTP webhook generates and emails a code and returns it in plaintext;
we keep one live challenge per email until it is verified, replaced or
expires.
"""

import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Callable, Optional
from urllib.parse import quote

import httpx
from pydantic import BaseModel

from healthquest.config import (
    OTP_DEV_CODE,
    OTP_DEV_FALLBACK_ENABLED,
    OTP_MAX_CHALLENGES,
    OTP_TEST_MODE,
    OTP_TTL_SECONDS,
    OTP_WEBHOOK_URL,
    WEBHOOK_TIMEOUT_SECONDS,
)
from healthquest.exceptions import OtpDeliveryError
from healthquest.utils.datetime_helpers import now_utc

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class OtpChallenge(BaseModel):
    email: str
    code: str
    issued_at: datetime
    ttl: int = OTP_TTL_SECONDS

    def is_expired(self, now: datetime) -> bool:
        return now >= self.issued_at + timedelta(seconds=self.ttl)


class OtpChallengeStore:
    """
    Live challenges keyed by normalized email.

    Issuing for an email replaces its previous challenge. Verification
    consumes the challenge on success. Expired challenges are purged on
    every access, and the oldest are evicted past max_challenges.
    """

    def __init__(
        self,
        ttl: int = OTP_TTL_SECONDS,
        max_challenges: int = OTP_MAX_CHALLENGES,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.ttl = ttl
        self.max_challenges = max_challenges
        self.clock = clock
        self._challenges: "OrderedDict[str, OtpChallenge]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._challenges)

    def purge_expired(self) -> int:
        now = self.clock()
        expired = [email for email, c in self._challenges.items() if c.is_expired(now)]
        for email in expired:
            del self._challenges[email]
        return len(expired)

    def issue(self, email: str, code: str) -> OtpChallenge:
        self.purge_expired()
        key = normalize_email(email)
        self._challenges.pop(key, None)
        challenge = OtpChallenge(email=key, code=code, issued_at=self.clock(), ttl=self.ttl)
        self._challenges[key] = challenge

        while len(self._challenges) > self.max_challenges:
            evicted, _ = self._challenges.popitem(last=False)
            logger.warning(f"OTP store full, evicted challenge for {evicted}")
        return challenge

    def get(self, email: str) -> Optional[OtpChallenge]:
        self.purge_expired()
        return self._challenges.get(normalize_email(email))

    def discard(self, email: str) -> None:
        self._challenges.pop(normalize_email(email), None)

    def verify(self, email: str, code: str) -> bool:
        """True iff `code` matches the live challenge; a match consumes it"""
        challenge = self.get(email)
        if challenge is None or challenge.code != code.strip():
            return False
        self.discard(email)
        return True


class OtpSender:
    """Requests a code from the OTP webhook (which also emails it)"""

    def __init__(
        self,
        base_url: str = OTP_WEBHOOK_URL,
        timeout: float = WEBHOOK_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        dev_fallback: bool = OTP_DEV_FALLBACK_ENABLED,
        dev_code: str = OTP_DEV_CODE,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.dev_fallback = dev_fallback
        self.dev_code = dev_code

    async def send(self, email: str) -> str:
        """
        Returns:
            The code the webhook issued (or the development code when the
            webhook failed and the fallback is enabled)

        Raises:
            OtpDeliveryError: the webhook failed and the fallback is disabled
        """
        url = f"{self.base_url}/{quote(email, safe='@')}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(url)
                response.raise_for_status()
            code = response.text.strip()
            if not code:
                raise ValueError("empty response body")
            return code
        except (httpx.HTTPError, ValueError) as e:
            if self.dev_fallback:
                logger.warning(f"OTP webhook failed for {email} ({e}); issuing development code")
                return self.dev_code
            raise OtpDeliveryError(
                f"OTP webhook failed: {e}",
                status_code=e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None,
                operation="send_otp",
                cause=e,
            ) from e


class OtpService:
    """Issues and checks second-factor challenges"""

    def __init__(
        self,
        sender: OtpSender,
        store: Optional[OtpChallengeStore] = None,
        test_mode: bool = OTP_TEST_MODE,
        bypass_code: str = OTP_DEV_CODE,
    ):
        self.sender = sender
        self.store = store or OtpChallengeStore()
        self.test_mode = test_mode
        self.bypass_code = bypass_code
        if test_mode:
            logger.warning("OTP test mode is enabled; the bypass code is accepted for every account")

    async def issue_challenge(self, email: str) -> OtpChallenge:
        code = await self.sender.send(email)
        challenge = self.store.issue(email, code)
        logger.info(f"Issued OTP challenge for {challenge.email}")
        return challenge

    def cancel(self, email: str) -> None:
        self.store.discard(email)

    def verify(self, email: str, code: str) -> bool:
        if self.store.verify(email, code):
            return True
        if self.test_mode and code.strip() == self.bypass_code:
            logger.warning(f"Accepted OTP bypass code for {normalize_email(email)}")
            self.store.discard(email)
            return True
        return False
