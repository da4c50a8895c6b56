"""Global test fixtures and utilities for healthquest tests"""
import pytest
import httpx
from datetime import datetime, timedelta, timezone

from healthquest.auth.credentials import CredentialStore
from healthquest.db.memory_gateway import InMemoryGateway
from healthquest.gamification.points_ledger import PointsLedger
from healthquest.models.session import Session, SessionState
from healthquest.models.user import HealthProfile, User
from healthquest.services.container import ServiceContainer
from healthquest.services.generation_log import GenerationLog
from healthquest.services.goal_source import GoalSourceClient
from healthquest.services.otp import OtpChallengeStore, OtpSender, OtpService


FIXED_NOW = datetime(2024, 6, 15, 12, 0, 0, tzinfo=timezone.utc)

GOAL_WEBHOOK = "http://goals.test/webhook"
OTP_WEBHOOK = "http://otp.test/webhook"
OTP_CODE = "654321"


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class WebhookStub:
    """
    Plaintext webhook backed by httpx.MockTransport.

    Set `body`/`status_code` to change the response, or `error` to make
    the request fail at the transport level.
    """

    def __init__(self, body: str = "", status_code: int = 200):
        self.body = body
        self.status_code = status_code
        self.error = None
        self.calls: list[httpx.Request] = []
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, text=self.body)


# ============================================================================
# Time Fixtures
# ============================================================================

@pytest.fixture
def clock():
    """Clock frozen at 2024-06-15 12:00 UTC"""
    return FakeClock()


# ============================================================================
# Storage Fixtures
# ============================================================================

@pytest.fixture
def gateway(clock):
    """Empty in-memory data gateway"""
    return InMemoryGateway(clock=clock)


@pytest.fixture
def ledger(gateway):
    return PointsLedger(gateway)


@pytest.fixture
def generation_log(tmp_path):
    return GenerationLog(tmp_path / "goal_generation.json")


# ============================================================================
# Webhook Fixtures
# ============================================================================

@pytest.fixture
def goal_webhook():
    """Goal webhook returning one goal per difficulty"""
    return WebhookStub(
        "Drink 2 litres of water;Diet;Easy\n"
        "Meditate for 10 minutes;Mental Health;Medium\n"
        "Run 5km;Exercise;Hard\n"
    )


@pytest.fixture
def goal_source(goal_webhook):
    return GoalSourceClient(GOAL_WEBHOOK, transport=goal_webhook.transport)


@pytest.fixture
def otp_webhook():
    """OTP webhook that always issues OTP_CODE"""
    return WebhookStub(f"{OTP_CODE}\n")


@pytest.fixture
def otp_sender(otp_webhook):
    return OtpSender(OTP_WEBHOOK, transport=otp_webhook.transport, dev_fallback=False)


@pytest.fixture
def otp_service(otp_sender, clock):
    return OtpService(otp_sender, OtpChallengeStore(clock=clock), test_mode=False)


@pytest.fixture
def credentials(gateway, clock):
    return CredentialStore(gateway, clock=clock)


# ============================================================================
# Service Container
# ============================================================================

@pytest.fixture
def container(gateway, goal_source, otp_sender, generation_log, clock):
    """Container wired to the in-memory gateway and stub webhooks"""
    return ServiceContainer(
        gateway=gateway,
        goal_source=goal_source,
        otp_sender=otp_sender,
        generation_log=generation_log,
        clock=clock,
    )


# ============================================================================
# User & Session Fixtures
# ============================================================================

@pytest.fixture
def test_user_id():
    """Standard test user ID"""
    return "0b6c5a1e-5d0c-4f43-9a53-2f1c5d0e7a11"


@pytest.fixture
async def authenticated_session(gateway, test_user_id):
    """
    Session for a user whose profile rows already exist, with 0 points.
    Skips the credential and OTP steps.
    """
    await gateway.insert("users", [{
        "id": test_user_id,
        "email": "test@example.com",
        "firstName": "Test",
        "lastName": "User",
    }])
    await gateway.insert("user_health_profiles", [{"userId": test_user_id, "age": 30}])
    await gateway.upsert("user_points", [{"userId": test_user_id, "points": 0}], on_conflict=["userId"])

    return Session(
        state=SessionState.AUTHENTICATED,
        email="test@example.com",
        user=User(id=test_user_id, email="test@example.com", first_name="Test", last_name="User", points=0),
        health=HealthProfile(user_id=test_user_id, age=30),
    )
