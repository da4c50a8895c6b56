"""API routes for healthquest"""
import logging
from typing import Any, Dict, Optional
from fastapi import APIRouter, Body, Depends, Request, Security, status
from fastapi.security import HTTPAuthorizationCredentials

from healthquest import __version__
from healthquest.api.auth import (
    authenticated_session,
    bearer_token,
    current_session,
    get_registry,
    security,
)
from healthquest.api.middleware import limiter
from healthquest.api.models import (
    CompleteProfileRequest,
    GameRequest,
    HealthCheckResponse,
    MetricsResponse,
    PointsResponse,
    ProfileResponse,
    ProvisionalIdentityResponse,
    RecommendationsResponse,
    SaveRecommendationsResponse,
    SignInRequest,
    SignInResponse,
    SignUpRequest,
    SubmittedTodayResponse,
    UpdateDetailsRequest,
    VerifyOtpRequest,
)
from healthquest.gamification.points_ledger import METRICS_SUBMISSION_POINTS
from healthquest.models.recommendation import Recommendation
from healthquest.models.session import Session
from healthquest.models.user import HealthFields, ProvisionalIdentity
from healthquest.services.container import ServiceContainer, get_container

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1")


def _profile(session: Session) -> ProfileResponse:
    return ProfileResponse(user=session.user, health=session.health)


async def _recommendations(container: ServiceContainer, session: Session) -> RecommendationsResponse:
    return RecommendationsResponse(
        items=session.working_set.items if session.working_set else [],
        can_generate_today=await container.recommendation_service.can_generate_today(session.user.id),
    )


# ------------------------------------------------------------------
# Health
# ------------------------------------------------------------------

@router.get("/health", response_model=HealthCheckResponse)
async def health_check():
    """Liveness check"""
    return HealthCheckResponse(status="ok", version=__version__)


# ------------------------------------------------------------------
# Authentication
# ------------------------------------------------------------------

@router.post("/auth/signup", response_model=ProvisionalIdentityResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
async def sign_up(
    request: Request,
    body: SignUpRequest,
    container: ServiceContainer = Depends(get_container)
):
    """Create a credential; the account needs /auth/profile before it can sign in"""
    identity = await container.identity_service.sign_up(body.email, body.password, body.confirm_password)
    return ProvisionalIdentityResponse(id=identity.id, email=identity.email)


@router.post("/auth/profile", response_model=ProfileResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
async def complete_profile(
    request: Request,
    body: CompleteProfileRequest,
    container: ServiceContainer = Depends(get_container)
):
    identity = ProvisionalIdentity(id=body.id, email=body.email)
    user = await container.identity_service.complete_profile(identity, body.profile, body.health)
    _, health = await container.identity_service.load_profile(user.id)
    return ProfileResponse(user=user, health=health)


@router.post("/auth/signin", response_model=SignInResponse)
@limiter.limit("10/minute")
async def sign_in(
    request: Request,
    body: SignInRequest,
    container: ServiceContainer = Depends(get_container)
):
    """
    Check credentials and send the OTP email.

    Returns a session token; pass it as a bearer token to /auth/verify
    and every later call.
    """
    registry = get_registry(request)
    token, session = registry.create()
    try:
        await container.identity_service.sign_in(session, body.email, body.password)
    except Exception:
        registry.drop(token)
        raise
    return SignInResponse(session_token=token, state=session.state.value)


@router.post("/auth/verify", response_model=ProfileResponse)
@limiter.limit("10/minute")
async def verify_otp(
    request: Request,
    body: VerifyOtpRequest,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
    container: ServiceContainer = Depends(get_container)
):
    """Complete sign-in; a wrong code ends the session"""
    session = await current_session(request, credentials)
    try:
        await container.identity_service.verify_otp(session, body.email, body.code)
    except Exception:
        get_registry(request).drop(bearer_token(credentials))
        raise
    get_registry(request).renew(bearer_token(credentials))
    return _profile(session)


@router.post("/auth/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
    container: ServiceContainer = Depends(get_container)
):
    session = await current_session(request, credentials)
    container.identity_service.logout(session)
    get_registry(request).drop(bearer_token(credentials))


# ------------------------------------------------------------------
# Profile
# ------------------------------------------------------------------

@router.get("/me", response_model=ProfileResponse)
async def get_me(session: Session = Depends(authenticated_session)):
    return _profile(session)


@router.patch("/me", response_model=ProfileResponse)
@limiter.limit("10/minute")
async def update_me(
    request: Request,
    body: UpdateDetailsRequest,
    session: Session = Depends(authenticated_session),
    container: ServiceContainer = Depends(get_container)
):
    await container.identity_service.update_details(
        session,
        first_name=body.first_name,
        last_name=body.last_name,
        email=body.email,
        password=body.password,
    )
    return _profile(session)


@router.put("/me/health", response_model=ProfileResponse)
async def update_health(
    body: HealthFields,
    session: Session = Depends(authenticated_session),
    container: ServiceContainer = Depends(get_container)
):
    await container.identity_service.update_health_profile(session, body)
    return _profile(session)


# ------------------------------------------------------------------
# Daily metrics and games
# ------------------------------------------------------------------

@router.get("/metrics/today", response_model=SubmittedTodayResponse)
async def metrics_today(
    session: Session = Depends(authenticated_session),
    container: ServiceContainer = Depends(get_container)
):
    submitted = await container.metrics_gate.has_submitted_today(session.user.id)
    session.metrics_submitted_today = submitted
    return SubmittedTodayResponse(submitted_today=submitted)


@router.post("/metrics", response_model=MetricsResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def submit_metrics(
    request: Request,
    body: Dict[str, Any] = Body(..., examples=[{"heartRate": "72", "steps": "8000"}]),
    session: Session = Depends(authenticated_session),
    container: ServiceContainer = Depends(get_container)
):
    """
    Submit today's biometrics (once per UTC day, 25 points).
    Empty or non-numeric values are dropped.
    """
    record = await container.metrics_gate.submit_for_session(session, body)
    return MetricsResponse(
        record=record,
        points_awarded=METRICS_SUBMISSION_POINTS,
        total_points=session.user.points,
    )


@router.post("/games", response_model=PointsResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def record_game(
    request: Request,
    body: GameRequest,
    session: Session = Depends(authenticated_session),
    container: ServiceContainer = Depends(get_container)
):
    awarded = await container.game_service.record_game(session, body.game_type, body.score)
    return PointsResponse(points_awarded=awarded, total_points=session.user.points)


# ------------------------------------------------------------------
# Recommendations
# ------------------------------------------------------------------

@router.get("/recommendations", response_model=RecommendationsResponse)
async def get_recommendations(
    session: Session = Depends(authenticated_session),
    container: ServiceContainer = Depends(get_container)
):
    """Reload goals from storage; unsaved toggles are discarded"""
    await container.recommendation_service.load_for_session(session)
    return await _recommendations(container, session)


@router.post("/recommendations/generate", response_model=RecommendationsResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
async def generate_recommendations(
    request: Request,
    session: Session = Depends(authenticated_session),
    container: ServiceContainer = Depends(get_container)
):
    """Replace the goals with a new batch (once per local day)"""
    await container.recommendation_service.generate_for_session(session)
    return await _recommendations(container, session)


@router.post("/recommendations/{recommendation_id}/toggle", response_model=Recommendation)
async def toggle_recommendation(
    recommendation_id: int,
    session: Session = Depends(authenticated_session),
    container: ServiceContainer = Depends(get_container)
):
    """Flip a goal's completion in the session's working set (not saved)"""
    service = container.recommendation_service
    if session.working_set is None:
        await service.load_for_session(session)
    return service.toggle_local(session.working_set, recommendation_id)


@router.post("/recommendations/save", response_model=SaveRecommendationsResponse)
@limiter.limit("20/minute")
async def save_recommendations(
    request: Request,
    session: Session = Depends(authenticated_session),
    container: ServiceContainer = Depends(get_container)
):
    outcome = await container.recommendation_service.save_for_session(session)
    return SaveRecommendationsResponse(
        points_awarded=outcome.points_awarded,
        total_points=session.user.points,
        message=outcome.message,
    )
