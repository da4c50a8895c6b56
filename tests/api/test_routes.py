"""Tests for the HTTP API (in-process, in-memory backend)"""
import pytest
from fastapi.testclient import TestClient

from healthquest.api.middleware import limiter
from healthquest.api.server import create_api_application
from healthquest.services.container import reset_container

OTP_CODE = "654321"  # issued by the otp_webhook fixture
PASSWORD = "correct-horse"


@pytest.fixture
def client(container):
    """TestClient running the app lifespan against the test container"""
    limiter.reset()
    app = create_api_application(container)
    with TestClient(app) as test_client:
        yield test_client
    reset_container()


def register(client, email="ada@example.com"):
    response = client.post("/api/v1/auth/signup", json={
        "email": email,
        "password": PASSWORD,
        "confirmPassword": PASSWORD,
    })
    assert response.status_code == 201
    identity = response.json()

    response = client.post("/api/v1/auth/profile", json={
        "id": identity["id"],
        "email": identity["email"],
        "profile": {"firstName": "Ada", "lastName": "Lovelace"},
        "health": {"age": 36, "fitnessLevel": "Active"},
    })
    assert response.status_code == 201
    return identity


def sign_in(client, email="ada@example.com"):
    response = client.post("/api/v1/auth/signin", json={"email": email, "password": PASSWORD})
    assert response.status_code == 200
    assert response.json()["state"] == "pending_otp"
    return {"Authorization": f"Bearer {response.json()['sessionToken']}"}


@pytest.fixture
def auth_headers(client):
    """Headers for a registered user who passed the OTP step"""
    register(client)
    headers = sign_in(client)
    response = client.post("/api/v1/auth/verify", json={"email": "ada@example.com", "code": OTP_CODE}, headers=headers)
    assert response.status_code == 200
    return headers


# ============================================================================
# Health & Auth
# ============================================================================

def test_health_check(client):
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_signup_rejects_short_password(client):
    response = client.post("/api/v1/auth/signup", json={"email": "ada@example.com", "password": "short"})

    assert response.status_code == 422
    assert response.json()["error"] == "ValidationError"
    assert "8 characters" in response.json()["user_message"]


def test_signup_duplicate_email(client):
    register(client)
    response = client.post("/api/v1/auth/signup", json={"email": "ada@example.com", "password": PASSWORD})
    assert response.status_code == 401


def test_sign_in_flow_loads_profile(client, auth_headers):
    response = client.get("/api/v1/me", headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["user"]["firstName"] == "Ada"
    assert body["user"]["points"] == 0
    assert body["health"]["age"] == 36


def test_wrong_otp_ends_session(client):
    register(client)
    headers = sign_in(client)

    response = client.post("/api/v1/auth/verify", json={"email": "ada@example.com", "code": "000000"}, headers=headers)
    assert response.status_code == 401
    assert response.json()["user_message"] == "Invalid OTP."

    assert client.get("/api/v1/me", headers=headers).status_code == 401
    response = client.post("/api/v1/auth/verify", json={"email": "ada@example.com", "code": OTP_CODE}, headers=headers)
    assert response.status_code == 401


def test_pending_session_cannot_use_protected_routes(client):
    register(client)
    headers = sign_in(client)
    assert client.get("/api/v1/me", headers=headers).status_code == 401


def test_missing_token(client):
    assert client.get("/api/v1/me").status_code == 401


def test_bad_password(client):
    register(client)
    response = client.post("/api/v1/auth/signin", json={"email": "ada@example.com", "password": "wrong-password"})
    assert response.status_code == 401


def test_logout(client, auth_headers):
    response = client.post("/api/v1/auth/logout", headers=auth_headers)
    assert response.status_code == 204
    assert client.get("/api/v1/me", headers=auth_headers).status_code == 401


# ============================================================================
# Profile
# ============================================================================

def test_update_details(client, auth_headers):
    response = client.patch("/api/v1/me", json={"firstName": "Augusta"}, headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["user"]["firstName"] == "Augusta"
    assert response.json()["user"]["lastName"] == "Lovelace"


def test_update_health(client, auth_headers):
    response = client.put("/api/v1/me/health", json={"age": 37, "allergies": "Peanuts"}, headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["health"]["allergies"] == "Peanuts"


# ============================================================================
# Metrics & Games
# ============================================================================

def test_metrics_once_per_day(client, auth_headers):
    assert client.get("/api/v1/metrics/today", headers=auth_headers).json()["submittedToday"] is False

    response = client.post("/api/v1/metrics", json={"heartRate": "72", "steps": ""}, headers=auth_headers)
    assert response.status_code == 201
    body = response.json()
    assert body["record"]["heartRate"] == 72
    assert "steps" not in body["record"] or body["record"]["steps"] is None
    assert body["pointsAwarded"] == 25
    assert body["totalPoints"] == 25

    assert client.get("/api/v1/metrics/today", headers=auth_headers).json()["submittedToday"] is True

    response = client.post("/api/v1/metrics", json={"heartRate": "80"}, headers=auth_headers)
    assert response.status_code == 422
    assert response.json()["user_message"] == "Thanks for submitting today! Come back tomorrow."
    assert client.get("/api/v1/me", headers=auth_headers).json()["user"]["points"] == 25


def test_game_awards_ten(client, auth_headers):
    response = client.post("/api/v1/games", json={"gameType": "Memory", "score": 12}, headers=auth_headers)

    assert response.status_code == 201
    assert response.json() == {"pointsAwarded": 10, "totalPoints": 10}


# ============================================================================
# Recommendations
# ============================================================================

def test_generate_toggle_save(client, auth_headers):
    response = client.post("/api/v1/recommendations/generate", headers=auth_headers)
    assert response.status_code == 201
    body = response.json()
    assert len(body["items"]) == 3
    assert body["canGenerateToday"] is False

    hard = next(item for item in body["items"] if item["difficulty"] == "Hard")
    response = client.post(f"/api/v1/recommendations/{hard['id']}/toggle", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["isCompleted"] is True

    response = client.post("/api/v1/recommendations/save", headers=auth_headers)
    assert response.status_code == 200
    assert response.json() == {
        "pointsAwarded": 8,
        "totalPoints": 8,
        "message": "Changes saved! You've earned 8 points!",
    }

    items = client.get("/api/v1/recommendations", headers=auth_headers).json()["items"]
    assert [item["isCompleted"] for item in items if item["id"] == hard["id"]] == [True]


def test_generate_twice_same_day(client, auth_headers, goal_webhook):
    assert client.post("/api/v1/recommendations/generate", headers=auth_headers).status_code == 201

    response = client.post("/api/v1/recommendations/generate", headers=auth_headers)

    assert response.status_code == 502
    assert response.json()["user_message"] == "You can only generate new goals once per day."
    assert len(goal_webhook.calls) == 1


def test_toggle_unknown_recommendation(client, auth_headers):
    response = client.post("/api/v1/recommendations/999/toggle", headers=auth_headers)
    assert response.status_code == 422


def test_two_sessions_completing_same_goal_pay_once(client, auth_headers):
    client.post("/api/v1/recommendations/generate", headers=auth_headers)
    other = sign_in(client)
    response = client.post("/api/v1/auth/verify", json={"email": "ada@example.com", "code": OTP_CODE}, headers=other)
    assert response.status_code == 200

    items = client.get("/api/v1/recommendations", headers=other).json()["items"]
    hard = next(item for item in items if item["difficulty"] == "Hard")
    for headers in (auth_headers, other):
        client.post(f"/api/v1/recommendations/{hard['id']}/toggle", headers=headers)

    first = client.post("/api/v1/recommendations/save", headers=auth_headers).json()
    second = client.post("/api/v1/recommendations/save", headers=other).json()

    assert first["pointsAwarded"] == 8
    assert second["pointsAwarded"] == 0
    assert second["totalPoints"] == 8


# ============================================================================
# Sign-up ownership
# ============================================================================

def test_profile_for_unknown_identity_rejected(client):
    response = client.post("/api/v1/auth/profile", json={
        "id": "never-signed-up",
        "email": "ghost@example.com",
        "profile": {"firstName": "Ghost", "lastName": "User"},
    })
    assert response.status_code == 401


def test_profile_with_mismatched_email_rejected(client):
    response = client.post("/api/v1/auth/signup", json={"email": "real@example.com", "password": PASSWORD})
    identity = response.json()

    response = client.post("/api/v1/auth/profile", json={
        "id": identity["id"],
        "email": "someone-else@example.com",
        "profile": {"firstName": "Eve", "lastName": "X"},
    })
    assert response.status_code == 401


def test_profile_completed_twice_rejected(client):
    identity = register(client)
    response = client.post("/api/v1/auth/profile", json={
        "id": identity["id"],
        "email": identity["email"],
        "profile": {"firstName": "Eve", "lastName": "X"},
    })
    assert response.status_code == 422
