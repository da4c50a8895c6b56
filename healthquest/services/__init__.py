"""
Service Layer Package

Business logic between the HTTP API and the data gateway.

Core Services:
- IdentityService: sign-up, two-factor sign-in, profile maintenance
- DailyMetricsGate: once-per-day biometric submissions
- GameService: mini-game results
- RecommendationService: daily goals and completion scoring

External Integration:
- GoalSourceClient: goal generation webhook
- OtpSender / OtpService: one-time passcode webhook and challenges
"""

from healthquest.services.container import (
    ServiceContainer,
    get_container,
    init_container,
    install_container,
    reset_container,
)

__all__ = [
    "ServiceContainer",
    "get_container",
    "init_container",
    "install_container",
    "reset_container",
]
