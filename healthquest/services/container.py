"""
Service Container - Dependency Injection Container

Holds the shared gateway and webhook clients and lazily builds the
services on top of them, so every service in a process shares one ledger,
one credential store and one OTP challenge store.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional
import logging

from healthquest.config import DATA_BACKEND
from healthquest.db.gateway import DataGateway
from healthquest.utils.datetime_helpers import now_utc

logger = logging.getLogger(__name__)


def build_gateway(backend: str = DATA_BACKEND) -> DataGateway:
    """Gateway for the configured DATA_BACKEND"""
    if backend == "memory":
        from healthquest.db.memory_gateway import InMemoryGateway
        logger.warning("Using the in-memory data backend; nothing will be persisted")
        return InMemoryGateway()

    from healthquest.db.postgres_gateway import PostgresGateway
    return PostgresGateway()


@dataclass
class ServiceContainer:
    """
    Services are lazy-loaded on first access via properties.
    Infrastructure (gateway, webhook clients, generation log, clock) is
    injected; whatever is left out is built from configuration.
    """

    gateway: DataGateway
    goal_source: Optional[object] = None  # GoalSourceClient
    otp_sender: Optional[object] = None  # OtpSender
    generation_log: Optional[object] = None  # GenerationLog
    clock: Callable[[], datetime] = now_utc

    _ledger: Optional[object] = field(default=None, init=False, repr=False)
    _credentials: Optional[object] = field(default=None, init=False, repr=False)
    _otp_service: Optional[object] = field(default=None, init=False, repr=False)
    _identity_service: Optional[object] = field(default=None, init=False, repr=False)
    _metrics_gate: Optional[object] = field(default=None, init=False, repr=False)
    _game_service: Optional[object] = field(default=None, init=False, repr=False)
    _recommendation_service: Optional[object] = field(default=None, init=False, repr=False)

    @property
    def ledger(self):
        """Get PointsLedger instance (lazy-loaded)"""
        if self._ledger is None:
            from healthquest.gamification.points_ledger import PointsLedger
            self._ledger = PointsLedger(self.gateway)
            logger.debug("PointsLedger instantiated")
        return self._ledger

    @property
    def credentials(self):
        """Get CredentialStore instance (lazy-loaded)"""
        if self._credentials is None:
            from healthquest.auth.credentials import CredentialStore
            self._credentials = CredentialStore(self.gateway, clock=self.clock)
            logger.debug("CredentialStore instantiated")
        return self._credentials

    @property
    def otp_service(self):
        """Get OtpService instance (lazy-loaded)"""
        if self._otp_service is None:
            from healthquest.services.otp import OtpChallengeStore, OtpSender, OtpService
            if self.otp_sender is None:
                self.otp_sender = OtpSender()
            self._otp_service = OtpService(self.otp_sender, OtpChallengeStore(clock=self.clock))
            logger.debug("OtpService instantiated")
        return self._otp_service

    @property
    def identity_service(self):
        """Get IdentityService instance (lazy-loaded)"""
        if self._identity_service is None:
            from healthquest.services.identity_service import IdentityService
            self._identity_service = IdentityService(
                self.gateway,
                self.credentials,
                self.otp_service,
                self.ledger
            )
            logger.debug("IdentityService instantiated")
        return self._identity_service

    @property
    def metrics_gate(self):
        """Get DailyMetricsGate instance (lazy-loaded)"""
        if self._metrics_gate is None:
            from healthquest.services.metrics_gate import DailyMetricsGate
            self._metrics_gate = DailyMetricsGate(self.gateway, self.ledger, clock=self.clock)
            logger.debug("DailyMetricsGate instantiated")
        return self._metrics_gate

    @property
    def game_service(self):
        """Get GameService instance (lazy-loaded)"""
        if self._game_service is None:
            from healthquest.services.game_service import GameService
            self._game_service = GameService(self.gateway, self.ledger)
            logger.debug("GameService instantiated")
        return self._game_service

    @property
    def recommendation_service(self):
        """Get RecommendationService instance (lazy-loaded)"""
        if self._recommendation_service is None:
            from healthquest.services.generation_log import GenerationLog
            from healthquest.services.goal_source import GoalSourceClient
            from healthquest.services.recommendation_service import RecommendationService
            if self.goal_source is None:
                self.goal_source = GoalSourceClient()
            if self.generation_log is None:
                self.generation_log = GenerationLog()
            self._recommendation_service = RecommendationService(
                self.gateway,
                self.ledger,
                self.goal_source,
                self.generation_log,
                clock=self.clock
            )
            logger.debug("RecommendationService instantiated")
        return self._recommendation_service


# Global container instance (initialized by the API lifespan)
_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    """
    Get the global service container.

    Raises:
        RuntimeError: If container not initialized (call init_container first)
    """
    if _container is None:
        raise RuntimeError(
            "Service container not initialized. "
            "Call init_container() before using services."
        )
    return _container


def init_container(gateway: Optional[DataGateway] = None, **kwargs) -> ServiceContainer:
    """
    Initialize the global service container.

    Args:
        gateway: Data gateway (built from DATA_BACKEND when omitted)
        **kwargs: Optional goal_source, otp_sender, generation_log, clock

    Returns:
        ServiceContainer: The initialized container
    """
    global _container

    _container = ServiceContainer(gateway=gateway or build_gateway(), **kwargs)

    logger.info("Service container initialized")
    return _container


def install_container(container: ServiceContainer) -> ServiceContainer:
    """Use an already-built container as the global one"""
    global _container
    _container = container
    return _container


def reset_container() -> None:
    """Drop the global container"""
    global _container
    _container = None
