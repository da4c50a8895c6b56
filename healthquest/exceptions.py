"""
Standardized exception hierarchy for healthquest
Provides rich context, consistent logging, and user-friendly error messages
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any
from uuid import uuid4
import logging

logger = logging.getLogger(__name__)


class HealthQuestError(Exception):
    """
    Base exception for all healthquest errors

    Provides:
    - Automatic timestamping
    - Request ID for tracing
    - User-friendly messages
    - Structured context
    - Automatic logging

    Example:
        raise HealthQuestError(
            message="Failed to save daily metrics",
            user_id="6f1c...",
            operation="submit_metrics",
            context={"fields": ["heartRate"]}
        )
    """

    def __init__(
        self,
        message: str,
        user_id: Optional[str] = None,
        request_id: Optional[str] = None,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.user_id = user_id
        self.request_id = request_id or str(uuid4())
        self.operation = operation
        self.context = context or {}
        self.cause = cause
        self.user_message = user_message or "An error occurred. Please try again."
        self.timestamp = datetime.now(timezone.utc)

        # Auto-log on creation
        self._log_error()

    def _log_error(self) -> None:
        """Log error with full context"""
        log_data = {
            "error_type": self.__class__.__name__,
            "error_message": self.message,  # Avoid conflict with logging's 'message' field
            "request_id": self.request_id,
            "user_id": self.user_id,
            "operation": self.operation,
            "error_context": self.context,
            "timestamp": self.timestamp.isoformat()
        }

        if self.cause:
            log_data["cause"] = str(self.cause)
            logger.error(f"{self.__class__.__name__}: {self.message}", extra=log_data, exc_info=self.cause)
        else:
            logger.error(f"{self.__class__.__name__}: {self.message}", extra=log_data)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for API responses"""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "user_message": self.user_message,
            "request_id": self.request_id,
            "timestamp": self.timestamp.isoformat()
        }


# ==========================================
# Validation Errors (User Input)
# ==========================================

class ValidationError(HealthQuestError):
    """
    Raised when user input is rejected before any network call

    Examples:
    - Password shorter than 8 characters
    - Password confirmation mismatch
    - Metrics already submitted today

    Example:
        raise ValidationError(
            message="Password must be at least 8 characters long",
            field="password"
        )
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs
    ):
        self.field = field
        self.value = value
        kwargs.setdefault("user_message", message)
        super().__init__(
            message=message,
            context={"field": field, "value": value},
            **kwargs
        )


# ==========================================
# Authentication
# ==========================================

class AuthError(HealthQuestError):
    """Credential or one-time passcode failure"""

    def __init__(
        self,
        message: str = "Authentication failed",
        **kwargs
    ):
        kwargs.setdefault("user_message", "Authentication failed. Please sign in again.")
        super().__init__(message=message, **kwargs)


# ==========================================
# Database Errors
# ==========================================

class DatabaseError(HealthQuestError):
    """
    Base class for data gateway errors
    """
    pass


class PersistenceError(DatabaseError):
    """A backend write failed"""

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        **kwargs
    ):
        self.collection = collection
        kwargs.setdefault("user_message", "We encountered an issue saving your data. Please try again.")
        context = kwargs.pop("context", None) or {}
        context.setdefault("collection", collection)
        super().__init__(message=message, context=context, **kwargs)


class QueryError(DatabaseError):
    """A backend read failed"""

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        **kwargs
    ):
        self.collection = collection
        kwargs.setdefault("user_message", "We couldn't load your data. Please try again.")
        super().__init__(
            message=message,
            context={"collection": collection},
            **kwargs
        )


class RecordNotFoundError(DatabaseError):
    """Requested record does not exist"""

    def __init__(
        self,
        message: str,
        record_type: Optional[str] = None,
        record_id: Optional[str] = None,
        **kwargs
    ):
        self.record_type = record_type
        self.record_id = record_id
        super().__init__(
            message=message,
            user_message=f"{record_type or 'Record'} not found.",
            context={"record_type": record_type, "record_id": record_id},
            **kwargs
        )


# ==========================================
# External API Errors
# ==========================================

class ExternalAPIError(HealthQuestError):
    """
    Base class for webhook failures
    """

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs
    ):
        self.service = service
        self.status_code = status_code
        kwargs.setdefault(
            "user_message",
            f"We're having trouble connecting to {service or 'an external service'}. Please try again later."
        )
        super().__init__(
            message=message,
            context={"service": service, "status_code": status_code},
            **kwargs
        )


class OtpDeliveryError(ExternalAPIError):
    """OTP delivery webhook error"""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            service="OTP delivery",
            **kwargs
        )


class GoalSourceError(ExternalAPIError):
    """Goal generation webhook error"""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            service="goal generation",
            **kwargs
        )


# ==========================================
# Goal Generation
# ==========================================

class GenerationError(HealthQuestError):
    """The goal source returned nothing usable, or generation is not allowed"""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault(
            "user_message",
            "Could not generate new goals from the service. Please try again later."
        )
        super().__init__(message=message, **kwargs)


# ==========================================
# Configuration Errors
# ==========================================

class ConfigurationError(HealthQuestError):
    """System configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        self.config_key = config_key
        super().__init__(
            message=message,
            user_message="The system is not properly configured. Please contact support.",
            context={"config_key": config_key},
            **kwargs
        )


# ==========================================
# Utility Functions
# ==========================================

def wrap_gateway_exception(
    error: Exception,
    operation: str,
    collection: str,
    write: bool,
    user_id: Optional[str] = None
) -> DatabaseError:
    """
    Convert a backend exception into the gateway's error types

    Writes become PersistenceError (naming the collection), reads QueryError.
    Errors that already belong to the hierarchy pass through unchanged.

    Example:
        try:
            await cur.execute(query, params)
        except Exception as e:
            raise wrap_gateway_exception(e, "insert", "daily_metrics", write=True)
    """
    if isinstance(error, DatabaseError):
        return error

    if write:
        return PersistenceError(
            message=f"Write to '{collection}' failed ({operation}): {error}",
            collection=collection,
            operation=operation,
            user_id=user_id,
            cause=error
        )
    return QueryError(
        message=f"Read from '{collection}' failed: {error}",
        collection=collection,
        operation=operation,
        user_id=user_id,
        cause=error
    )
