"""Unit tests for custom exception hierarchy"""
from datetime import datetime

from healthquest.exceptions import (
    HealthQuestError,
    ValidationError,
    AuthError,
    DatabaseError,
    PersistenceError,
    QueryError,
    RecordNotFoundError,
    ExternalAPIError,
    OtpDeliveryError,
    GoalSourceError,
    GenerationError,
    ConfigurationError,
    wrap_gateway_exception,
)


class TestHealthQuestError:
    """Test base exception class"""

    def test_basic_exception(self):
        error = HealthQuestError("Test error")
        assert error.message == "Test error"
        assert error.user_message == "An error occurred. Please try again."
        assert error.request_id is not None
        assert isinstance(error.timestamp, datetime)
        assert error.timestamp.tzinfo is not None

    def test_exception_with_context(self):
        error = HealthQuestError(
            message="Save failed",
            user_id="u-1",
            operation="submit_metrics",
            context={"fields": ["heartRate"]},
            user_message="Could not save your metrics"
        )
        assert error.user_id == "u-1"
        assert error.operation == "submit_metrics"
        assert error.context["fields"] == ["heartRate"]
        assert error.user_message == "Could not save your metrics"

    def test_to_dict(self):
        error_dict = HealthQuestError("Test error", user_id="u-1").to_dict()
        assert error_dict["error"] == "HealthQuestError"
        assert error_dict["message"] == "Test error"
        assert "request_id" in error_dict
        assert "timestamp" in error_dict

    def test_logs_on_creation(self, caplog):
        with caplog.at_level("ERROR", logger="healthquest.exceptions"):
            HealthQuestError("Something broke", operation="test_op")
        assert "Something broke" in caplog.text


class TestValidationError:

    def test_user_message_defaults_to_message(self):
        error = ValidationError("Password must be at least 8 characters long", field="password")
        assert error.user_message == "Password must be at least 8 characters long"
        assert error.field == "password"
        assert error.context["field"] == "password"

    def test_explicit_user_message(self):
        error = ValidationError("already submitted", field="metrics", user_message="Come back tomorrow.")
        assert error.user_message == "Come back tomorrow."


class TestDatabaseErrors:

    def test_persistence_error_names_collection(self):
        error = PersistenceError("write failed", collection="user_points")
        assert isinstance(error, DatabaseError)
        assert error.collection == "user_points"
        assert error.context["collection"] == "user_points"

    def test_persistence_error_merges_context(self):
        error = PersistenceError("write failed", collection="users", context={"step": "create user"})
        assert error.context == {"step": "create user", "collection": "users"}

    def test_record_not_found(self):
        error = RecordNotFoundError("missing", record_type="Profile", record_id="u-1")
        assert error.user_message == "Profile not found."
        assert error.record_id == "u-1"


class TestExternalErrors:

    def test_webhook_errors_are_external(self):
        assert isinstance(OtpDeliveryError("down"), ExternalAPIError)
        assert isinstance(GoalSourceError("down", status_code=503), ExternalAPIError)

    def test_service_named(self):
        error = GoalSourceError("down", status_code=503)
        assert error.service == "goal generation"
        assert error.status_code == 503

    def test_generation_error_default_message(self):
        assert "goals" in GenerationError("nothing parsed").user_message


class TestMiscErrors:

    def test_auth_error_default(self):
        error = AuthError()
        assert error.message == "Authentication failed"

    def test_configuration_error(self):
        error = ConfigurationError("missing", config_key="GOAL_WEBHOOK_URL")
        assert error.config_key == "GOAL_WEBHOOK_URL"


class TestWrapGatewayException:

    def test_write_becomes_persistence_error(self):
        cause = RuntimeError("connection reset")
        error = wrap_gateway_exception(cause, "insert", "daily_metrics", write=True)
        assert isinstance(error, PersistenceError)
        assert error.collection == "daily_metrics"
        assert error.cause is cause

    def test_read_becomes_query_error(self):
        error = wrap_gateway_exception(RuntimeError("boom"), "select", "users", write=False)
        assert isinstance(error, QueryError)

    def test_database_error_passes_through(self):
        original = QueryError("already wrapped", collection="users")
        assert wrap_gateway_exception(original, "select", "users", write=False) is original
