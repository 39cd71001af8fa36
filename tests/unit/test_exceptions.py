"""
Unit tests for the domain exception hierarchy and its helpers.
"""

from sqlalchemy.exc import IntegrityError, OperationalError

from soma.core.exceptions import DatabaseError, ErrorSeverity, sqlstate_of
from soma.modules.shared.exceptions import (
    BotNotConfiguredError,
    ConflictError,
    DailyLimitExceededError,
    InsufficientBalanceError,
    NotFoundError,
    PermissionDeniedError,
    SomaDomainException,
    ValidationError,
    get_error_severity,
    is_transient_error,
    should_alert,
)


class TestDomainExceptions:
    def test_insufficient_balance_reports_deficit(self):
        exc = InsufficientBalanceError(required=10.0, available=4.0)

        assert exc.deficit == 6.0
        assert exc.details["deficit"] == 6.0
        assert exc.error_code == "INSUFFICIENT_BALANCE"

    def test_deficit_never_negative(self):
        assert InsufficientBalanceError(required=1.0, available=5.0).deficit == 0.0

    def test_validation_error_code_names_field(self):
        exc = ValidationError("amount", "must be positive")
        assert exc.error_code == "VALIDATION_AMOUNT"
        assert "amount" in str(exc)

    def test_bot_not_configured_is_not_found(self):
        exc = BotNotConfiguredError("bot-1", "200000000000000001")
        assert isinstance(exc, NotFoundError)
        assert exc.error_code == "BOT_NOT_CONFIGURED"

    def test_to_dict_is_serializable_shape(self):
        payload = ConflictError("transaction", "already refunded").to_dict()

        assert payload["error_code"]
        assert payload["message"]
        assert isinstance(payload["details"], dict)

    def test_all_domain_errors_share_base(self):
        for exc in (
            ValidationError("f", "m"),
            NotFoundError("User", "1"),
            DailyLimitExceededError("sender_limit", 0.0),
            PermissionDeniedError("1", "grant"),
        ):
            assert isinstance(exc, SomaDomainException)


class TestErrorHelpers:
    def test_daily_limit_is_transient(self):
        assert is_transient_error(DailyLimitExceededError("sender_limit", 5.0))

    def test_validation_is_not_transient(self):
        assert not is_transient_error(ValidationError("amount", "bad"))

    def test_database_error_is_transient_and_alerts(self):
        exc = DatabaseError("deduct", OperationalError("SELECT 1", {}, Exception("gone")))

        assert is_transient_error(exc)
        assert get_error_severity(exc) in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL)
        assert should_alert(exc)

    def test_insufficient_balance_does_not_alert(self):
        assert not should_alert(InsufficientBalanceError(5.0, 1.0))

    def test_unknown_exception_is_error_severity(self):
        assert get_error_severity(RuntimeError("boom")) == ErrorSeverity.ERROR


class TestDatabaseError:
    def test_constraint_violation_is_not_retryable(self):
        exc = DatabaseError("refund", IntegrityError("INSERT", {}, Exception("duplicate")))

        assert not exc.is_retryable
        assert exc.to_dict()["details"]["error_type"] == "IntegrityError"

    def test_sqlstate_recorded_when_driver_reports_one(self):
        class DriverError(Exception):
            sqlstate = "40001"

        exc = DatabaseError("transfer", OperationalError("UPDATE", {}, DriverError("conflict")))

        assert exc.details["sqlstate"] == "40001"
        assert sqlstate_of(exc.original_error) == "40001"
