"""Tests for cookie_scanner.utils.errors: error types and message extraction."""

from __future__ import annotations

from cookie_scanner.utils import errors


class TestGetErrorMessage:
    """Tests for get_error_message()."""

    def test_exception_with_message(self) -> None:
        assert errors.get_error_message(ValueError("something broke")) == "something broke"

    def test_exception_without_message(self) -> None:
        assert errors.get_error_message(ValueError()) == "ValueError"

    def test_non_exception(self) -> None:
        assert errors.get_error_message("oops") == "Unknown error"


class TestSanitizeErrorMessage:
    """Tests for sanitize_error_message()."""

    def test_scanner_error_uses_user_message(self) -> None:
        exc = errors.ScanExecutionError("playwright crashed at 0xdeadbeef", "Browser could not be started")
        assert errors.sanitize_error_message(exc) == "Browser could not be started"

    def test_unexpected_error_is_generic(self) -> None:
        exc = RuntimeError("Traceback ... password=hunter2")
        assert errors.sanitize_error_message(exc) == errors.GENERIC_SCAN_FAILURE


class TestErrorTypes:
    def test_user_message_defaults_to_message(self) -> None:
        assert errors.ScannerError("boom").user_message == "boom"

    def test_status_codes(self) -> None:
        assert errors.UrlValidationError("x").status_code == 400
        assert errors.TransactionNotFoundError("abc").status_code == 404
        assert errors.CookieNotFoundError("_ga", "abc").status_code == 404
        assert errors.InvalidStateError("x").status_code == 409
        assert errors.CircuitOpenError("upstream", 3.0).status_code == 503

    def test_transaction_not_found_hides_id_from_user(self) -> None:
        exc = errors.TransactionNotFoundError("abc-123")
        assert "abc-123" in str(exc)
        assert "abc-123" not in exc.user_message

    def test_categorization_error_keeps_status(self) -> None:
        assert errors.CategorizationError("bad gateway", status=502).status == 502

    def test_circuit_open_carries_retry_after(self) -> None:
        exc = errors.CircuitOpenError("upstream", 12.5)
        assert exc.retry_after_seconds == 12.5
        assert "12.5s" in str(exc)
