"""
Error types and helpers for consistent error message extraction.

Every error the service raises on purpose derives from
:class:`ScannerError`, which carries two messages: ``message`` for
logs and ``user_message`` for API responses and FAILED scan records.
The user-facing text never contains stack traces, upstream bodies or
credentials.
"""

from __future__ import annotations

GENERIC_SCAN_FAILURE = "An unexpected error occurred during scanning"


class ScannerError(Exception):
    """Base class for all scanner errors."""

    code = "SCANNER_ERROR"
    status_code = 500

    def __init__(self, message: str, user_message: str | None = None) -> None:
        super().__init__(message)
        self.user_message = user_message or message


class UrlValidationError(ScannerError):
    """A scan URL, subdomain or request field failed validation."""

    code = "VALIDATION_ERROR"
    status_code = 400


class TransactionNotFoundError(ScannerError):
    """No scan exists for the requested transaction id."""

    code = "TRANSACTION_NOT_FOUND"
    status_code = 404

    def __init__(self, transaction_id: str) -> None:
        super().__init__(
            f"Scan result not found for transactionId={transaction_id}",
            "No scan found for the provided transaction id",
        )
        self.transaction_id = transaction_id


class CookieNotFoundError(ScannerError):
    """A cookie named in an update request does not exist in the scan."""

    code = "COOKIE_NOT_FOUND"
    status_code = 404

    def __init__(self, cookie_name: str, transaction_id: str) -> None:
        super().__init__(
            f"Cookie {cookie_name!r} not found in transactionId={transaction_id}",
            f"Cookie '{cookie_name}' was not found in this scan",
        )


class InvalidStateError(ScannerError):
    """The scan is not in a state that allows the requested operation."""

    code = "INVALID_STATE"
    status_code = 409


class DuplicateCookieError(ScannerError):
    """A manually added cookie already exists in its subdomain bucket."""

    code = "DUPLICATE_COOKIE"
    status_code = 409

    def __init__(self, cookie_name: str, subdomain_name: str) -> None:
        super().__init__(
            f"Cookie {cookie_name!r} already exists in subdomain {subdomain_name!r}",
            f"Cookie '{cookie_name}' already exists for subdomain '{subdomain_name}'",
        )


class CategoryExistsError(ScannerError):
    code = "CATEGORY_EXISTS"
    status_code = 409

    def __init__(self, category: str) -> None:
        super().__init__(f"Category {category!r} already exists", f"Category already exists: {category}")


class CategoryNotFoundError(ScannerError):
    code = "CATEGORY_NOT_FOUND"
    status_code = 404

    def __init__(self, category: str) -> None:
        super().__init__(f"Category {category!r} not found", f"No category found with name '{category}'")


class ScanExecutionError(ScannerError):
    """A scan could not be started or failed while running."""

    code = "SCAN_EXECUTION_ERROR"
    status_code = 500


class DataAccessError(ScannerError):
    """The persistence collaborator failed to read or write a scan."""

    code = "DATA_ACCESS_ERROR"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message, "Scan data could not be stored or retrieved")


class CategorizationError(ScannerError):
    """The categorization upstream returned an unusable response.

    Never surfaces through the API; the categorization client turns
    it into an empty result.
    """

    code = "CATEGORIZATION_ERROR"

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message, "Cookie categorization is unavailable")
        self.status = status


class CircuitOpenError(ScannerError):
    """A call was rejected because the circuit breaker is open."""

    code = "CIRCUIT_OPEN"
    status_code = 503

    def __init__(self, name: str, retry_after_seconds: float) -> None:
        super().__init__(
            f"Circuit breaker {name!r} is open (retry in {retry_after_seconds:.1f}s)",
            "Service temporarily unavailable",
        )
        self.retry_after_seconds = retry_after_seconds


def get_error_message(error: BaseException | object) -> str:
    """
    Safely extract an error message from an unknown error type.
    """
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    return "Unknown error"


def sanitize_error_message(error: BaseException) -> str:
    """Return text safe to store on a FAILED scan or show to a client."""
    if isinstance(error, ScannerError):
        return error.user_message
    return GENERIC_SCAN_FAILURE
