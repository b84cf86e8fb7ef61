# Overview: Domain error taxonomy shared by services and the HTTP layer.

"""
Every business failure raised by a service is a BakeryError subclass.

Each class carries the HTTP status and a stable machine-readable code so the
app-level error handler can translate it without knowing about individual
services. Services raise; routes never build error bodies by hand.
"""

from __future__ import annotations


class BakeryError(Exception):
    status_code = 500
    code = "error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(BakeryError):
    """400-level input problem."""
    status_code = 400
    code = "validation_error"

    def __init__(self, message: str, field: str | None = None, details: dict | None = None):
        details = dict(details or {})
        if field:
            details.setdefault("field", field)
        super().__init__(message, details)
        self.field = field


class PasswordMismatchError(ValidationError):
    code = "password_mismatch"


class WeakPasswordError(ValidationError):
    code = "weak_password"


class NoOpError(BakeryError):
    """Requested change would leave state unchanged."""
    status_code = 400
    code = "no_op"


class NotFoundError(BakeryError):
    status_code = 404
    code = "not_found"


class ConflictError(BakeryError):
    """409-level business rule conflict."""
    status_code = 409
    code = "conflict"


class AlreadyCancelledError(ConflictError):
    code = "already_cancelled"


class InvalidStateError(ConflictError):
    code = "invalid_state"


class InsufficientStockError(ConflictError):
    code = "insufficient_stock"

    def __init__(self, product_id: int, available: int, requested: int, product_name: str | None = None):
        label = product_name or f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {label}. Available: {available}, requested: {requested}",
            {"product_id": product_id, "available": available, "requested": requested},
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class BulkAdjustmentError(BakeryError):
    """Every item of a bulk adjustment failed; nothing was applied."""
    status_code = 400
    code = "bulk_adjust_failed"

    def __init__(self, failed: list[dict]):
        super().__init__("No adjustments could be applied", {"failed": failed})
        self.failed = failed


class InvalidCredentialsError(BakeryError):
    status_code = 401
    code = "invalid_credentials"

    def __init__(self, message: str = "Invalid credentials", details: dict | None = None):
        super().__init__(message, details)


class WrongCurrentPasswordError(BakeryError):
    status_code = 401
    code = "wrong_current_password"

    def __init__(self, message: str = "Current password is incorrect"):
        super().__init__(message)


class UnauthenticatedError(BakeryError):
    status_code = 401
    code = "unauthenticated"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class ForbiddenError(BakeryError):
    status_code = 403
    code = "forbidden"

    def __init__(self, message: str = "Permission denied", details: dict | None = None):
        super().__init__(message, details)


class AccountLockedError(BakeryError):
    status_code = 423
    code = "account_locked"

    def __init__(self, retry_after_seconds: int):
        retry_after_seconds = max(int(retry_after_seconds), 0)
        minutes = -(-retry_after_seconds // 60)
        super().__init__(
            f"Account temporarily locked. Try again in {minutes} minute(s)",
            {"retry_after_seconds": retry_after_seconds, "retry_after_minutes": minutes},
        )
        self.retry_after_seconds = retry_after_seconds


class StorageError(BakeryError):
    """Store unreachable, lock wait exhausted or persistent write conflict."""
    status_code = 503
    code = "storage_error"


class InternalError(BakeryError):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
