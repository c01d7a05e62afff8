"""Exception hierarchy shared by the ledger gateway and the AI services."""

from __future__ import annotations

from typing import Any, Optional


class InvoiceLedgerError(Exception):
    """Base exception for all invoice ledger errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class AIConfigurationError(InvoiceLedgerError):
    """Raised when an AI provider is selected but cannot be configured (missing key)."""


class ModelInvocationError(InvoiceLedgerError):
    """Raised when a provider call fails at the transport or HTTP level."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        if status_code is not None and str(status_code) not in message:
            message = f"[{status_code}] {message}"
        super().__init__(message, details={"status_code": status_code})


class RetryExhaustedError(InvoiceLedgerError):
    """Raised when the retry wrapper gives up on a model call."""

    def __init__(self, operation_name: str, attempts: int, last_error: Optional[Exception]) -> None:
        self.operation_name = operation_name
        self.attempts = attempts
        self.last_error = last_error
        last = str(last_error) if last_error else "unknown error"
        super().__init__(
            f"{operation_name} failed after {attempts} attempts: {last}",
            details={"attempts": attempts},
        )


class MalformedModelOutputError(InvoiceLedgerError):
    """Raised when model output cannot be decoded or does not match the expected schema."""

    def __init__(self, message: str, raw_text: str = "") -> None:
        self.raw_text = raw_text
        super().__init__(message, details={"raw_preview": raw_text[:200]})


class InvalidMovementError(InvoiceLedgerError):
    """Raised when a movement cannot be created from the supplied data."""


class NotFoundError(InvoiceLedgerError):
    """Raised when a record looked up by id does not exist."""

    def __init__(self, entity: str, entity_id: Any) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class ConflictError(InvoiceLedgerError):
    """Raised when an update would collide with another record's natural key."""
