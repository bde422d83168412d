"""
moltmark.errors — Exception hierarchy for the certification ledger.

"Agent not found" is deliberately absent: unknown agents are an expected
answer (``found=False`` / ``verified=False``), not a fault.
"""

from typing import Any, Optional

__all__ = [
    "CertificationError",
    "InvalidInputError",
    "StorageUnavailableError",
    "ConstraintViolationError",
    "ConfigurationError",
]


class CertificationError(Exception):
    """Base exception for all moltmark errors."""

    code = "internal_error"

    def __init__(self, message: str, *, operation: Optional[str] = None,
                 details: Optional[dict[str, Any]] = None):
        self.message = message
        self.operation = operation
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "operation": self.operation,
                "details": self.details,
            }
        }

    def __str__(self) -> str:
        if self.operation:
            return f"{self.operation}: {self.message}"
        return self.message


class InvalidInputError(CertificationError):
    """Caller-supplied values failed validation. Raised before any store access."""

    code = "invalid_input"


class StorageUnavailableError(CertificationError):
    """The store could not be reached, timed out, or rejected a write."""

    code = "storage_unavailable"


class ConstraintViolationError(CertificationError):
    """An integrity rule was violated (missing owner row, bad outcome value)."""

    code = "constraint_violation"


class ConfigurationError(CertificationError):
    """Settings are missing or malformed."""

    code = "configuration_error"
