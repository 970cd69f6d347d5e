"""Exceptions raised by the appointment services."""

from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    """Classification of a backend failure by response category."""
    BAD_INPUT = "BAD_INPUT"
    NOT_FOUND = "NOT_FOUND"
    STATE_CONFLICT = "STATE_CONFLICT"
    SERVER_FAULT = "SERVER_FAULT"
    TRANSPORT_FAILURE = "TRANSPORT_FAILURE"

    @property
    def remediation(self) -> str:
        return REMEDIATION_HINTS[self]

    @property
    def is_connectivity_failure(self) -> bool:
        """True when the backend could not give an answer at all."""
        return self in (ErrorCategory.TRANSPORT_FAILURE, ErrorCategory.SERVER_FAULT)

    @classmethod
    def from_status_code(cls, status_code: int) -> "ErrorCategory":
        if status_code == 404:
            return cls.NOT_FOUND
        if status_code == 409:
            return cls.STATE_CONFLICT
        if status_code >= 500:
            return cls.SERVER_FAULT
        return cls.BAD_INPUT


REMEDIATION_HINTS = {
    ErrorCategory.BAD_INPUT: "Correct the appointment details and retry with a different slot.",
    ErrorCategory.NOT_FOUND: "Re-fetch the ticket and technician; one of them may have been deleted.",
    ErrorCategory.STATE_CONFLICT: "Retry with a different time slot or technician.",
    ErrorCategory.SERVER_FAULT: "Run diagnostics to check whether entity state changed since validation.",
    ErrorCategory.TRANSPORT_FAILURE: "Check connectivity to the backend or contact the system administrator.",
}


class ApiError(Exception):
    """Raised when a backend call fails."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        self.message = message
        self.category = category
        self.status_code = status_code
        self.body = body
        super().__init__(message)

    @property
    def remediation(self) -> str:
        return self.category.remediation

    @classmethod
    def from_status(cls, status_code: int, body: str = "") -> "ApiError":
        message = f"API call failed with status {status_code}"
        if body:
            message = f"{message}: {body}"
        return cls(
            message,
            ErrorCategory.from_status_code(status_code),
            status_code=status_code,
            body=body,
        )


class InvalidTransitionError(Exception):
    """Raised when an appointment status change is not permitted."""

    def __init__(self, message: str, appointment_id: Optional[int] = None, cause: Optional[ApiError] = None):
        self.message = message
        self.appointment_id = appointment_id
        self.cause = cause
        super().__init__(message)

    @property
    def rejected_by_backend(self) -> bool:
        return self.cause is not None
