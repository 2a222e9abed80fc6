"""
Error taxonomy for the courier core.

Every error carries a stable machine-readable ``code`` and a ``details`` dict
so a transport layer can map it to a response without parsing messages.
"""

from typing import Any, Optional


class CourierError(Exception):
    """Base class for all errors raised by the courier core."""

    code = "COURIER_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serializable form for transport layers and logs."""
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(CourierError):
    """Input or state does not allow the requested operation."""

    code = "VALIDATION_ERROR"


class InvalidTransitionError(ValidationError):
    """The requested action is not legal from the load's current status."""

    code = "INVALID_TRANSITION"

    def __init__(self, action: str, actual: str, expected: list[str]) -> None:
        expected_text = ", ".join(expected) if expected else "none"
        super().__init__(
            f"Cannot {action} a load in status {actual} (allowed from: {expected_text})",
            details={"action": action, "actual_status": actual, "expected_statuses": expected},
        )
        self.action = action
        self.actual = actual
        self.expected = expected


class StaleStateError(ValidationError):
    """A concurrent writer changed the load between read and conditional write."""

    code = "STALE_STATE"

    def __init__(self, load_id: str, expected: str, actual: str) -> None:
        super().__init__(
            f"Load {load_id} changed concurrently: expected status {expected}, found {actual}",
            details={"load_id": load_id, "expected_status": expected, "actual_status": actual},
        )
        self.load_id = load_id
        self.expected = expected
        self.actual = actual


class ComplianceError(ValidationError):
    """One or more hard compliance failures block the transition."""

    code = "COMPLIANCE_ERROR"

    def __init__(self, errors: list[str], warnings: Optional[list[str]] = None) -> None:
        super().__init__(
            "Compliance check failed: " + "; ".join(errors),
            details={"errors": list(errors), "warnings": list(warnings or [])},
        )
        self.errors = list(errors)
        self.warnings = list(warnings or [])


class NotFoundError(CourierError):
    """Referenced record does not exist."""

    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: Optional[str] = None) -> None:
        super().__init__(
            f"{resource} not found",
            details={"resource": resource, "id": identifier} if identifier else {"resource": resource},
        )
        self.resource = resource
        self.identifier = identifier


class AuthorizationError(CourierError):
    """Caller is not allowed to perform the operation."""

    code = "FORBIDDEN"
