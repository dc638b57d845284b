# app/core/exceptions.py
"""
Error taxonomy for the scheduling engine.

Every rejection raised by the services is one of these classes. They subclass
FastAPI's HTTPException so the endpoint layer (and handle_exceptions) passes
them straight through with their status code, while tests and callers can
still tell them apart by type.
"""
from typing import Any, Optional

from fastapi import HTTPException


class SchedulingError(HTTPException):
    status_code = 400
    error = "SchedulingError"

    def __init__(self, message: str, **extra: Any):
        self.message = message
        self.extra = extra
        detail = {"error": self.error, "message": message}
        detail.update(extra)
        super().__init__(status_code=self.status_code, detail=detail)

    def __str__(self) -> str:
        return f"{self.error}: {self.message}"


class ValidationError(SchedulingError):
    """Malformed input: inverted interval, missing field, out-of-range coordinate."""
    status_code = 422
    error = "ValidationError"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message, field=field)


class ResourceUnavailable(SchedulingError):
    """Vehicle not in a deployable status, or an overlapping commitment exists."""
    status_code = 409
    error = "ResourceUnavailable"

    def __init__(self, message: str, resource_kind: Optional[str] = None,
                 resource_id: Optional[str] = None, conflicting_id: Optional[str] = None):
        self.resource_kind = resource_kind
        self.resource_id = resource_id
        self.conflicting_id = conflicting_id
        super().__init__(message, resource_kind=resource_kind,
                         resource_id=resource_id, conflicting_id=conflicting_id)


class NotAuthorizedToPilot(SchedulingError):
    status_code = 403
    error = "NotAuthorizedToPilot"

    def __init__(self, pilot_id: str, message: str):
        self.pilot_id = pilot_id
        super().__init__(message, pilot_id=pilot_id)


class IllegalTransition(SchedulingError):
    status_code = 409
    error = "IllegalTransition"

    def __init__(self, machine: str, from_status: str, to_status: str):
        self.machine = machine
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Illegal {machine} transition {from_status} -> {to_status}",
            machine=machine, from_status=from_status, to_status=to_status,
        )


class GenerationExhausted(SchedulingError):
    """Identifier minting failed after the bounded number of attempts. Not retried."""
    status_code = 503
    error = "GenerationExhausted"

    def __init__(self, kind: str, attempts: int):
        self.kind = kind
        self.attempts = attempts
        super().__init__(f"Could not mint a unique {kind} id after {attempts} attempts",
                         kind=kind, attempts=attempts)


class ConcurrencyConflict(SchedulingError):
    """A concurrent writer won the race. Callers should retry the whole operation once."""
    status_code = 409
    error = "ConcurrencyConflict"


class RecordNotFound(SchedulingError):
    """
    A referenced vehicle, pilot, deployment or maintenance window does not exist.
    Sits beside the six rejection kinds above rather than inside one of them:
    a missing record is neither bad input nor a busy resource.
    """
    status_code = 404
    error = "RecordNotFound"

    def __init__(self, kind: str, record_id: str):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} '{record_id}' not found", kind=kind, record_id=record_id)
