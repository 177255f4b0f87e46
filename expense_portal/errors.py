"""Service error taxonomy shared by every workflow and the HTTP boundary."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class FieldError(BaseModel):
    """A single validation failure keyed by a dotted field path."""

    field: str
    message: str


class ServiceError(Exception):
    """Base class for failures surfaced to API callers."""

    status_code: int = 500
    code: str = "internal"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_payload(self) -> dict[str, Any]:
        """Return the client-visible error body."""
        return {"error": self.code}


class NotFoundError(ServiceError):
    """Referenced entity is absent or not visible to the actor."""

    status_code = 404
    code = "not_found"


class ForbiddenError(ServiceError):
    """Authenticated, but role or ownership is insufficient."""

    status_code = 403
    code = "forbidden"


class ConflictError(ServiceError):
    """A conditional state transition found an unexpected current state."""

    status_code = 409
    code = "conflict"


class InternalError(ServiceError):
    """Persistence or adapter failure. The message never leaves the server."""

    status_code = 500
    code = "internal"


class UnauthenticatedError(ServiceError):
    """Request credentials are missing or could not be verified."""

    status_code = 401
    code = "unauthenticated"

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message}


class ValidationFailedError(ServiceError):
    """Input rejected before any persistence attempt."""

    status_code = 422
    code = "validation"

    def __init__(self, errors: list[FieldError]) -> None:
        summary = "; ".join(f"{error.field}: {error.message}" for error in errors)
        super().__init__(summary or "validation failed")
        self.errors = list(errors)

    @classmethod
    def single(cls, field: str, message: str) -> ValidationFailedError:
        """Build an error carrying one field failure."""
        return cls([FieldError(field=field, message=message)])

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "details": [error.model_dump() for error in self.errors],
        }
