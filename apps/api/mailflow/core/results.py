"""Typed results returned by the automation service boundary.

Services raise AutomationError for precondition failures. The facade in
services.automation_service converts every outcome into a Result, so callers
branch on ``result.ok`` / ``result.error.kind`` instead of catching exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Failure kinds surfaced by automation operations."""

    VALIDATION_ERROR = "validation_error"
    DUPLICATE_NAME = "duplicate_name"
    NOT_FOUND = "not_found"
    ARCHIVED = "archived"
    NO_STEPS = "no_steps"
    NO_EMAIL_STEP = "no_email_step"
    HAS_ENROLLMENTS = "has_enrollments"
    ALREADY_ENROLLED = "already_enrolled"
    NOT_ACTIVE = "not_active"
    INVALID_ID = "invalid_id"
    INVALID_STATUS = "invalid_status"
    TOO_MANY = "too_many"
    NO_IDS = "no_ids"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    STORE_ERROR = "store_error"
    INTERNAL_ERROR = "internal_error"


class AutomationError(Exception):
    """Precondition or validation failure raised inside the service layer."""

    def __init__(self, kind: ErrorKind, message: str, field: str | None = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.field = field


@dataclass(frozen=True)
class ServiceError:
    kind: ErrorKind
    message: str
    field: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "field": self.field}


@dataclass(frozen=True)
class Result:
    """Discriminated success/error value."""

    ok: bool
    data: Any = None
    error: ServiceError | None = None

    @classmethod
    def success(cls, data: Any = None) -> "Result":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, field: str | None = None) -> "Result":
        return cls(ok=False, error=ServiceError(kind=kind, message=message, field=field))

    @property
    def kind(self) -> ErrorKind | None:
        return self.error.kind if self.error else None
