"""Typed failures raised by the conformity engine."""

# purpose: give every engine failure a stable code and HTTP status for tagged responses
# status: active

from __future__ import annotations

from typing import Any


class ConformityError(RuntimeError):
    """Base error for test execution and conformity operations."""

    code = "conformity_error"
    status_code = 400

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.code, "detail": self.message, **self.extra}


class ValidationError(ConformityError):
    """Raised when input is malformed or references inconsistent data."""

    code = "validation_error"
    status_code = 422


class InvalidStateTransition(ConformityError):
    """Raised when a lifecycle move is not part of the transition graph."""

    code = "invalid_state_transition"
    status_code = 409


class IncompleteChecklist(ConformityError):
    """Raised when finalization is attempted with unanswered mandatory items."""

    code = "incomplete_checklist"
    status_code = 409

    def __init__(self, message: str, missing_item_ids: list[str]) -> None:
        super().__init__(message, missing_item_ids=missing_item_ids)
        self.missing_item_ids = missing_item_ids


class LockedRecordError(ConformityError):
    """Raised when a write targets a sealed test or one of its measurements."""

    code = "locked_record"
    status_code = 423


class AuthorizationDenied(ConformityError):
    """Raised when the role matrix or an ownership rule refuses the action."""

    code = "authorization_denied"
    status_code = 403


class NotFoundError(ConformityError):
    """Raised when a referenced entity does not exist."""

    code = "not_found"
    status_code = 404


class ConcurrencyConflict(ConformityError):
    """Raised when a racing request already changed the record."""

    code = "concurrency_conflict"
    status_code = 409


class AuditWriteError(ConformityError):
    """Raised when the audit entry for a mutation cannot be written."""

    code = "audit_write_failed"
    status_code = 500
