"""Engine error taxonomy.

Each error carries a stable machine-readable ``code`` and the HTTP status the
callable surface maps it to. Services raise these; routers never catch them,
the global handlers in ``famquest.middleware.error_handler`` render them.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for all engine failures."""

    code = "internal"
    status_code = 500
    retryable = False

    def __init__(self, message: str, *, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []

    def to_dict(self) -> dict[str, object]:
        body: dict[str, object] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationFailed(EngineError):
    """Malformed input, e.g. a rule definition with a missing trigger."""

    code = "validation_failed"
    status_code = 422

    def __init__(self, message: str, *, details: list[str] | None = None) -> None:
        super().__init__(message, details=details)


class NotFound(EngineError):
    """A referenced rule, child, penalty, goal or quest template is missing."""

    code = "not_found"
    status_code = 404


class PermissionDenied(EngineError):
    """The caller's identity is outside the owning family or lacks the role."""

    code = "permission_denied"
    status_code = 403


class AuthenticationRequired(EngineError):
    code = "authentication_required"
    status_code = 401


class BusinessRuleViolation(EngineError):
    """Appeal outside window, duplicate appeal, penalty already terminal, ..."""

    code = "business_rule_violation"
    status_code = 409


class ConcurrencyConflict(EngineError):
    """Optimistic transaction retries exhausted. Safe to retry."""

    code = "concurrency_conflict"
    status_code = 409
    retryable = True
