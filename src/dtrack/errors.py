"""Domain error taxonomy.

Services raise these; the global handlers in ``dtrack.middleware.error_handler``
render them into the ``{success, message, errors}`` envelope.
"""

from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(DomainError):
    """Malformed or out-of-range input, with field-level messages."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class NoValidCollaboratorsError(ValidationError):
    """Every requested collaborator was skipped."""

    def __init__(self, skipped: list[dict[str, Any]], total_requested: int) -> None:
        super().__init__("No valid collaborators to add", [s["reason"] for s in skipped])
        self.skipped = skipped
        self.total_requested = total_requested


class NotFoundError(DomainError):
    status_code = 404


class PermissionDeniedError(DomainError):
    status_code = 403


class ConflictError(DomainError):
    status_code = 409


class TransientInfraError(DomainError):
    """Database or provider unreachable."""

    status_code = 503
