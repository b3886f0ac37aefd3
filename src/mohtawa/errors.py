"""Domain-specific exceptions shared by the engine, services and API."""

from __future__ import annotations


class DomainError(Exception):
    """Base class for domain errors."""

    error: str = "domain_error"
    status_code: int = 400

    def __init__(self, message: str, *, error: str | None = None, status_code: int | None = None):
        super().__init__(message)
        if error:
            self.error = error
        if status_code:
            self.status_code = status_code


class ValidationError(DomainError):
    error = "validation_error"
    status_code = 400


class NotFoundError(DomainError):
    error = "not_found"
    status_code = 404


class ConflictError(DomainError):
    error = "conflict"
    status_code = 409


class ConfigurationError(DomainError):
    error = "configuration_error"
    status_code = 500


class WorkflowError(DomainError):
    error = "workflow_error"
    status_code = 422


class PermissionDeniedError(DomainError):
    error = "forbidden"
    status_code = 403
