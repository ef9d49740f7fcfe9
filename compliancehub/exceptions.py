"""
compliancehub - Custom exceptions for error handling.
"""

from dataclasses import asdict, dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class FieldError:
    """A single violated rule, scoped to one form field."""

    field: str
    code: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


class ComplianceError(Exception):
    """Base exception for all compliancehub errors."""

    status_code_default: Optional[int] = None

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code if status_code is not None else self.status_code_default
        self.response = response


class AuthenticationError(ComplianceError):
    """Raised when the bearer token is missing, unknown or expired."""

    status_code_default = 401


class AuthorizationError(ComplianceError):
    """Raised when the caller may not act for the requested tenant."""

    status_code_default = 403


class NotFoundError(ComplianceError):
    """Raised when a requested resource is not found."""

    status_code_default = 404


class SchemaNotFoundError(NotFoundError):
    """Raised when no form schema is configured for a country/type pair."""

    def __init__(
        self,
        country: str,
        form_type: str,
        host_country: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        message = f"No form schema for country={country} form_type={form_type}"
        if host_country:
            message += f" host_country={host_country}"
        super().__init__(message, **kwargs)
        self.country = country
        self.form_type = form_type
        self.host_country = host_country


class ValidationError(ComplianceError):
    """Raised when request validation fails.

    ``errors`` holds one :class:`FieldError` per violated rule so callers can
    point at the offending fields instead of a single global message.
    """

    status_code_default = 400

    def __init__(self, message: str, errors: Optional[list[Any]] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.errors = errors or []

    @property
    def fields(self) -> list[str]:
        return [e.field for e in self.errors if isinstance(e, FieldError)]


class UnresolvedFileReferenceError(ValidationError):
    """Raised when a submission references an object key with no completed upload."""


class ConflictError(ComplianceError):
    """Raised when a request conflicts with the current state of a resource."""

    status_code_default = 409


class InvalidTransitionError(ConflictError):
    """Raised when an application status change is not allowed by its lifecycle."""

    def __init__(self, current: str, requested: str, **kwargs: Any) -> None:
        super().__init__(f"Cannot move application from {current} to {requested}", **kwargs)
        self.current = current
        self.requested = requested


class UploadRejectedError(ComplianceError):
    """Raised when a blob is pushed to an expired, forged or already-used upload URL."""

    status_code_default = 403


class SchemaDefinitionError(ComplianceError):
    """Raised when a curated schema document is malformed."""

    def __init__(self, message: str, source: str = "", **kwargs: Any) -> None:
        full_message = f"{source}: {message}" if source else message
        super().__init__(full_message, **kwargs)
        self.source = source


class APIError(ComplianceError):
    """Raised when an API request fails with an unexpected error."""

    pass
