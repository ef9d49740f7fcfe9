"""
compliancehub - Dynamic compliance forms, validation and application filing.

Serves country specific form schemas with conditional fields, validates
submissions against them and files applications that reference documents
uploaded through pre-signed URLs.
"""

from .client import AsyncComplianceClient, ComplianceClient
from .conditions import ActiveField, active_fields, active_keys
from .exceptions import (
    APIError,
    AuthenticationError,
    AuthorizationError,
    ComplianceError,
    ConflictError,
    FieldError,
    InvalidTransitionError,
    NotFoundError,
    SchemaDefinitionError,
    SchemaNotFoundError,
    UnresolvedFileReferenceError,
    UploadRejectedError,
    ValidationError,
)
from .models import (
    Application,
    ApplicationStatus,
    Choice,
    ComplianceType,
    FieldDefinition,
    FieldType,
    FileReference,
    FormSchema,
    Page,
    Persona,
    UploadTicket,
)
from .schema import SchemaRegistry, default_registry
from .validation import FormValidator, InputValidationError

__version__ = "0.1.0"

__all__ = [
    # Clients
    "ComplianceClient",
    "AsyncComplianceClient",
    # Evaluation and validation
    "ActiveField",
    "active_fields",
    "active_keys",
    "FormValidator",
    "SchemaRegistry",
    "default_registry",
    # Models
    "Application",
    "ApplicationStatus",
    "Choice",
    "ComplianceType",
    "FieldDefinition",
    "FieldType",
    "FileReference",
    "FormSchema",
    "Page",
    "Persona",
    "UploadTicket",
    # Exceptions
    "ComplianceError",
    "APIError",
    "AuthenticationError",
    "AuthorizationError",
    "ConflictError",
    "FieldError",
    "InputValidationError",
    "InvalidTransitionError",
    "NotFoundError",
    "SchemaDefinitionError",
    "SchemaNotFoundError",
    "UnresolvedFileReferenceError",
    "UploadRejectedError",
    "ValidationError",
]
