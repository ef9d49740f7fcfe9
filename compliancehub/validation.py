"""
compliancehub - Input validation.

Two layers live here:

* small ``validate_*`` helpers that raise :class:`InputValidationError` on the
  first problem, used by the client before making API calls, and
* :class:`FormValidator`, which checks a whole submission against its active
  field set and reports every violated rule per field.
"""

import base64
import binascii
import re
from datetime import date
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from .conditions import ActiveField
from .exceptions import FieldError, UnresolvedFileReferenceError
from .exceptions import ValidationError as ComplianceValidationError
from .models import ComplianceType, FieldType


class InputValidationError(ComplianceValidationError):
    """Raised when input validation fails before making an API request."""

    def __init__(self, message: str, field: str = None, value: Any = None):
        errors = [FieldError(field, "invalid", message)] if field else []
        super().__init__(message, errors=errors)
        self.field = field
        self.value = value


ValidationError = InputValidationError

COUNTRY_CODE_PATTERN = re.compile(r"^[A-Z]{2}$")
PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{6,14}$")
PHONE_SEPARATORS = re.compile(r"[\s\-().]")
EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
OBJECT_KEY_PATTERN = re.compile(r"^[0-9a-f]{32}$")
DATA_URL_PATTERN = re.compile(r"^data:image/[a-z0-9.+-]+;base64,", re.IGNORECASE)
UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return isinstance(value, (list, dict)) and not value


def parse_date(value: Any) -> Optional[date]:
    """Parse an ISO ``YYYY-MM-DD`` date, returning None when it is not one."""
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        return None


def normalize_phone(value: str) -> str:
    return PHONE_SEPARATORS.sub("", value)


def is_phone(value: Any) -> bool:
    return isinstance(value, str) and bool(PHONE_PATTERN.match(normalize_phone(value)))


def is_country_code(value: Any) -> bool:
    return isinstance(value, str) and bool(COUNTRY_CODE_PATTERN.match(value))


def is_object_key(value: Any) -> bool:
    return isinstance(value, str) and bool(OBJECT_KEY_PATTERN.match(value))


def is_base64_payload(value: Any) -> bool:
    if not isinstance(value, str) or not value:
        return False
    payload = DATA_URL_PATTERN.sub("", value, count=1)
    if not payload:
        return False
    try:
        base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        return False
    return True


def years_before(today: date, years: int) -> date:
    """The same calendar day ``years`` earlier, with Feb 29 falling back to Feb 28."""
    try:
        return today.replace(year=today.year - years)
    except ValueError:
        return today.replace(year=today.year - years, day=28)


def validate_required(value: Any, field_name: str) -> None:
    """Validate that a required field is not None or empty."""
    if value is None:
        raise ValidationError(f"{field_name} is required", field=field_name)
    if isinstance(value, str) and not value.strip():
        raise ValidationError(f"{field_name} cannot be empty", field=field_name, value=value)


def validate_string_length(
    value: str,
    field_name: str,
    min_length: int = None,
    max_length: int = None
) -> None:
    """Validate string length constraints."""
    if value is None:
        return

    if min_length is not None and len(value) < min_length:
        raise ValidationError(
            f"{field_name} must be at least {min_length} characters",
            field=field_name,
            value=value
        )

    if max_length is not None and len(value) > max_length:
        raise ValidationError(
            f"{field_name} must be at most {max_length} characters",
            field=field_name,
            value=value
        )


def validate_uuid(value: str, field_name: str) -> None:
    """Validate UUID format."""
    if value is None:
        return

    if not UUID_PATTERN.match(value):
        raise ValidationError(
            f"{field_name} must be a valid UUID",
            field=field_name,
            value=value
        )


def validate_email(value: str, field_name: str) -> None:
    """Validate email format."""
    if value is None:
        return

    if not EMAIL_PATTERN.match(value):
        raise ValidationError(
            f"{field_name} must be a valid email address",
            field=field_name,
            value=value
        )


def validate_in_list(value: Any, field_name: str, allowed_values: list) -> None:
    """Validate that a value is in a list of allowed values."""
    if value is None:
        return

    if value not in allowed_values:
        raise ValidationError(
            f"{field_name} must be one of: {', '.join(str(v) for v in allowed_values)}",
            field=field_name,
            value=value
        )


def validate_list(value: Any, field_name: str, item_type: type = None) -> None:
    """Validate that a value is a list with optional item type checking."""
    if value is None:
        return

    if not isinstance(value, list):
        raise ValidationError(
            f"{field_name} must be a list",
            field=field_name,
            value=value
        )

    if item_type is not None:
        for i, item in enumerate(value):
            if not isinstance(item, item_type):
                raise ValidationError(
                    f"{field_name}[{i}] must be of type {item_type.__name__}",
                    field=f"{field_name}[{i}]",
                    value=item
                )


def validate_date(value: Any, field_name: str) -> None:
    """Validate an ISO date (YYYY-MM-DD)."""
    if value is None:
        return

    if parse_date(value) is None:
        raise ValidationError(
            f"{field_name} must be a date (YYYY-MM-DD)",
            field=field_name,
            value=value
        )


def validate_country_code(value: str, field_name: str) -> None:
    """Validate an ISO 3166-1 alpha-2 country code."""
    if value is None:
        return

    if not is_country_code(value):
        raise ValidationError(
            f"{field_name} must be a two-letter country code",
            field=field_name,
            value=value
        )


def validate_file_names(file_names: list[str]) -> None:
    """Validate parameters for upload URL issuance."""
    validate_required(file_names, "file_names")
    validate_list(file_names, "file_names", str)
    if not file_names:
        raise ValidationError("file_names cannot be empty", field="file_names")
    for i, name in enumerate(file_names):
        validate_required(name, f"file_names[{i}]")
        validate_string_length(name, f"file_names[{i}]", max_length=255)


def validate_application_create(
    home_country: str,
    host_countries: list[str],
    compliance_type: str,
    start_date: Any,
    expiry_date: Any,
) -> None:
    """Validate parameters for application submission."""
    validate_required(home_country, "home_country")
    validate_country_code(home_country, "home_country")
    validate_required(compliance_type, "compliance_type")
    validate_in_list(
        str(getattr(compliance_type, "value", compliance_type)).strip().upper(),
        "compliance_type",
        [t.value for t in ComplianceType],
    )
    validate_list(host_countries, "host_countries", str)
    if not host_countries:
        raise ValidationError("host_countries cannot be empty", field="host_countries")
    for i, country in enumerate(host_countries):
        validate_country_code(country, f"host_countries[{i}]")
    validate_required(start_date, "start_date")
    validate_date(start_date, "start_date")
    validate_required(expiry_date, "expiry_date")
    validate_date(expiry_date, "expiry_date")
    if parse_date(expiry_date) <= parse_date(start_date):
        raise ValidationError(
            "expiry_date must be after start_date",
            field="expiry_date",
            value=expiry_date
        )


class FormValidator:
    """
    Checks submitted answers against the active fields of a schema.

    Every problem is collected as a :class:`FieldError`; nothing is raised
    until the whole submission has been inspected.

    Args:
        file_exists: Callable telling whether an object key has a completed
            upload. Used for ``file`` fields and signature references.
        today: Override for "now" in age checks.
    """

    def __init__(
        self,
        file_exists: Optional[Callable[[str], bool]] = None,
        today: Optional[date] = None,
    ):
        self.file_exists = file_exists or (lambda key: False)
        self._today = today

    @property
    def today(self) -> date:
        return self._today or date.today()

    def check(self, active: Sequence[ActiveField], values: Mapping[str, Any]) -> list[FieldError]:
        """Return every violated rule; an empty list means the answers are valid."""
        errors: list[FieldError] = []
        by_key = {f.key: f for f in active}

        for key in values:
            if key not in by_key:
                errors.append(FieldError(key, "unknown_field", f"'{key}' is not an active field"))

        for item in active:
            value = values.get(item.key)
            if _is_empty(value):
                if item.required:
                    errors.append(
                        FieldError(item.key, "required", f"{item.definition.label} is required")
                    )
                continue
            error = self._check_type(item, value)
            if error is not None:
                errors.append(error)
                continue
            errors.extend(self._check_extra(item, value, values, by_key))
        return errors

    def validate(self, active: Sequence[ActiveField], values: Mapping[str, Any]) -> None:
        errors = self.check(active, values)
        raise_for_errors(errors)

    def check_application(
        self,
        home_country: str,
        host_countries: Sequence[str],
        start_date: Any,
        expiry_date: Any,
        uploaded_files: Iterable[str] = (),
    ) -> list[FieldError]:
        """Check the envelope of an application, outside its dynamic fields."""
        errors: list[FieldError] = []
        if not is_country_code(home_country):
            errors.append(
                FieldError("home_country", "invalid_country", "home_country must be a two-letter country code")
            )
        if not host_countries:
            errors.append(FieldError("host_countries", "required", "At least one host country is required"))
        for i, country in enumerate(host_countries):
            if not is_country_code(country):
                errors.append(
                    FieldError(f"host_countries[{i}]", "invalid_country", f"'{country}' is not a country code")
                )
        if len(set(host_countries)) != len(host_countries):
            errors.append(FieldError("host_countries", "duplicate", "Host countries must be unique"))

        start, expiry = parse_date(start_date), parse_date(expiry_date)
        if start is None:
            errors.append(FieldError("start_date", "invalid_date", "start_date must be a date (YYYY-MM-DD)"))
        if expiry is None:
            errors.append(FieldError("expiry_date", "invalid_date", "expiry_date must be a date (YYYY-MM-DD)"))
        if start is not None and expiry is not None and expiry <= start:
            errors.append(FieldError("expiry_date", "date_order", "expiry_date must be after start_date"))

        for key in uploaded_files:
            if not is_object_key(key) or not self.file_exists(key):
                errors.append(
                    FieldError("uploaded_files", "unresolved_file", f"No completed upload for '{key}'")
                )
        return errors

    def _check_type(self, item: ActiveField, value: Any) -> Optional[FieldError]:
        definition = item.definition
        label = definition.label
        kind = definition.type

        if kind in (FieldType.STRING, FieldType.TEXT):
            if not isinstance(value, str):
                return FieldError(item.key, "invalid_type", f"{label} must be a string")
            if definition.max_length is not None and len(value) > definition.max_length:
                return FieldError(
                    item.key, "max_length", f"{label} must be at most {definition.max_length} characters"
                )
            return None

        if kind == FieldType.NUMBER:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return FieldError(item.key, "invalid_type", f"{label} must be a number")
            return None

        if kind == FieldType.BOOLEAN:
            if not isinstance(value, bool):
                return FieldError(item.key, "invalid_type", f"{label} must be true or false")
            return None

        if kind == FieldType.DATE:
            if parse_date(value) is None:
                return FieldError(item.key, "invalid_date", f"{label} must be a date (YYYY-MM-DD)")
            return None

        if kind == FieldType.CHOICE:
            if not definition.can_produce(value):
                allowed = ", ".join(str(c.value) for c in definition.choices)
                return FieldError(item.key, "invalid_choice", f"{label} must be one of: {allowed}")
            return None

        if kind == FieldType.COUNTRY:
            if not is_country_code(value):
                return FieldError(item.key, "invalid_country", f"{label} must be a two-letter country code")
            return None

        if kind == FieldType.PHONE:
            if not is_phone(value):
                return FieldError(
                    item.key, "invalid_phone", f"{label} must be a phone number in international format"
                )
            return None

        if kind == FieldType.EMAIL:
            if not isinstance(value, str) or not EMAIL_PATTERN.match(value):
                return FieldError(item.key, "invalid_email", f"{label} must be a valid email address")
            return None

        if kind == FieldType.FILE:
            if not is_object_key(value) or not self.file_exists(value):
                return FieldError(item.key, "unresolved_file", f"No completed upload for {label}")
            return None

        if kind == FieldType.SIGNATURE:
            # 32 hex characters read as an object key and as base64 alike
            if is_object_key(value) and self.file_exists(value):
                return None
            if is_base64_payload(value):
                return None
            return FieldError(
                item.key, "invalid_signature", f"{label} must be a base64 image or an uploaded file"
            )

        return FieldError(item.key, "invalid_type", f"Unsupported field type: {kind}")

    def _check_extra(
        self,
        item: ActiveField,
        value: Any,
        values: Mapping[str, Any],
        active: Mapping[str, ActiveField],
    ) -> list[FieldError]:
        errors: list[FieldError] = []
        label = item.definition.label
        for rule in item.definition.extra_validations:
            if "regex" in rule:
                if not isinstance(value, str) or re.fullmatch(rule["regex"], value) is None:
                    errors.append(
                        FieldError(item.key, "pattern", rule.get("message") or f"{label} has an invalid format")
                    )
            elif "after" in rule:
                other_key = item.sibling_key(rule["after"])
                if other_key not in active:
                    # a repeated field may be ordered against a top-level one
                    other_key = rule["after"]
                this, other = parse_date(value), parse_date(values.get(other_key))
                if this is not None and other is not None and this <= other:
                    errors.append(
                        FieldError(
                            item.key,
                            "date_order",
                            rule.get("message") or f"{label} must be after {other_key}",
                        )
                    )
            elif "min_age" in rule:
                born = parse_date(value)
                years = int(rule["min_age"])
                if born is not None and born > years_before(self.today, years):
                    errors.append(
                        FieldError(
                            item.key,
                            "min_age",
                            rule.get("message") or f"{label} must be at least {years} years ago",
                        )
                    )
        return errors


def raise_for_errors(errors: list[FieldError]) -> None:
    """Raise the matching validation error for a list of field errors."""
    if not errors:
        return
    if all(e.code == "unresolved_file" for e in errors):
        raise UnresolvedFileReferenceError(
            "One or more referenced files were never uploaded", errors=errors
        )
    raise ComplianceValidationError("Validation failed", errors=errors)
