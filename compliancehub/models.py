"""
compliancehub - Data models for compliance schemas, applications and uploads.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from .exceptions import SchemaDefinitionError


class FieldType(str, Enum):
    """Semantic type of a form field."""

    STRING = "string"
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"
    CHOICE = "choice"
    COUNTRY = "country"
    PHONE = "phone"
    EMAIL = "email"
    SIGNATURE = "signature"
    FILE = "file"


class Persona(str, Enum):
    """Who is expected to answer a field."""

    SUBJECT = "subject"
    COUNTERPART = "counterpart"
    ASSUMPTION = "assumption"


class ComplianceType(str, Enum):
    """Category of cross-border work/travel requirement."""

    A1 = "A1"  # single-country social security certificate
    A1_MULTI = "A1_MULTI"  # multi-state certificate
    COC = "COC"  # certificate of coverage
    ETA = "ETA"  # travel authorization
    VISA = "VISA"


class ApplicationStatus(str, Enum):
    """Lifecycle of a filed application."""

    FILED = "FILED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self is not ApplicationStatus.FILED

    def can_transition_to(self, target: "ApplicationStatus") -> bool:
        return target in ALLOWED_TRANSITIONS.get(self, frozenset())


ALLOWED_TRANSITIONS: dict[ApplicationStatus, frozenset] = {
    ApplicationStatus.FILED: frozenset(
        {ApplicationStatus.APPROVED, ApplicationStatus.REJECTED, ApplicationStatus.EXPIRED}
    ),
}


@dataclass(frozen=True)
class Choice:
    label: str
    value: Any

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label, "value": self.value}

    @classmethod
    def from_dict(cls, data: Any) -> "Choice":
        if isinstance(data, dict):
            value = data.get("value")
            return cls(label=str(data.get("label", value)), value=value)
        # Bare scalars are shorthand for label == value
        return cls(label=str(data), value=data)


RULE_KINDS = ("regex", "after", "min_age")


def _parse_rule(rule: dict[str, Any], field_type: "FieldType", path: str) -> dict[str, Any]:
    """Check one ``extra_validations`` entry and return it normalized."""
    kinds = [k for k in RULE_KINDS if k in rule]
    unknown = set(rule) - set(RULE_KINDS) - {"message"}
    if unknown or len(kinds) != 1:
        raise SchemaDefinitionError(
            f"extra_validations entry must hold exactly one of {', '.join(RULE_KINDS)}: {rule!r}",
            source=path,
        )
    kind = kinds[0]
    rule = dict(rule)

    if kind == "regex":
        if not isinstance(rule["regex"], str):
            raise SchemaDefinitionError("regex must be a string", source=path)
        try:
            re.compile(rule["regex"])
        except re.error as e:
            raise SchemaDefinitionError(f"invalid regex {rule['regex']!r}: {e}", source=path) from e
        return rule

    if field_type != FieldType.DATE:
        raise SchemaDefinitionError(f"{kind} only applies to date fields", source=path)
    if kind == "after":
        if not isinstance(rule["after"], str) or not rule["after"]:
            raise SchemaDefinitionError("after must name another field", source=path)
        return rule

    years = rule["min_age"]
    try:
        if isinstance(years, bool):
            raise ValueError(years)
        rule["min_age"] = int(years)
    except (TypeError, ValueError) as e:
        raise SchemaDefinitionError(f"min_age must be an integer, got {years!r}", source=path) from e
    if rule["min_age"] < 0:
        raise SchemaDefinitionError("min_age cannot be negative", source=path)
    return rule


@dataclass
class FieldDefinition:
    """
    One field of a dynamic form schema.

    ``conditional_fields`` form a strict tree: each child becomes active only
    while this field's value equals the child's ``parent_value``.
    """

    name: str
    type: FieldType
    label: str = ""
    group: str = ""
    persona: Persona = Persona.SUBJECT
    required: bool = False
    max_length: Optional[int] = None
    choices: list[Choice] = field(default_factory=list)
    extra_validations: list[dict[str, Any]] = field(default_factory=list)
    conditional_fields: list["FieldDefinition"] = field(default_factory=list)
    parent_value: Any = None
    per_host_country: bool = False

    def domain(self) -> Optional[list[Any]]:
        """Values this field can take, or None when the domain is open."""
        if self.type == FieldType.BOOLEAN:
            return [True, False]
        if self.choices:
            return [c.value for c in self.choices]
        return None

    def can_produce(self, value: Any) -> bool:
        domain = self.domain()
        if domain is None:
            return True
        # bool is an int subclass; keep True from matching 1
        return any(type(v) is type(value) and v == value for v in domain)

    def walk(self):
        """Yield this field and every descendant, depth first."""
        yield self
        for child in self.conditional_fields:
            yield from child.walk()

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "type": self.type.value,
            "label": self.label,
            "group": self.group,
            "persona": self.persona.value,
            "required": self.required,
            "max_length": self.max_length,
            "choices": [c.to_dict() for c in self.choices],
            "extra_validations": list(self.extra_validations),
            "conditional_fields": [c.to_dict() for c in self.conditional_fields],
            "per_host_country": self.per_host_country,
        }
        if self.parent_value is not None:
            result["parent_value"] = self.parent_value
        return result

    @classmethod
    def from_dict(cls, data: Any, path: str = "") -> "FieldDefinition":
        if not isinstance(data, dict):
            raise SchemaDefinitionError("field definition must be a mapping", source=path)
        name = data.get("name")
        if not name or not isinstance(name, str):
            raise SchemaDefinitionError("field is missing a name", source=path)
        path = f"{path}/{name}" if path else name

        try:
            field_type = FieldType(data.get("type", "string"))
            persona = Persona(data.get("persona", "subject"))
        except ValueError as e:
            raise SchemaDefinitionError(str(e), source=path) from e

        max_length = data.get("max_length")
        if max_length is not None and (not isinstance(max_length, int) or max_length <= 0):
            raise SchemaDefinitionError("max_length must be a positive integer", source=path)

        extra = data.get("extra_validations") or []
        if not isinstance(extra, list) or not all(isinstance(r, dict) for r in extra):
            raise SchemaDefinitionError("extra_validations must be a list of mappings", source=path)

        children = data.get("conditional_fields") or []
        if not isinstance(children, list):
            raise SchemaDefinitionError("conditional_fields must be a list", source=path)
        for child in children:
            if isinstance(child, dict) and "parent_value" not in child:
                raise SchemaDefinitionError(
                    "conditional field is missing parent_value",
                    source=f"{path}/{child.get('name', '?')}",
                )

        return cls(
            name=name,
            type=field_type,
            label=data.get("label") or name.replace("_", " ").capitalize(),
            group=data.get("group", ""),
            persona=persona,
            required=bool(data.get("required", False)),
            max_length=max_length,
            choices=[Choice.from_dict(c) for c in data.get("choices") or []],
            extra_validations=[_parse_rule(r, field_type, path) for r in extra],
            conditional_fields=[cls.from_dict(c, path) for c in children],
            parent_value=data.get("parent_value"),
            per_host_country=bool(data.get("per_host_country", False)),
        )


@dataclass
class FormSchema:
    """Ordered top-level fields for one jurisdiction / compliance type pair."""

    country: str
    form_type: ComplianceType
    fields: list[FieldDefinition]
    host_country: Optional[str] = None
    title: str = ""

    def walk(self):
        for top in self.fields:
            yield from top.walk()

    def to_dict(self) -> dict[str, Any]:
        return {
            "country": self.country,
            "form_type": self.form_type.value,
            "host_country": self.host_country,
            "title": self.title,
            "fields": [f.to_dict() for f in self.fields],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], source: str = "") -> "FormSchema":
        try:
            form_type = ComplianceType(str(data.get("form_type", "")).upper())
        except ValueError as e:
            raise SchemaDefinitionError(str(e), source=source) from e
        country = data.get("country")
        if not country:
            raise SchemaDefinitionError("schema is missing a country", source=source)
        fields = data.get("fields")
        if not isinstance(fields, list) or not fields:
            raise SchemaDefinitionError("schema must declare at least one field", source=source)
        host_country = data.get("host_country")
        return cls(
            country=str(country).upper(),
            form_type=form_type,
            host_country=str(host_country).upper() if host_country else None,
            title=data.get("title", ""),
            fields=[FieldDefinition.from_dict(f, source) for f in fields],
        )


@dataclass
class FileReference:
    """A server-issued object key and the window in which it may be uploaded."""

    object_key: str
    original_name: str
    issued_at: datetime
    expires_at: datetime
    uploaded_at: Optional[datetime] = None
    size: Optional[int] = None
    content_type: Optional[str] = None

    @property
    def is_uploaded(self) -> bool:
        return self.uploaded_at is not None and self.uploaded_at <= self.expires_at


@dataclass
class UploadTicket:
    """Result of issuing a pre-signed upload URL."""

    file_name: str
    object_key: str
    pre_signed_url: str
    expires_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_name": self.file_name,
            "object_key": self.object_key,
            "pre_signed_url": self.pre_signed_url,
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UploadTicket":
        return cls(
            file_name=data["file_name"],
            object_key=data["object_key"],
            pre_signed_url=data["pre_signed_url"],
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )


@dataclass
class Application:
    """A filed compliance application as returned by the service."""

    id: str
    home_country: str
    host_countries: list[str]
    compliance_type: ComplianceType
    status: ApplicationStatus
    start_date: date
    expiry_date: date
    fields: dict[str, Any] = field(default_factory=dict)
    uploaded_files: list[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    days_to_expiry: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "home_country": self.home_country,
            "host_countries": self.host_countries,
            "compliance_type": self.compliance_type.value,
            "status": self.status.value,
            "start_date": self.start_date.isoformat(),
            "expiry_date": self.expiry_date.isoformat(),
            "fields": self.fields,
            "uploaded_files": self.uploaded_files,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "days_to_expiry": self.days_to_expiry,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Application":
        return cls(
            id=data["id"],
            home_country=data["home_country"],
            host_countries=list(data.get("host_countries") or []),
            compliance_type=ComplianceType(data["compliance_type"]),
            status=ApplicationStatus(data.get("status", "FILED")),
            start_date=date.fromisoformat(data["start_date"]),
            expiry_date=date.fromisoformat(data["expiry_date"]),
            fields=data.get("fields") or {},
            uploaded_files=list(data.get("uploaded_files") or []),
            created_at=(
                datetime.fromisoformat(data["created_at"])
                if data.get("created_at")
                else None
            ),
            days_to_expiry=data.get("days_to_expiry"),
        )


@dataclass
class Page:
    """One page of a paginated listing."""

    count: int
    results: list[Any]
    next: Optional[str] = None
    previous: Optional[str] = None

    @property
    def has_next(self) -> bool:
        return self.next is not None
