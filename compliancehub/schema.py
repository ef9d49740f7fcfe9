"""
compliancehub - Schema provider.

Form schemas are curated per jurisdiction and compliance type and shipped as
YAML documents. The registry loads them once and answers read-only lookups.

Example:
    from compliancehub.schema import SchemaRegistry

    registry = SchemaRegistry.from_directory("schemas/")
    schema = registry.get("US", "COC")
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Optional, Union

import yaml

from .exceptions import SchemaDefinitionError, SchemaNotFoundError
from .models import ComplianceType, FieldDefinition, FieldType, FormSchema

logger = logging.getLogger("compliancehub.schema")

BUNDLED_SCHEMA_DIR = Path(__file__).parent / "schemas"

SchemaKey = tuple[str, ComplianceType, Optional[str]]


def _normalize_country(country: Optional[str]) -> Optional[str]:
    if country is None:
        return None
    country = country.strip().upper()
    return country or None


def _normalize_form_type(form_type: Union[str, ComplianceType], country: str) -> ComplianceType:
    if isinstance(form_type, ComplianceType):
        return form_type
    try:
        return ComplianceType(str(form_type).strip().upper())
    except ValueError:
        raise SchemaNotFoundError(country, str(form_type))


def _check_acyclic(raw: Any, source: str, stack: Optional[set[int]] = None) -> None:
    """Reject self-referencing YAML aliases before the tree is parsed."""
    stack = stack if stack is not None else set()
    if isinstance(raw, (dict, list)):
        if id(raw) in stack:
            raise SchemaDefinitionError("conditional fields form a cycle", source=source)
        stack.add(id(raw))
        children = raw.values() if isinstance(raw, dict) else raw
        for child in children:
            _check_acyclic(child, source, stack)
        stack.remove(id(raw))


def _check_tree(schema: FormSchema, source: str) -> None:
    seen: set[str] = set()
    for definition in schema.walk():
        if definition.name in seen:
            raise SchemaDefinitionError(
                f"field name '{definition.name}' is used more than once", source=source
            )
        seen.add(definition.name)

    types = {d.name: d.type for d in schema.walk()}
    for definition in schema.walk():
        for rule in definition.extra_validations:
            target = rule.get("after")
            if target is not None and types.get(target) != FieldType.DATE:
                raise SchemaDefinitionError(
                    f"'{definition.name}' must come after '{target}', which is not a date field",
                    source=source,
                )

    def visit(definition: FieldDefinition, repeated: bool) -> None:
        if definition.per_host_country and repeated:
            raise SchemaDefinitionError(
                f"'{definition.name}' repeats per host country inside a repeated subtree",
                source=source,
            )
        for child in definition.conditional_fields:
            if not definition.can_produce(child.parent_value):
                logger.warning(
                    f"{source}: '{child.name}' waits for {child.parent_value!r}, "
                    f"which '{definition.name}' never takes; it will stay inactive"
                )
            visit(child, repeated or definition.per_host_country)

    for top in schema.fields:
        visit(top, False)


def load_schema(data: Any, source: str = "<string>") -> FormSchema:
    """Parse and check one schema document."""
    if not isinstance(data, dict):
        raise SchemaDefinitionError("schema document must be a mapping", source=source)
    _check_acyclic(data, source)
    schema = FormSchema.from_dict(data, source)
    _check_tree(schema, source)
    return schema


class SchemaRegistry:
    """Read-only lookup of form schemas by (country, form type, host country)."""

    def __init__(self, schemas: Iterable[FormSchema] = ()):
        self._schemas: dict[SchemaKey, FormSchema] = {}
        for schema in schemas:
            self.add(schema)

    def add(self, schema: FormSchema) -> None:
        key = (schema.country, schema.form_type, schema.host_country)
        if key in self._schemas:
            raise SchemaDefinitionError(f"duplicate schema for {key}")
        self._schemas[key] = schema

    @classmethod
    def from_directory(cls, path: Union[str, Path]) -> "SchemaRegistry":
        path = Path(path)
        if not path.is_dir():
            raise SchemaDefinitionError(f"schema directory not found: {path}")

        registry = cls()
        for yaml_file in sorted(path.glob("*.yaml")):
            try:
                with open(yaml_file, "r", encoding="utf-8") as f:
                    data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise SchemaDefinitionError(f"Invalid YAML syntax: {e}", source=str(yaml_file))
            registry.add(load_schema(data, str(yaml_file)))

        logger.info(f"Loaded {len(registry)} form schemas from {path}")
        return registry

    @classmethod
    def from_string(cls, yaml_content: str, source_name: str = "<string>") -> "SchemaRegistry":
        """Build a registry from one or more YAML documents in a string."""
        try:
            documents = list(yaml.safe_load_all(yaml_content))
        except yaml.YAMLError as e:
            raise SchemaDefinitionError(f"Invalid YAML syntax: {e}", source=source_name)
        return cls(load_schema(d, source_name) for d in documents if d is not None)

    def get(
        self,
        country: str,
        form_type: Union[str, ComplianceType],
        host_country: Optional[str] = None,
    ) -> FormSchema:
        """Return the schema for a jurisdiction, preferring a host-specific variant."""
        country_code = _normalize_country(country) or ""
        host_code = _normalize_country(host_country)
        kind = _normalize_form_type(form_type, country_code)

        if host_code is not None:
            schema = self._schemas.get((country_code, kind, host_code))
            if schema is not None:
                return schema
        schema = self._schemas.get((country_code, kind, None))
        if schema is None:
            raise SchemaNotFoundError(country_code, kind.value, host_code)
        return schema

    def available(self) -> list[dict[str, Optional[str]]]:
        return [
            {"country": country, "form_type": kind.value, "host_country": host}
            for country, kind, host in sorted(
                self._schemas, key=lambda k: (k[0], k[1].value, k[2] or "")
            )
        ]

    def __len__(self) -> int:
        return len(self._schemas)

    def __contains__(self, key: SchemaKey) -> bool:
        return key in self._schemas


_default_registry: Optional[SchemaRegistry] = None


def default_registry() -> SchemaRegistry:
    """Get or load the registry of schemas bundled with the package."""
    global _default_registry
    if _default_registry is None:
        _default_registry = SchemaRegistry.from_directory(BUNDLED_SCHEMA_DIR)
    return _default_registry
