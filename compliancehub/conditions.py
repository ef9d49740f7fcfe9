"""
compliancehub - Conditional field evaluation.

Works out which fields of a schema are currently active for a (possibly
partial) set of answers. A conditional child is active only while its parent
is active and the parent's value equals the child's ``parent_value``.

Fields flagged ``per_host_country`` are instantiated once per host country,
at whatever depth of the tree they sit. Each copy, and every descendant of
it, is keyed ``"<name>[<CC>]"`` so the copies answer independently.
"""

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence

from .models import FieldDefinition


@dataclass(frozen=True)
class ActiveField:
    """A field instantiation that is visible for the current answers."""

    key: str
    definition: FieldDefinition
    host_country: Optional[str] = None
    parent_key: Optional[str] = None

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def required(self) -> bool:
        return self.definition.required

    def sibling_key(self, name: str) -> str:
        """Key of another field in the same host-country instantiation."""
        return field_key(name, self.host_country)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name,
            "type": self.definition.type.value,
            "required": self.required,
            "host_country": self.host_country,
            "parent_key": self.parent_key,
        }


def field_key(name: str, host_country: Optional[str] = None) -> str:
    if host_country is None:
        return name
    return f"{name}[{host_country}]"


def _expand(
    definition: FieldDefinition,
    values: Mapping[str, Any],
    host_country: Optional[str],
    parent_key: Optional[str],
    host_countries: Sequence[str],
    out: list[ActiveField],
) -> None:
    if definition.per_host_country and host_country is None:
        for country in host_countries:
            _expand(definition, values, country.upper(), parent_key, host_countries, out)
        return

    key = field_key(definition.name, host_country)
    out.append(ActiveField(key, definition, host_country, parent_key))

    if key not in values:
        return
    value = values[key]
    for child in definition.conditional_fields:
        if not definition.can_produce(child.parent_value):
            continue
        if type(value) is type(child.parent_value) and value == child.parent_value:
            _expand(child, values, host_country, key, host_countries, out)


def active_fields(
    fields: Iterable[FieldDefinition],
    values: Mapping[str, Any],
    host_countries: Sequence[str] = (),
) -> list[ActiveField]:
    """Return the active field instantiations, in schema order."""
    result: list[ActiveField] = []
    for definition in fields:
        _expand(definition, values, None, None, host_countries, result)
    return result


def active_keys(
    fields: Iterable[FieldDefinition],
    values: Mapping[str, Any],
    host_countries: Sequence[str] = (),
) -> set[str]:
    return {f.key for f in active_fields(fields, values, host_countries)}
