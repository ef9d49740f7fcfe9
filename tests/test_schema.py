"""
Tests for the schema registry and the bundled schemas.
"""

import logging

import pytest

from compliancehub.exceptions import SchemaDefinitionError, SchemaNotFoundError
from compliancehub.models import ComplianceType, FieldType
from compliancehub.schema import SchemaRegistry, default_registry, load_schema

SIMPLE = """
country: FR
form_type: A1
fields:
  - name: employee_first_name
    type: string
    required: true
"""

HOST_SPECIFIC = """
country: FR
form_type: A1
host_country: BE
fields:
  - name: employee_first_name
    type: string
    required: true
  - name: limosa_reference
    type: string
    required: true
"""


class TestSchemaRegistry:
    """Tests for SchemaRegistry lookups."""

    def test_get(self):
        registry = SchemaRegistry.from_string(SIMPLE)
        schema = registry.get("FR", "A1")
        assert schema.country == "FR"
        assert schema.form_type == ComplianceType.A1
        assert schema.fields[0].name == "employee_first_name"

    def test_lookup_is_case_insensitive(self):
        registry = SchemaRegistry.from_string(SIMPLE)
        assert registry.get("fr", "a1") is registry.get("FR", ComplianceType.A1)

    def test_host_specific_variant_preferred(self):
        registry = SchemaRegistry.from_string(SIMPLE + "\n---\n" + HOST_SPECIFIC)
        schema = registry.get("FR", "A1", host_country="BE")
        assert schema.host_country == "BE"
        assert [f.name for f in schema.fields][-1] == "limosa_reference"

    def test_falls_back_to_generic_schema(self):
        registry = SchemaRegistry.from_string(SIMPLE + "\n---\n" + HOST_SPECIFIC)
        schema = registry.get("FR", "A1", host_country="IT")
        assert schema.host_country is None

    def test_unknown_pair_raises_not_found(self):
        registry = SchemaRegistry.from_string(SIMPLE)
        with pytest.raises(SchemaNotFoundError) as exc:
            registry.get("FR", "VISA")
        assert exc.value.status_code == 404
        assert exc.value.country == "FR"

    def test_unknown_form_type_raises_not_found(self):
        registry = SchemaRegistry.from_string(SIMPLE)
        with pytest.raises(SchemaNotFoundError):
            registry.get("FR", "NOT_A_TYPE")

    def test_duplicate_schema_rejected(self):
        with pytest.raises(SchemaDefinitionError):
            SchemaRegistry.from_string(SIMPLE + "\n---\n" + SIMPLE)

    def test_available(self):
        registry = SchemaRegistry.from_string(SIMPLE + "\n---\n" + HOST_SPECIFIC)
        assert registry.available() == [
            {"country": "FR", "form_type": "A1", "host_country": None},
            {"country": "FR", "form_type": "A1", "host_country": "BE"},
        ]

    def test_invalid_yaml(self):
        with pytest.raises(SchemaDefinitionError) as exc:
            SchemaRegistry.from_string("country: [unclosed")
        assert "Invalid YAML" in str(exc.value)

    def test_from_directory(self, tmp_path):
        (tmp_path / "fr_a1.yaml").write_text(SIMPLE)
        registry = SchemaRegistry.from_directory(tmp_path)
        assert len(registry) == 1
        assert ("FR", ComplianceType.A1, None) in registry

    def test_missing_directory(self, tmp_path):
        with pytest.raises(SchemaDefinitionError):
            SchemaRegistry.from_directory(tmp_path / "nope")


class TestSchemaTreeChecks:
    """Tests for the strict-tree invariants checked at load time."""

    def test_duplicate_names_rejected(self):
        data = {
            "country": "FR",
            "form_type": "A1",
            "fields": [
                {
                    "name": "flag",
                    "type": "boolean",
                    "conditional_fields": [{"name": "flag", "parent_value": True}],
                }
            ],
        }
        with pytest.raises(SchemaDefinitionError) as exc:
            load_schema(data)
        assert "more than once" in str(exc.value)

    def test_recursive_alias_rejected(self):
        node = {"name": "flag", "type": "boolean", "parent_value": True}
        node["conditional_fields"] = [node]
        data = {"country": "FR", "form_type": "A1", "fields": [node]}
        with pytest.raises(SchemaDefinitionError) as exc:
            load_schema(data)
        assert "cycle" in str(exc.value)

    def test_nested_repetition_rejected(self):
        data = {
            "country": "FR",
            "form_type": "A1_MULTI",
            "fields": [
                {
                    "name": "activity",
                    "type": "boolean",
                    "per_host_country": True,
                    "conditional_fields": [
                        {"name": "inner", "parent_value": True, "per_host_country": True}
                    ],
                }
            ],
        }
        with pytest.raises(SchemaDefinitionError):
            load_schema(data)

    def test_stale_parent_value_logged(self, caplog):
        data = {
            "country": "FR",
            "form_type": "A1",
            "fields": [
                {
                    "name": "purpose",
                    "type": "choice",
                    "choices": ["meetings"],
                    "conditional_fields": [{"name": "old_child", "parent_value": "tourism"}],
                }
            ],
        }
        with caplog.at_level(logging.WARNING, logger="compliancehub.schema"):
            schema = load_schema(data, "fr.yaml")
        assert schema.fields[0].conditional_fields[0].name == "old_child"
        assert "old_child" in caplog.text


def _with_rules(rules, field_type="date", extra_fields=()):
    return {
        "country": "FR",
        "form_type": "A1",
        "fields": [
            {"name": "start_date", "type": "date"},
            {"name": "nickname", "type": "string"},
            {"name": "checked", "type": field_type, "extra_validations": rules},
            *extra_fields,
        ],
    }


class TestExtraValidationChecks:
    """Tests for extra_validations rules checked at load time."""

    def test_valid_rules_load(self):
        schema = load_schema(
            _with_rules([{"after": "start_date"}, {"min_age": "18", "message": "Too young"}])
        )
        rules = schema.fields[2].extra_validations
        assert rules[0] == {"after": "start_date"}
        assert rules[1] == {"min_age": 18, "message": "Too young"}

    def test_invalid_regex_rejected(self):
        with pytest.raises(SchemaDefinitionError) as exc:
            load_schema(_with_rules([{"regex": "[A-Z"}], field_type="string"))
        assert "invalid regex" in str(exc.value)
        assert exc.value.source.endswith("/checked")

    @pytest.mark.parametrize("years", ["eighteen", None, True, -1])
    def test_bad_min_age_rejected(self, years):
        with pytest.raises(SchemaDefinitionError):
            load_schema(_with_rules([{"min_age": years}]))

    def test_unknown_rule_kind_rejected(self):
        with pytest.raises(SchemaDefinitionError):
            load_schema(_with_rules([{"before": "start_date"}]))

    def test_rule_with_two_kinds_rejected(self):
        with pytest.raises(SchemaDefinitionError):
            load_schema(_with_rules([{"after": "start_date", "min_age": 18}]))

    def test_date_rules_need_a_date_field(self):
        with pytest.raises(SchemaDefinitionError) as exc:
            load_schema(_with_rules([{"min_age": 18}], field_type="string"))
        assert "date fields" in str(exc.value)

    def test_after_must_name_an_existing_field(self):
        with pytest.raises(SchemaDefinitionError) as exc:
            load_schema(_with_rules([{"after": "end_of_time"}]))
        assert "end_of_time" in str(exc.value)

    def test_after_must_name_a_date_field(self):
        with pytest.raises(SchemaDefinitionError):
            load_schema(_with_rules([{"after": "nickname"}]))


class TestBundledSchemas:
    """Tests for the schemas shipped with the package."""

    def test_all_bundled_schemas_load(self):
        registry = default_registry()
        keys = {(f["country"], f["form_type"], f["host_country"]) for f in registry.available()}
        assert ("US", "COC", None) in keys
        assert ("DE", "A1", "AT") in keys
        assert ("DE", "A1_MULTI", None) in keys

    def test_us_coc_first_name(self):
        schema = default_registry().get("US", "COC")
        first = next(f for f in schema.fields if f.name == "employee_first_name")
        assert first.type == FieldType.STRING
        assert first.required is True

    def test_multi_state_schema_repeats_host_block(self):
        schema = default_registry().get("DE", "A1_MULTI")
        repeated = [f.name for f in schema.fields if f.per_host_country]
        assert repeated == ["host_work_share", "host_activity"]
