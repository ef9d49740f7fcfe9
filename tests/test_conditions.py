"""
Tests for conditional field evaluation.
"""

from compliancehub.conditions import active_fields, active_keys, field_key
from compliancehub.models import FieldDefinition
from compliancehub.schema import default_registry


def _tree():
    return [
        FieldDefinition.from_dict({"name": "employee_first_name", "required": True}),
        FieldDefinition.from_dict(
            {
                "name": "self_employed",
                "type": "boolean",
                "required": True,
                "conditional_fields": [
                    {"name": "business_name", "parent_value": True, "required": True},
                    {
                        "name": "employer_type",
                        "parent_value": False,
                        "type": "choice",
                        "choices": ["private", "government"],
                        "conditional_fields": [
                            {"name": "agency_name", "parent_value": "government"},
                            {"name": "stale_child", "parent_value": "military"},
                        ],
                    },
                ],
            }
        ),
    ]


class TestActiveFields:
    """Tests for active_fields."""

    def test_no_answers_only_top_level(self):
        assert active_keys(_tree(), {}) == {"employee_first_name", "self_employed"}

    def test_child_activated_by_exact_value(self):
        keys = active_keys(_tree(), {"self_employed": True})
        assert "business_name" in keys
        assert "employer_type" not in keys

    def test_other_branch(self):
        keys = active_keys(_tree(), {"self_employed": False})
        assert "employer_type" in keys
        assert "business_name" not in keys

    def test_no_coercion(self):
        # "true" is not True
        keys = active_keys(_tree(), {"self_employed": "true"})
        assert keys == {"employee_first_name", "self_employed"}

    def test_nested_depth(self):
        keys = active_keys(_tree(), {"self_employed": False, "employer_type": "government"})
        assert "agency_name" in keys

    def test_grandchild_needs_active_parent(self):
        # employer_type answered but inactive because self_employed is True
        keys = active_keys(_tree(), {"self_employed": True, "employer_type": "government"})
        assert "agency_name" not in keys

    def test_stale_child_never_active(self):
        keys = active_keys(_tree(), {"self_employed": False, "employer_type": "military"})
        assert "stale_child" not in keys

    def test_order_follows_schema(self):
        result = active_fields(_tree(), {"self_employed": False, "employer_type": "government"})
        assert [f.key for f in result] == [
            "employee_first_name",
            "self_employed",
            "employer_type",
            "agency_name",
        ]
        assert result[2].parent_key == "self_employed"

    def test_evaluation_is_idempotent(self):
        tree = _tree()
        values = {"self_employed": False, "employer_type": "private"}
        first = active_fields(tree, values)
        second = active_fields(tree, values)
        assert first == second

    def test_does_not_mutate_values(self):
        values = {"self_employed": True}
        active_fields(_tree(), values)
        assert values == {"self_employed": True}


class TestHostCountryExpansion:
    """Tests for per-host-country repetition."""

    def _schema(self):
        return default_registry().get("DE", "A1_MULTI")

    def test_one_copy_per_host_country(self):
        keys = active_keys(self._schema().fields, {}, ["GB", "AT"])
        assert {"host_activity[GB]", "host_activity[AT]"} <= keys
        assert {"host_work_share[GB]", "host_work_share[AT]"} <= keys

    def test_no_host_countries_no_copies(self):
        keys = active_keys(self._schema().fields, {}, [])
        assert not any("[" in k for k in keys)

    def test_copies_answer_independently(self):
        values = {
            "host_activity[GB]": "employed",
            "host_activity[AT]": "self_employed",
            "host_client_registered[AT]": True,
        }
        keys = active_keys(self._schema().fields, values, ["GB", "AT"])
        assert "host_employer_name[GB]" in keys
        assert "host_employer_name[AT]" not in keys
        assert "host_client_registered[AT]" in keys
        assert "host_registration_number[AT]" in keys
        assert "host_client_registered[GB]" not in keys

    def test_union_of_identical_subtrees(self):
        schema = self._schema()
        values = {
            "host_activity[GB]": "self_employed",
            "host_client_registered[GB]": True,
            "host_activity[AT]": "self_employed",
            "host_client_registered[AT]": True,
        }
        both = active_keys(schema.fields, values, ["GB", "AT"])
        gb_only = active_keys(schema.fields, values, ["GB"])
        at_only = active_keys(schema.fields, values, ["AT"])
        assert both == gb_only | at_only

        def suffixed(keys, country):
            return {k.replace(f"[{country}]", "") for k in keys if k.endswith(f"[{country}]")}

        assert suffixed(both, "GB") == suffixed(both, "AT")

    def test_host_country_recorded(self):
        result = active_fields(self._schema().fields, {}, ["gb"])
        repeated = [f for f in result if f.host_country]
        assert {f.host_country for f in repeated} == {"GB"}
        assert repeated[0].sibling_key("employer_name") == "employer_name[GB]"

    def test_repeated_conditional_child(self):
        fields = [
            FieldDefinition.from_dict(
                {
                    "name": "works_abroad",
                    "type": "boolean",
                    "conditional_fields": [
                        {
                            "name": "host_site",
                            "parent_value": True,
                            "per_host_country": True,
                            "conditional_fields": [
                                {"name": "site_address", "parent_value": "branch"}
                            ],
                        }
                    ],
                }
            )
        ]
        values = {"works_abroad": True, "host_site[AT]": "branch"}
        result = active_fields(fields, values, ["GB", "AT"])
        assert [f.key for f in result] == [
            "works_abroad",
            "host_site[GB]",
            "host_site[AT]",
            "site_address[AT]",
        ]
        assert result[1].parent_key == "works_abroad"
        assert result[3].parent_key == "host_site[AT]"

    def test_repeated_conditional_child_inactive_parent(self):
        fields = [
            FieldDefinition.from_dict(
                {
                    "name": "works_abroad",
                    "type": "boolean",
                    "conditional_fields": [
                        {"name": "host_site", "parent_value": True, "per_host_country": True}
                    ],
                }
            )
        ]
        assert active_keys(fields, {"works_abroad": False}, ["GB", "AT"]) == {"works_abroad"}


def test_field_key():
    assert field_key("name") == "name"
    assert field_key("name", "AT") == "name[AT]"
