import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from field_schema import (
    FieldDefinitionError,
    column_for,
    core_column,
    load_field_schema,
    normalize_choices,
    parse_field_definitions,
    reconcile_field_order,
    schema_to_config,
)
from field_types import FieldType
from namespaces import EntityKind


class TestFieldSchema(unittest.TestCase):
    def test_parse_mapping_form(self) -> None:
        defs = parse_field_definitions(
            {
                "shirtSize": {"type": "select", "label": "Shirt size", "required": True, "choices": ["S", " M ", "", "S"]},
                "notes": {"type": "TEXT"},
            }
        )
        self.assertEqual([d.name for d in defs], ["shirtSize", "notes"])
        self.assertIs(defs[0].type, FieldType.SELECT)
        self.assertEqual(defs[0].choices, ("S", "M"))
        self.assertEqual(defs[1].label, "notes")
        self.assertEqual(defs[0].accessor, "dynamicFields.shirtSize")

    def test_collects_every_violation(self) -> None:
        with self.assertRaises(FieldDefinitionError) as ctx:
            parse_field_definitions(
                [
                    {"name": "", "type": "TEXT"},
                    {"name": "a.b", "type": "TEXT"},
                    {"name": "size", "type": "SELECT", "choices": [" "]},
                    {"name": "rating", "type": "STARS"},
                    {"name": "dup", "type": "TEXT"},
                    {"name": "dup", "type": "NUMBER"},
                ]
            )
        codes = [issue["code"] for issue in ctx.exception.issues]
        self.assertEqual(
            codes,
            [
                "FIELD_NAME_REQUIRED",
                "FIELD_NAME_INVALID",
                "FIELD_CHOICES_REQUIRED",
                "FIELD_TYPE_UNKNOWN",
                "FIELD_NAME_DUPLICATE",
            ],
        )

    def test_default_value_is_coerced(self) -> None:
        defs = parse_field_definitions({"fee": {"type": "MONEY", "defaultValue": "1,000"}})
        self.assertEqual(defs[0].default_value, 1000)

    def test_fields_must_be_object_or_list(self) -> None:
        with self.assertRaises(FieldDefinitionError) as ctx:
            parse_field_definitions("nope")
        self.assertEqual(ctx.exception.issues[0]["code"], "FIELDS_INVALID")

    def test_normalize_choices_accepts_lines(self) -> None:
        self.assertEqual(normalize_choices("red\n blue \n\nred"), ("red", "blue"))

    def test_reconcile_field_order(self) -> None:
        order = reconcile_field_order(["a", "b", "c"], ["c", "gone", "a", "c"])
        self.assertEqual(order, ["c", "a", "b"])
        self.assertEqual(reconcile_field_order(["a", "b"], None), ["a", "b"])

    def test_load_schema_applies_order(self) -> None:
        config = {
            "fields": {
                "a": {"type": "TEXT"},
                "b": {"type": "NUMBER"},
                "c": {"type": "DATE"},
            },
            "fieldOrder": ["c", "a", "stale"],
        }
        schema = load_field_schema(config, EntityKind.KID)
        self.assertEqual(schema.names, ["c", "a", "b"])
        self.assertIn("b", schema)
        self.assertEqual(len(schema), 3)
        self.assertEqual(schema_to_config(schema)["fieldOrder"], ["c", "a", "b"])

    def test_bare_fields_accepted(self) -> None:
        schema = load_field_schema([{"name": "x", "type": "TEXT"}], EntityKind.ACCOUNT)
        self.assertEqual(schema.names, ["x"])

    def test_columns(self) -> None:
        schema = load_field_schema(
            {
                "colors": {"type": "MULTI_SELECT", "choices": ["red", "blue"], "header": "Fav colors"},
                "fee": {"type": "MONEY"},
            },
            EntityKind.KID,
        )
        colors, fee = schema.columns()
        self.assertEqual(colors.key, "dynamicFields.colors")
        self.assertEqual(colors.header, "Fav colors")
        self.assertEqual(colors.meta.kind, "multi_select")
        self.assertTrue(colors.is_array)
        self.assertTrue(colors.meta.is_dynamic)
        self.assertEqual([o.value for o in colors.meta.options], ["red", "blue"])
        self.assertTrue(fee.meta.is_money)
        self.assertEqual(fee.meta.options, ())
        self.assertEqual(column_for(schema.get("fee")), fee)
        self.assertEqual(colors.to_dict()["meta"]["options"][0], {"value": "red", "label": "red"})

    def test_core_column(self) -> None:
        column = core_column("linked_parents", "Parents", is_array=True)
        self.assertTrue(column.is_array)
        self.assertFalse(column.meta.is_dynamic)
        self.assertEqual(column.header_candidates(), ["Parents", "linked_parents", "Parents"])


if __name__ == "__main__":
    unittest.main()
