#!/usr/bin/env python3
"""
Tests for descriptor validation: lenient fixes are warnings, structural
problems are fatal.
"""

import unittest

from csvw_rdf.errors import StructuralError
from csvw_rdf.issues import IssueTracker
from csvw_rdf.validation import (
    ValidationContext,
    validate_column,
    validate_datatype,
    validate_dialect,
    validate_schema,
    validate_table_group,
)


def context(**kwargs):
    return ValidationContext(tracker=IssueTracker(), **kwargs)


class TestTableGroup(unittest.TestCase):
    """Table group level checks"""

    def test_unknown_key_removed_with_warning(self):
        ctx = context()
        group = {"tables": [{"url": "a.csv", "foo": 1}]}
        validate_table_group(group, ctx)
        self.assertNotIn("foo", group["tables"][0])
        self.assertEqual(len(ctx.tracker.get_warnings()), 1)
        self.assertIn("foo", ctx.tracker.get_warnings()[0].message)

    def test_common_properties_kept(self):
        ctx = context()
        group = {"tables": [{"url": "a.csv", "dc:title": "A"}]}
        validate_table_group(group, ctx)
        self.assertEqual(group["tables"][0]["dc:title"], "A")
        self.assertEqual(ctx.tracker.issues, [])

    def test_empty_tables_is_one_fatal_error(self):
        ctx = context()
        with self.assertRaises(StructuralError):
            validate_table_group({"tables": []}, ctx)
        self.assertEqual(len(ctx.tracker.get_errors()), 1)

    def test_table_without_url_is_fatal(self):
        with self.assertRaises(StructuralError):
            validate_table_group({"tables": [{"tableSchema": {}}]}, context())

    def test_blank_node_id_is_fatal(self):
        with self.assertRaises(StructuralError):
            validate_table_group({"@id": "_:g", "tables": [{"url": "a.csv"}]}, context())

    def test_foreign_key_to_missing_table_is_fatal(self):
        group = {
            "tables": [{
                "url": "a.csv",
                "tableSchema": {
                    "columns": [{"name": "x"}],
                    "foreignKeys": [{"columnReference": "x", "reference": {"resource": "b.csv", "columnReference": "y"}}],
                },
            }]
        }
        with self.assertRaises(StructuralError):
            validate_table_group(group, context(base="http://ex.org/"))

    def test_foreign_key_to_sibling_table(self):
        ctx = context(base="http://ex.org/")
        group = {
            "tables": [
                {"url": "a.csv", "tableSchema": {
                    "columns": [{"name": "x"}],
                    "foreignKeys": [{"columnReference": "x", "reference": {"resource": "b.csv", "columnReference": "y"}}],
                }},
                {"url": "b.csv", "tableSchema": {"columns": [{"name": "y"}]}},
            ]
        }
        validate_table_group(group, ctx)
        self.assertFalse(ctx.tracker.has_errors())


class TestSchemaAndColumns(unittest.TestCase):
    """Schema and column checks"""

    def test_duplicate_column_name_is_fatal(self):
        with self.assertRaises(StructuralError):
            validate_schema({"columns": [{"name": "a"}, {"name": "a"}]}, context())

    def test_invalid_column_name_dropped(self):
        ctx = context()
        column = {"name": "-bad"}
        validate_column(column, 0, ctx)
        self.assertNotIn("name", column)
        self.assertEqual(len(ctx.tracker.get_warnings()), 1)

    def test_titles_normalized_with_language(self):
        column = {"titles": "Name"}
        validate_column(column, 0, context(language="en"))
        self.assertEqual(column["titles"], {"en": ["Name"]})

    def test_column_after_virtual_is_error(self):
        ctx = context()
        validate_schema({"columns": [{"name": "a", "virtual": True}, {"name": "b"}]}, ctx)
        self.assertEqual(len(ctx.tracker.get_errors()), 1)

    def test_primary_key_unknown_column_removed(self):
        ctx = context()
        schema = {"columns": [{"name": "a"}], "primaryKey": "b"}
        validate_schema(schema, ctx)
        self.assertNotIn("primaryKey", schema)
        self.assertTrue(ctx.tracker.has_errors())

    def test_invalid_inherited_values_ignored(self):
        ctx = context()
        column = {"name": "a", "required": "yes", "lang": "not a tag!"}
        validate_column(column, 0, ctx)
        self.assertNotIn("required", column)
        self.assertNotIn("lang", column)
        self.assertEqual(len(ctx.tracker.get_warnings()), 2)


class TestDatatypeAndDialect(unittest.TestCase):
    """Datatype and dialect normalization"""

    def test_string_datatype_expanded(self):
        self.assertEqual(validate_datatype("integer", context()), {"base": "integer"})

    def test_unknown_datatype_becomes_string(self):
        ctx = context()
        self.assertEqual(validate_datatype("bogus", ctx)["base"], "string")
        self.assertTrue(ctx.tracker.get_warnings())

    def test_minimum_alias(self):
        dt = validate_datatype({"base": "integer", "minimum": 1}, context())
        self.assertEqual(dt["minInclusive"], 1)
        self.assertNotIn("minimum", dt)

    def test_length_on_numeric_is_error(self):
        ctx = context()
        dt = validate_datatype({"base": "integer", "length": 3}, ctx)
        self.assertNotIn("length", dt)
        self.assertTrue(ctx.tracker.has_errors())

    def test_invalid_boolean_format_dropped(self):
        ctx = context()
        dt = validate_datatype({"base": "boolean", "format": "yes"}, ctx)
        self.assertNotIn("format", dt)

    def test_number_format_string_becomes_object(self):
        dt = validate_datatype({"base": "decimal", "format": "#,##0.00"}, context())
        self.assertEqual(dt["format"], {"pattern": "#,##0.00"})

    def test_dialect_bad_values_ignored(self):
        ctx = context()
        dialect = validate_dialect({"delimiter": 5, "encoding": "no-such-codec", "lineTerminators": "\n"}, ctx)
        self.assertNotIn("delimiter", dialect)
        self.assertNotIn("encoding", dialect)
        self.assertEqual(dialect["lineTerminators"], ["\n"])
        self.assertEqual(len(ctx.tracker.get_warnings()), 2)


if __name__ == "__main__":
    unittest.main()
