#!/usr/bin/env python3
"""
Tests for URI template expansion and value extraction.
"""

import unittest

from csvw_rdf.issues import IssueTracker
from csvw_rdf.templates import (
    expand,
    extract,
    has_row_variables,
    resolve_iri,
    resolve_template,
    substitute_specials,
    to_iri,
    variables,
)


class TestExpand(unittest.TestCase):
    """Template expansion"""

    def test_simple_expansion_escapes(self):
        self.assertEqual(expand("http://ex.org/{id}", {"id": "a b"}), "http://ex.org/a%20b")

    def test_reserved_expansion_keeps_slashes(self):
        self.assertEqual(expand("http://ex.org/{+path}", {"path": "x/y"}), "http://ex.org/x/y")

    def test_null_binding_expands_to_nothing(self):
        self.assertEqual(expand("http://ex.org/{id}", {"id": None}), "http://ex.org/")

    def test_unknown_variable_warns(self):
        tracker = IssueTracker()
        self.assertEqual(expand("http://ex.org/{nope}", {}, tracker), "http://ex.org/")
        self.assertEqual(len(tracker.get_warnings()), 1)

    def test_variables_in_order(self):
        self.assertEqual(variables("{a}/{+b}{?c,a}"), ["a", "b", "c"])


class TestExtract(unittest.TestCase):
    """Inverse of expansion for one variable"""

    def test_extract_simple(self):
        self.assertEqual(extract("http://ex.org/person/{id}", "id", "http://ex.org/person/42"), "42")

    def test_extract_unescapes(self):
        self.assertEqual(extract("http://ex.org/{name}", "name", "http://ex.org/a%20b"), "a b")

    def test_extract_between_literals(self):
        self.assertEqual(extract("http://ex.org/{id}.html", "id", "http://ex.org/page.html"), "page")

    def test_extract_fragment_operator(self):
        self.assertEqual(extract("http://ex.org/doc{#section}", "section", "http://ex.org/doc#intro"), "intro")

    def test_extract_strips_angle_brackets(self):
        self.assertEqual(extract("http://ex.org/{id}", "id", "<http://ex.org/7>"), "7")

    def test_mismatch_returns_input_and_warns(self):
        tracker = IssueTracker()
        self.assertEqual(extract("http://ex.org/{id}", "id", "urn:other", tracker), "urn:other")
        self.assertEqual(len(tracker.get_warnings()), 1)

    def test_missing_variable_returns_input(self):
        tracker = IssueTracker()
        self.assertEqual(extract("http://ex.org/{id}", "name", "http://ex.org/1", tracker), "http://ex.org/1")
        self.assertEqual(len(tracker.get_warnings()), 1)

    def test_extract_inverts_expand(self):
        templates = {
            "": "http://ex.org/p/{v}/end",
            "+": "http://ex.org/p/{+v}/end",
            "#": "http://ex.org/p{#v}.end",
            "/": "http://ex.org/p{/v}/end",
            ";": "http://ex.org/p{;v}/end",
            "?": "http://ex.org/p{?v}#end",
        }
        for op, template in templates.items():
            for value in ("42", "x y", "caf\u00e9"):
                with self.subTest(op=op, value=value):
                    iri = expand(template, {"v": value})
                    self.assertNotEqual(iri, template)
                    self.assertEqual(extract(template, "v", iri), value)
        self.assertEqual(extract(templates["+"], "v", expand(templates["+"], {"v": "x/y"})), "x/y")


class TestTemplateHelpers(unittest.TestCase):
    """Column specials, resolution and IRI conversion"""

    def test_substitute_specials_keeps_row_variables(self):
        self.assertEqual(substitute_specials("{#_name}", 2, "age"), "#age")
        self.assertEqual(substitute_specials("x/{_column}/{id}", 3, "c"), "x/3/{id}")

    def test_has_row_variables(self):
        self.assertTrue(has_row_variables("http://ex.org/{id}"))
        self.assertTrue(has_row_variables("http://ex.org/{_row}"))
        self.assertFalse(has_row_variables("http://ex.org/{_name}"))

    def test_resolve_template_against_base(self):
        self.assertEqual(
            resolve_template("people/{id}", "http://ex.org/data/x.csv"),
            "http://ex.org/data/people/{id}",
        )

    def test_resolve_template_fragment(self):
        self.assertEqual(resolve_template("#{id}", "http://ex.org/x.csv"), "http://ex.org/x.csv#{id}")

    def test_resolve_template_absolute_unchanged(self):
        self.assertEqual(resolve_template("http://a.org/{id}", "http://ex.org/x.csv"), "http://a.org/{id}")

    def test_resolve_template_prefixed_name(self):
        self.assertEqual(resolve_template("schema:name", None), "http://schema.org/name")

    def test_resolve_iri(self):
        self.assertEqual(resolve_iri("other.csv", "http://ex.org/a/x.csv"), "http://ex.org/a/other.csv")

    def test_to_iri(self):
        self.assertEqual(to_iri("http://xn--bcher-kva.example/%C3%BC"), "http://bücher.example/ü")
        self.assertEqual(to_iri("http://ex.org/a%20b"), "http://ex.org/a%20b")


if __name__ == "__main__":
    unittest.main()
