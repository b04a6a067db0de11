#!/usr/bin/env python3
"""
Tests for schema inference from RDF.

Tests cover:
- URI template generalization
- one table per rdf:type, relation tables for multi-valued predicates
- untyped subjects, locking, vocabulary labels
"""

import shutil
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from rdflib import Literal, URIRef
from rdflib.namespace import RDF, XSD

from csvw_rdf.inference import (
    SUBJECT_COLUMN,
    UNKNOWN_TYPE_TABLE,
    SchemaInferrer,
    column_prefix,
    common_uri_template,
    is_unknown_type_table,
)
from csvw_rdf.options import ConversionOptions
from csvw_rdf.window import QuadStore, WindowStore


EX = "http://ex.org/"
PERSON = URIRef(EX + "Person")
NAME = URIRef(EX + "name")
KNOWS = URIRef(EX + "knows")


def s(n):
    return URIRef(f"{EX}s{n}")


def infer(quads, options=None):
    store = QuadStore()
    inferrer = SchemaInferrer(store, options)
    return inferrer.infer(WindowStore(store, quads)), inferrer


class TestTemplateHelpers(unittest.TestCase):
    """common_uri_template and naming helpers"""

    def test_identical_iri_unchanged(self):
        self.assertEqual(common_uri_template(EX + "a", EX + "a", "c"), EX + "a")

    def test_differing_suffix_becomes_variable(self):
        self.assertEqual(common_uri_template(EX + "p/1", EX + "p/22", "id"), EX + "p/{id}")

    def test_template_is_stable(self):
        self.assertEqual(common_uri_template(EX + "p/{id}", EX + "p/33", "id"), EX + "p/{id}")

    def test_reserved_characters_use_plus(self):
        self.assertEqual(common_uri_template(EX + "a/x", EX + "b/y/x", "id"), EX + "{+id}/x")

    def test_column_prefix(self):
        self.assertEqual(column_prefix(EX + "first-name"), "first%2Dname")
        self.assertEqual(column_prefix(EX + "ns#_x"), "c_x")
        self.assertEqual(column_prefix(EX), "col")

    def test_unknown_type_table_names(self):
        self.assertTrue(is_unknown_type_table(EX + UNKNOWN_TYPE_TABLE))
        self.assertTrue(is_unknown_type_table("unknown_type_2.csv"))
        self.assertFalse(is_unknown_type_table("Person.csv"))


class TestSchemaInferrer(unittest.TestCase):
    """Tables and columns inferred from quads"""

    def test_one_table_per_type(self):
        quads = [
            (s(1), RDF.type, PERSON, None),
            (s(1), NAME, Literal("Alice"), None),
            (s(2), RDF.type, PERSON, None),
            (s(2), NAME, Literal("Bob"), None),
        ]
        schema, _ = infer(quads)
        self.assertEqual([t.url for t in schema.tables], ["Person.csv"])
        table = schema.tables[0]
        self.assertEqual([c.name for c in table.columns], [SUBJECT_COLUMN, "name1"])
        subject = table.columns[0]
        self.assertEqual(subject.property_url, str(RDF.type))
        self.assertEqual(subject.value_url, str(PERSON))
        self.assertEqual(subject.about_url, EX + "s{subject_id}")
        self.assertEqual(table.columns[1].about_url, subject.about_url)
        self.assertEqual(table.columns[1].datatype, "string")
        self.assertEqual(table.columns[1].property_url, str(NAME))
        self.assertEqual(table.primary_key, [SUBJECT_COLUMN])
        self.assertTrue(table.locked)

    def test_multi_valued_predicate_gets_relation_table(self):
        quads = [
            (s(1), RDF.type, PERSON, None),
            (s(1), KNOWS, s(2), None),
            (s(1), KNOWS, s(3), None),
        ]
        schema, _ = infer(quads)
        self.assertEqual(len(schema), 2)
        rel = schema.tables[1]
        self.assertTrue(rel.url.startswith("Person_knows"))
        self.assertEqual([c.name for c in rel.columns], [SUBJECT_COLUMN, "knows1"])
        self.assertEqual(rel.primary_key, [SUBJECT_COLUMN, "knows1"])
        self.assertEqual(rel.columns[1].datatype, "anyURI")
        self.assertEqual(rel.columns[1].value_url, EX + "s{knows1}")
        self.assertEqual(rel.columns[0].value_url, str(PERSON))

    def test_untyped_subjects(self):
        schema, inferrer = infer([(s(1), NAME, Literal("x"), None)])
        self.assertIs(inferrer.unknown_schema, schema.tables[0])
        self.assertEqual(schema.tables[0].url, UNKNOWN_TYPE_TABLE)
        self.assertEqual([c.name for c in schema.tables[0].columns], [SUBJECT_COLUMN, "name1"])

    def test_typed_literal_datatype(self):
        quads = [(s(1), RDF.type, PERSON, None), (s(1), URIRef(EX + "age"), Literal("3", datatype=XSD.integer), None)]
        schema, _ = infer(quads)
        self.assertEqual(schema.tables[0].columns[1].datatype, "integer")

    def test_structural_quads_ignored(self):
        csvw_row = URIRef("http://www.w3.org/ns/csvw#Row")
        schema, _ = infer([(s(1), RDF.type, csvw_row, None), (s(1), URIRef("http://www.w3.org/ns/csvw#rownum"), Literal(1), None)])
        self.assertEqual(len(schema), 0)

    def test_locked_table_routes_new_predicates(self):
        store = QuadStore()
        inferrer = SchemaInferrer(store)
        first = [(s(1), RDF.type, PERSON, None), (s(1), NAME, Literal("A"), None)]
        store.put_stream(first)
        for quad in first:
            inferrer.add_quad(quad, add_to_unknown=True)
        inferrer.lock_current_schema()
        revision = inferrer.revision

        age = (s(1), URIRef(EX + "age"), Literal("3"), None)
        store.put(age)
        inferrer.add_quad(age, add_to_unknown=True)
        person = inferrer.schema.get_table("Person.csv")
        self.assertEqual(len(person.columns), 2)
        self.assertEqual(len(inferrer.schema), 2)
        self.assertGreater(inferrer.revision, revision)

    def test_lock_template_uris(self):
        store = QuadStore()
        inferrer = SchemaInferrer(store)
        quad = (s(1), RDF.type, PERSON, None)
        store.put(quad)
        inferrer.add_quad(quad)
        inferrer.lock_current_schema(lock_template_uris=True)
        self.assertEqual(inferrer.schema.tables[0].columns[0].about_url, "{+subject_id}")

    def test_snapshot_is_a_copy(self):
        _, inferrer = infer([(s(1), RDF.type, PERSON, None)])
        snap = inferrer.snapshot()
        snap.tables[0].locked = False
        snap.tables[0].add_column("extra")
        self.assertEqual(len(inferrer.schema.tables[0].columns), 1)


class TestVocabularyLabels(unittest.TestCase):
    """Labels fetched from vocabularies"""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        Path(self.test_dir, "vocab.ttl").write_text(
            "@prefix rdfs: <http://www.w3.org/2000/01/rdf-schema#> .\n"
            "@prefix skos: <http://www.w3.org/2004/02/skos/core#> .\n"
            "<http://example.org/vocab.ttl#Person> rdfs:label \"Mens\"@nl, \"Human\"@en .\n"
            "<http://example.org/vocab.ttl#name> skos:prefLabel \"Full name\" .\n",
            encoding="utf-8",
        )
        self.options = ConversionOptions(
            use_vocab_metadata=True,
            path_overrides=[("http://example.org/", self.test_dir + "/")],
        )

    def tearDown(self):
        shutil.rmtree(self.test_dir)

    def test_labels_from_vocabulary(self):
        person = URIRef("http://example.org/vocab.ttl#Person")
        name = URIRef("http://example.org/vocab.ttl#name")
        schema, _ = infer([(s(1), RDF.type, person, None), (s(1), name, Literal("A"), None)], self.options)
        table = schema.tables[0]
        self.assertEqual(table.url, "Human.csv")
        self.assertEqual(table.columns[1].titles, "Full name")

    def test_missing_vocabulary_falls_back(self):
        other = URIRef("http://example.org/missing.ttl#Thing")
        schema, inferrer = infer([(s(1), RDF.type, other, None)], self.options)
        self.assertEqual(schema.tables[0].url, "Thing.csv")
        self.assertEqual(len(inferrer.issue_tracker.get_warnings()), 1)

    def test_malformed_vocabulary_falls_back(self):
        Path(self.test_dir, "broken.ttl").write_text("this is not turtle <", encoding="utf-8")
        other = URIRef("http://example.org/broken.ttl#Thing")
        schema, inferrer = infer([(s(1), RDF.type, other, None)], self.options)
        self.assertEqual(schema.tables[0].url, "Thing.csv")
        self.assertEqual(len(inferrer.issue_tracker.get_warnings()), 1)

    def test_unexpected_errors_propagate(self):
        person = URIRef("http://example.org/vocab.ttl#Person")
        with mock.patch("rdflib.Graph.parse", side_effect=TypeError("boom")):
            with self.assertRaises(TypeError):
                infer([(s(1), RDF.type, person, None)], self.options)


if __name__ == "__main__":
    unittest.main()
