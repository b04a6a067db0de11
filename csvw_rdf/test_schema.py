#!/usr/bin/env python3
"""
Tests for the editable table group schema.
"""

import unittest

from csvw_rdf.errors import SchemaError
from csvw_rdf.schema import ColumnSchema, TableGroupSchema, TableSchema


def people_and_pets():
    group = TableGroupSchema()
    people = group.add_table("people.csv", "id", "name")
    people.add_primary_key("id")
    pets = group.add_table("pets.csv", "pet_id", "owner")
    pets.add_primary_key("pet_id")
    pets.add_foreign_key(["owner"], "people.csv", ["id"])
    return group, people, pets


class TestColumnSchema(unittest.TestCase):
    """Column property handling"""

    def test_update_rejects_unknown_property(self):
        with self.assertRaises(SchemaError):
            ColumnSchema("a").update(colour="red")

    def test_to_descriptor_skips_unset(self):
        col = ColumnSchema("a", titles="A", property_url="http://ex.org/a")
        self.assertEqual(
            col.to_descriptor(),
            {"name": "a", "titles": "A", "datatype": "anyAtomicType", "propertyUrl": "http://ex.org/a"},
        )

    def test_clone_is_independent(self):
        col = ColumnSchema("a", titles=["A"])
        clone = col.clone()
        clone.titles.append("B")
        self.assertEqual(col.titles, ["A"])


class TestTableSchema(unittest.TestCase):
    """Single table edits"""

    def test_duplicate_column_rejected(self):
        table = TableSchema("t.csv", "a")
        with self.assertRaises(SchemaError):
            table.add_column("a")

    def test_merge_column_widens_datatype(self):
        table = TableSchema("t.csv")
        table.merge_column("a", datatype="integer", titles="A")
        col = table.merge_column("a", datatype="string", titles="Other")
        self.assertEqual(col.datatype, "anyAtomicType")
        self.assertEqual(col.titles, "A")
        self.assertEqual(len(table.columns), 1)

    def test_remove_primary_key_column_rejected(self):
        table = TableSchema("t.csv", "id")
        table.add_primary_key("id")
        with self.assertRaises(SchemaError):
            table.remove_column("id")

    def test_remove_column_drops_foreign_keys(self):
        _, _, pets = people_and_pets()
        pets.remove_column("owner")
        self.assertEqual(pets.foreign_keys, [])

    def test_rename_column_updates_keys(self):
        _, _, pets = people_and_pets()
        pets.rename_column("pet_id", "pid")
        pets.rename_column("owner", "owner_id")
        self.assertEqual(pets.primary_key, ["pid"])
        self.assertEqual(pets.foreign_keys[0]["columnReference"], ["owner_id"])

    def test_rename_to_existing_rejected(self):
        table = TableSchema("t.csv", "a", "b")
        with self.assertRaises(SchemaError):
            table.rename_column("a", "b")

    def test_primary_key_edits(self):
        table = TableSchema("t.csv", "a")
        with self.assertRaises(SchemaError):
            table.add_primary_key("missing")
        table.add_primary_key("a")
        with self.assertRaises(SchemaError):
            table.add_primary_key("a")
        table.remove_primary_key("a")
        with self.assertRaises(SchemaError):
            table.remove_primary_key("a")

    def test_foreign_key_validation(self):
        table = TableSchema("t.csv", "a")
        with self.assertRaises(SchemaError):
            table.add_foreign_key(["a"], "u.csv", ["x", "y"])
        with self.assertRaises(SchemaError):
            table.add_foreign_key(["missing"], "u.csv", ["x"])
        table.add_foreign_key(["a"], "u.csv", ["x"])
        with self.assertRaises(SchemaError):
            table.add_foreign_key(["a"], "u.csv", ["x"])
        table.remove_foreign_key(["a"])
        with self.assertRaises(SchemaError):
            table.remove_foreign_key(["a"])

    def test_locked_table_rejects_edits(self):
        table = TableSchema("t.csv", "a")
        table.locked = True
        for edit in (
            lambda: table.add_column("b"),
            lambda: table.merge_column("a", titles="A"),
            lambda: table.rename_column("a", "c"),
            lambda: table.add_primary_key("a"),
        ):
            with self.assertRaises(SchemaError):
                edit()

    def test_to_descriptor(self):
        _, _, pets = people_and_pets()
        desc = pets.to_descriptor()
        self.assertEqual(desc["url"], "pets.csv")
        self.assertEqual(desc["tableSchema"]["primaryKey"], ["pet_id"])
        self.assertEqual(
            desc["tableSchema"]["foreignKeys"],
            [{"columnReference": ["owner"], "reference": {"resource": "people.csv", "columnReference": ["id"]}}],
        )


class TestTableGroupSchema(unittest.TestCase):
    """Edits that span tables"""

    def test_duplicate_table_rejected(self):
        group = TableGroupSchema()
        group.add_table("a.csv")
        with self.assertRaises(SchemaError):
            group.add_table("a.csv")

    def test_rename_table_rewrites_references(self):
        group, _, pets = people_and_pets()
        group.rename_table("people.csv", "persons.csv")
        self.assertIsNotNone(group.get_table("persons.csv"))
        self.assertEqual(pets.foreign_keys[0]["reference"]["resource"], "persons.csv")

    def test_rename_table_checks_referencing_locks(self):
        group, _, pets = people_and_pets()
        pets.locked = True
        with self.assertRaises(SchemaError):
            group.rename_table("people.csv", "persons.csv")
        self.assertIsNotNone(group.get_table("people.csv"))

    def test_remove_table_drops_references(self):
        group, _, pets = people_and_pets()
        group.remove_table("people.csv")
        self.assertEqual(len(group), 1)
        self.assertEqual(pets.foreign_keys, [])

    def test_remove_only_table_rejected(self):
        group = TableGroupSchema()
        group.add_table("a.csv")
        with self.assertRaises(SchemaError):
            group.remove_table("a.csv")

    def test_rename_table_column_updates_remote_references(self):
        group, people, pets = people_and_pets()
        group.rename_table_column("people.csv", "id", "person_id")
        self.assertEqual(people.primary_key, ["person_id"])
        self.assertEqual(pets.foreign_keys[0]["reference"]["columnReference"], ["person_id"])

    def test_remove_table_column_drops_remote_references(self):
        group, people, pets = people_and_pets()
        people.remove_primary_key("id")
        group.remove_table_column("people.csv", "id")
        self.assertEqual(pets.foreign_keys, [])

    def test_move_table_column_copies_primary_key(self):
        group, people, _ = people_and_pets()
        names = group.add_table("names.csv")
        group.move_table_column("people.csv", "name", "names.csv")
        self.assertEqual([c.name for c in people.columns], ["id"])
        self.assertEqual([c.name for c in names.columns], ["id", "name"])
        self.assertEqual(names.primary_key, ["id"])

    def test_move_primary_key_column_rejected(self):
        group, _, _ = people_and_pets()
        group.add_table("other.csv")
        with self.assertRaises(SchemaError):
            group.move_table_column("people.csv", "id", "other.csv")

    def test_lock_and_clone(self):
        group, _, _ = people_and_pets()
        group.lock()
        clone = group.clone()
        self.assertTrue(all(t.locked for t in clone.tables))
        clone.tables[0].locked = False
        clone.tables[0].add_column("extra")
        self.assertIsNone(group.tables[0].get_column("extra"))

    def test_to_descriptor_has_context(self):
        group, _, _ = people_and_pets()
        desc = group.to_descriptor()
        self.assertEqual(desc["@context"], "http://www.w3.org/ns/csvw")
        self.assertEqual([t["url"] for t in desc["tables"]], ["people.csv", "pets.csv"])


if __name__ == "__main__":
    unittest.main()
