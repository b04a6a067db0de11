#!/usr/bin/env python3
"""
Tests for dialect-driven CSV reading.
"""

import io
import unittest

from csvw_rdf.csv_reader import open_text, read_rows
from csvw_rdf.errors import StructuralError
from csvw_rdf.issues import IssueTracker
from csvw_rdf.model import Dialect


def rows(text, **dialect):
    return list(read_rows(io.StringIO(text, newline=""), Dialect(**dialect), IssueTracker()))


class TestReadRows(unittest.TestCase):
    """Row splitting and source row numbers"""

    def test_basic_rows(self):
        self.assertEqual(rows("a,b\r\n1,2\n"), [(1, ["a", "b"]), (2, ["1", "2"])])

    def test_skip_rows_keeps_source_numbers(self):
        self.assertEqual(rows("junk\na\n1\n", skip_rows=1), [(2, ["a"]), (3, ["1"])])

    def test_comment_rows_skipped(self):
        self.assertEqual(rows("a\n# note\n1\n"), [(1, ["a"]), (3, ["1"])])

    def test_blank_rows(self):
        self.assertEqual(rows("a\n\n1\n", skip_blank_rows=True), [(1, ["a"]), (3, ["1"])])

    def test_trim(self):
        self.assertEqual(rows(" x , y \n"), [(1, ["x", "y"])])
        self.assertEqual(rows(" x \n", trim=False), [(1, [" x "])])
        self.assertEqual(rows(" x \n", trim="start"), [(1, ["x "])])

    def test_delimiter_and_skip_columns(self):
        self.assertEqual(rows("k;a;b\n", delimiter=";", skip_columns=1), [(1, ["a", "b"])])

    def test_quoted_newline(self):
        self.assertEqual(rows('"a\nb",c\n'), [(1, ["a\nb", "c"])])

    def test_custom_line_terminator(self):
        self.assertEqual(rows("a,b|1,2|", line_terminators=["|"]), [(1, ["a", "b"]), (2, ["1", "2"])])

    def test_malformed_quote_is_fatal(self):
        with self.assertRaises(StructuralError):
            rows('"a"b,c\n')


class TestOpenText(unittest.TestCase):
    """Encoding handling"""

    def test_utf8_bom_removed(self):
        text = open_text(io.BytesIO(b"\xef\xbb\xbfid\n1\n"), Dialect(), IssueTracker())
        self.assertEqual(text.read(), "id\n1\n")

    def test_declared_encoding(self):
        data = "naïve\n".encode("latin-1")
        text = open_text(io.BytesIO(data), Dialect(encoding="latin-1"), IssueTracker())
        self.assertEqual(text.read(), "naïve\n")


if __name__ == "__main__":
    unittest.main()
