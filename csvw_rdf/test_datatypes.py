#!/usr/bin/env python3
"""
Tests for the datatype codecs.

Tests cover:
- boolean, numeric, date/time, duration and other (string/binary) families
- format patterns in both directions
- constraint violations reported as warnings, never raised
"""

import unittest
from decimal import Decimal

from csvw_rdf.datatypes import (
    codec_for,
    format_boolean,
    format_datetime,
    format_numeric,
    parse_boolean,
    parse_datetime,
    parse_duration,
    parse_duration_value,
    parse_numeric,
    parse_other,
)
from csvw_rdf.issues import IssueTracker
from csvw_rdf.model import Column, Datatype


def column(base="string", **props):
    return Column(name="c", inherited={"datatype": Datatype(base=base, **props)})


class TestBoolean(unittest.TestCase):
    """Boolean codec"""

    def test_default_lexicals(self):
        self.assertEqual(parse_boolean("1", column("boolean")), ("true", True))
        self.assertEqual(parse_boolean("false", column("boolean")), ("false", True))

    def test_format_pattern(self):
        col = column("boolean", format="yes|no")
        self.assertEqual(parse_boolean("yes", col), ("true", True))
        self.assertEqual(format_boolean("false", col), "no")

    def test_invalid_value_warns(self):
        tracker = IssueTracker()
        self.assertEqual(parse_boolean("maybe", column("boolean"), tracker), ("maybe", False))
        self.assertEqual(len(tracker.get_warnings()), 1)


class TestNumeric(unittest.TestCase):
    """Numeric codec"""

    def test_integer_canonical(self):
        self.assertEqual(parse_numeric("+012", column("integer")), ("12", True))

    def test_decimal_canonical(self):
        self.assertEqual(parse_numeric("1.50", column("decimal")), ("1.5", True))

    def test_grouped_pattern(self):
        col = column("decimal", format={"pattern": "#,##0.00"})
        self.assertEqual(parse_numeric("1,234.50", col), ("1234.5", True))
        self.assertEqual(format_numeric("1234.5", col), "1,234.50")

    def test_decimal_char(self):
        col = column("decimal", format={"decimalChar": ","})
        self.assertEqual(parse_numeric("3,5", col), ("3.5", True))

    def test_out_of_range(self):
        tracker = IssueTracker()
        self.assertEqual(parse_numeric("200", column("byte"), tracker), ("200", False))
        self.assertTrue(tracker.get_warnings())

    def test_min_inclusive(self):
        tracker = IssueTracker()
        self.assertEqual(parse_numeric("3", column("integer", min_inclusive="5"), tracker), ("3", False))
        self.assertIn("minimum", tracker.get_warnings()[0].message)

    def test_special_floats(self):
        self.assertEqual(parse_numeric("INF", column("double")), ("INF", True))

    def test_not_a_number(self):
        self.assertEqual(parse_numeric("abc", column("integer")), ("abc", False))


class TestDateTime(unittest.TestCase):
    """Date/time codec"""

    def test_format_pattern_both_ways(self):
        col = column("date", format="dd/MM/yyyy")
        self.assertEqual(parse_datetime("31/12/2020", col), ("2020-12-31", True))
        self.assertEqual(format_datetime("2020-12-31", col), "31/12/2020")

    def test_years_outside_datetime_range(self):
        tracker = IssueTracker()
        self.assertEqual(parse_datetime("0000-01-01", column("date"), tracker), ("0000-01-01", True))
        self.assertEqual(parse_datetime("-0044-03-15", column("date"), tracker), ("-0044-03-15", True))
        self.assertEqual(parse_datetime("12021-06-01T00:00:00", column("dateTime"), tracker), ("12021-06-01T00:00:00", True))
        self.assertEqual(tracker.get_warnings(), [])

    def test_invalid_calendar_date(self):
        tracker = IssueTracker()
        self.assertEqual(parse_datetime("31/02/2020", column("date", format="dd/MM/yyyy"), tracker), ("31/02/2020", False))
        self.assertTrue(tracker.get_warnings())

    def test_xsd_lexical_with_timezone(self):
        value = "2020-01-01T10:00:00+02:00"
        self.assertEqual(parse_datetime(value, column("dateTime")), (value, True))

    def test_format_time_of_datetime(self):
        self.assertEqual(format_datetime("2020-01-01T10:30:00Z", column("dateTime", format="HH:mm")), "10:30")

    def test_bounds(self):
        tracker = IssueTracker()
        col = column("date", max_inclusive="2000-01-01")
        self.assertEqual(parse_datetime("2001-01-01", col, tracker), ("2001-01-01", False))


class TestDuration(unittest.TestCase):
    """Duration parsing"""

    def test_sign_symmetry(self):
        self.assertEqual(parse_duration("-P1Y2M3DT4H5M6.5S"), -parse_duration("P1Y2M3DT4H5M6.5S"))

    def test_components(self):
        d = parse_duration("PT1H30M")
        self.assertEqual((d.hours, d.minutes), (1, 30))
        self.assertEqual(d.approx_seconds(), Decimal(5400))

    def test_empty_duration_rejected(self):
        for text in ("P", "PT", "P1DT"):
            with self.assertRaises(ValueError):
                parse_duration(text)

    def test_subtype_checked(self):
        tracker = IssueTracker()
        self.assertEqual(parse_duration_value("P1Y", column("dayTimeDuration"), tracker), ("P1Y", False))
        self.assertEqual(parse_duration_value("P2D", column("dayTimeDuration")), ("P2D", True))


class TestOther(unittest.TestCase):
    """String and binary values"""

    def test_hex_binary(self):
        self.assertTrue(parse_other("0FB7", column("hexBinary"))[1])
        self.assertFalse(parse_other("0FB", column("hexBinary"))[1])

    def test_base64_length(self):
        self.assertTrue(parse_other("aGVsbG8=", column("base64Binary", length=5))[1])

    def test_string_length_and_format(self):
        tracker = IssueTracker()
        self.assertFalse(parse_other("abcd", column("string", max_length=3), tracker)[1])
        self.assertFalse(parse_other("abc", column("string", format="[0-9]+"), tracker)[1])
        self.assertEqual(len(tracker.get_warnings()), 2)

    def test_codec_dispatch(self):
        self.assertIs(codec_for(column("boolean"))[1], parse_boolean)
        self.assertIs(codec_for(column("string"))[1], parse_other)
        self.assertIs(codec_for(column("dateTime"))[0], format_datetime)


if __name__ == "__main__":
    unittest.main()
