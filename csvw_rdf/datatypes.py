"""
Datatype codecs: CSV cell text <-> RDF lexical form.

Five families share one shape:

  is_<family>_column(column)                      classifier
  format_<family>(value, column, tracker) -> str  RDF lexical value -> CSV cell
  parse_<family>(value, column, tracker)          CSV cell -> (lexical, ok)

A parser returning ok=False means the cell did not satisfy its datatype; the
caller emits the raw text as a plain string literal.  Problems are always
recorded as warnings, never raised.
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Tuple

from dateutil import parser as dateparser
from dateutil.tz import tzoffset, tzutc

from .model import Datatype
from .vocab import BOOLEAN_TYPE, DATE_TYPES, DURATION_TYPES, NUMERIC_TYPES, local_name


ParseResult = Tuple[str, bool]


def _datatype(column) -> Datatype:
    dt = getattr(column, "datatype", None)
    return dt if dt is not None else Datatype()


def _type_name(column) -> str:
    return local_name(_datatype(column).base_iri)


def _warn(tracker, message: str) -> None:
    if tracker is not None:
        tracker.add_warning(message)


# ------------------------------ Boolean ------------------------------

BOOLEAN_FORMAT = re.compile(r"^[^|]+\|[^|]+$")


def is_boolean_column(column) -> bool:
    return _datatype(column).base_iri == BOOLEAN_TYPE


def _boolean_pattern(dt: Datatype) -> Optional[List[str]]:
    if isinstance(dt.format, str) and BOOLEAN_FORMAT.match(dt.format):
        return dt.format.split("|")
    return None


def format_boolean(value: str, column, tracker=None) -> str:
    pattern = _boolean_pattern(_datatype(column))
    if value in ("true", "1"):
        truth = True
    elif value in ("false", "0"):
        truth = False
    else:
        _warn(tracker, f"Invalid boolean value {value!r}")
        return value
    if pattern:
        return pattern[0] if truth else pattern[1]
    return "true" if truth else "false"


def parse_boolean(value: str, column, tracker=None) -> ParseResult:
    pattern = _boolean_pattern(_datatype(column))
    if pattern:
        if value == pattern[0]:
            return "true", True
        if value == pattern[1]:
            return "false", True
    elif value in ("true", "1"):
        return "true", True
    elif value in ("false", "0"):
        return "false", True
    _warn(tracker, f"Value {value!r} is not a valid boolean")
    return value, False


# ------------------------------ Numeric ------------------------------

_INTEGER = re.compile(r"^[-+]?[0-9]+$")
_FLOATING = re.compile(r"^(\+|-)?([0-9]+(\.[0-9]*)?|\.[0-9]+)([Ee](\+|-)?[0-9]+)?$")

NUMERIC_REGEXES: Dict[str, "re.Pattern[str]"] = {
    "integer": _INTEGER,
    "decimal": re.compile(r"^(\+|-)?([0-9]+(\.[0-9]*)?|\.[0-9]+)$"),
    "long": _INTEGER,
    "int": _INTEGER,
    "short": _INTEGER,
    "byte": _INTEGER,
    "nonNegativeInteger": re.compile(r"^\+?[0-9]+$"),
    "positiveInteger": re.compile(r"^\+?0*[1-9][0-9]*$"),
    "unsignedLong": _INTEGER,
    "unsignedInt": _INTEGER,
    "unsignedShort": _INTEGER,
    "unsignedByte": _INTEGER,
    "double": _FLOATING,
    "float": _FLOATING,
    "nonPositiveInteger": re.compile(r"^(\+?0+|-[0-9]+)$"),
    "negativeInteger": re.compile(r"^-0*[1-9][0-9]*$"),
}

INTEGER_RANGES: Dict[str, Tuple[Optional[int], Optional[int]]] = {
    "long": (-(2 ** 63), 2 ** 63 - 1),
    "int": (-(2 ** 31), 2 ** 31 - 1),
    "short": (-(2 ** 15), 2 ** 15 - 1),
    "byte": (-(2 ** 7), 2 ** 7 - 1),
    "unsignedLong": (0, 2 ** 64 - 1),
    "unsignedInt": (0, 2 ** 32 - 1),
    "unsignedShort": (0, 2 ** 16 - 1),
    "unsignedByte": (0, 2 ** 8 - 1),
    "nonNegativeInteger": (0, None),
    "positiveInteger": (1, None),
    "nonPositiveInteger": (None, 0),
    "negativeInteger": (None, -1),
}

SPECIAL_FLOATS = ("INF", "-INF", "NaN")


@dataclass
class NumberPattern:
    """A parsed LDML number pattern such as `#,##0.00` or `0.###E+00%`."""

    prefix: str = ""
    suffix: str = ""
    min_int: int = 1
    primary_group: int = 0
    secondary_group: int = 0
    min_frac: int = 0
    max_frac: int = 0
    min_exp: int = 0
    exp_plus: bool = False
    scale: int = 0

    @classmethod
    def parse(cls, pattern: str) -> "NumberPattern":
        m = re.match(r"^([^0#,.]*)([0#,]*(?:\.[0#]*)?)((?:E\+?0+)?)(.*)$", pattern)
        if m is None or not m.group(2):
            raise ValueError(f"Invalid number pattern: {pattern!r}")
        prefix, number, exponent, suffix = m.groups()
        int_part, _, frac_part = number.partition(".")
        np = cls(prefix=prefix, suffix=suffix)
        np.min_int = int_part.count("0")
        groups = int_part.split(",")
        if len(groups) > 1:
            np.primary_group = len(groups[-1])
            np.secondary_group = len(groups[-2]) if len(groups) > 2 else np.primary_group
        np.min_frac = frac_part.count("0")
        np.max_frac = len(frac_part)
        if exponent:
            np.exp_plus = "+" in exponent
            np.min_exp = exponent.count("0")
        if "%" in prefix + suffix:
            np.scale = 2
        elif "‰" in prefix + suffix:
            np.scale = 3
        return np

    def accepts(self, text: str, decimal_char: str, group_char: Optional[str]) -> bool:
        mantissa, exp = text, ""
        if "E" in text or "e" in text:
            if not self.min_exp:
                return False
            mantissa, _, exp = re.split(r"([Ee])", text, maxsplit=1)
            if not re.match(r"^[+-]?[0-9]+$", exp):
                return False
        int_part, _, frac_part = mantissa.partition(decimal_char)
        if decimal_char in mantissa and not self.max_frac:
            return False
        if not (self.min_frac <= len(frac_part) <= max(self.max_frac, self.min_frac)):
            return False
        if group_char and group_char in int_part:
            if not self.primary_group:
                return False
            parts = int_part.split(group_char)
            if len(parts[-1]) != self.primary_group:
                return False
            if any(len(p) != self.secondary_group for p in parts[1:-1]):
                return False
            if not 0 < len(parts[0]) <= self.secondary_group:
                return False
            int_part = "".join(parts)
        if not re.match(r"^[0-9]*$", int_part + frac_part):
            return False
        return len(int_part) >= self.min_int

    def render(self, number: Decimal, decimal_char: str, group_char: Optional[str]) -> str:
        negative = number < 0
        number = abs(number).scaleb(self.scale)
        exponent = 0
        if self.min_exp and number != 0:
            exponent = number.adjusted() - (max(self.min_int, 1) - 1)
            number = number.scaleb(-exponent)
        quantum = Decimal(1).scaleb(-self.max_frac)
        number = number.quantize(quantum, rounding=ROUND_HALF_EVEN)
        int_str, _, frac_str = format(number, "f").partition(".")
        frac_str = frac_str.rstrip("0")
        frac_str = frac_str + "0" * (self.min_frac - len(frac_str))
        int_str = int_str.lstrip("0").rjust(self.min_int, "0")
        if not int_str and not frac_str:
            int_str = "0"
        if self.primary_group and group_char:
            int_str = _group_digits(int_str, self.primary_group, self.secondary_group, group_char)
        text = int_str + (decimal_char + frac_str if frac_str else "")
        if self.min_exp:
            sign = "-" if exponent < 0 else ("+" if self.exp_plus else "")
            text += "E" + sign + str(abs(exponent)).rjust(self.min_exp, "0")
        return ("-" if negative else "") + self.prefix + text + self.suffix


def _group_digits(digits: str, primary: int, secondary: int, group_char: str) -> str:
    if len(digits) <= primary:
        return digits
    head, tail = digits[:-primary], digits[-primary:]
    chunks = [tail]
    while len(head) > secondary:
        chunks.insert(0, head[-secondary:])
        head = head[:-secondary]
    if head:
        chunks.insert(0, head)
    return group_char.join(chunks)


def _number_format(dt: Datatype) -> Optional[Dict[str, Any]]:
    fmt = dt.format
    if fmt is None:
        return None
    if isinstance(fmt, str):
        fmt = {"pattern": fmt}
    if not isinstance(fmt, dict):
        return None
    pattern = fmt.get("pattern")
    group_char = fmt.get("groupChar")
    if group_char is None and pattern and "," in pattern:
        group_char = ","
    return {
        "pattern": NumberPattern.parse(pattern) if pattern else None,
        "decimalChar": fmt.get("decimalChar") or ".",
        "groupChar": group_char,
    }


def is_numeric_column(column) -> bool:
    return _datatype(column).base_iri in NUMERIC_TYPES


def _check_numeric_constraints(number: Decimal, dt: Datatype, value: str, tracker) -> bool:
    ok = True
    for bound, test, label in (
        (dt.min_inclusive, lambda b: number >= b, "minimum"),
        (dt.max_inclusive, lambda b: number <= b, "maximum"),
        (dt.min_exclusive, lambda b: number > b, "minExclusive"),
        (dt.max_exclusive, lambda b: number < b, "maxExclusive"),
    ):
        if bound is None:
            continue
        try:
            limit = Decimal(str(bound))
        except InvalidOperation:
            continue
        if not test(limit):
            _warn(tracker, f"Value {value!r} violates {label} {bound}")
            ok = False
    return ok


def _canonical_number(number: Decimal, type_name: str, text: str) -> str:
    if type_name in ("double", "float"):
        return text if _FLOATING.match(text) else repr(float(number))
    if type_name == "decimal":
        result = format(number.normalize(), "f")
        return result if result not in ("-0",) else "0"
    return str(int(number))


def parse_numeric(value: str, column, tracker=None) -> ParseResult:
    dt = _datatype(column)
    type_name = _type_name(column)
    if type_name in ("double", "float") and value in SPECIAL_FLOATS:
        return value, True

    text = value
    scale = 0
    fmt = _number_format(dt)
    if fmt is not None:
        sign = ""
        body = text.strip()
        pattern: Optional[NumberPattern] = fmt["pattern"]
        if pattern is not None:
            if pattern.prefix and body.startswith(pattern.prefix.replace("%", "").replace("‰", "")):
                body = body[len(pattern.prefix.replace("%", "").replace("‰", "")):]
        if body[:1] in ("+", "-"):
            sign, body = body[0], body[1:]
        if body.endswith("%"):
            scale, body = 2, body[:-1]
        elif body.endswith("‰"):
            scale, body = 3, body[:-1]
        if pattern is not None:
            plain_suffix = pattern.suffix.replace("%", "").replace("‰", "")
            if plain_suffix and body.endswith(plain_suffix):
                body = body[: -len(plain_suffix)]
            if not pattern.accepts(body, fmt["decimalChar"], fmt["groupChar"]):
                _warn(tracker, f"Value {value!r} does not match number pattern")
                return value, False
        if fmt["groupChar"]:
            body = body.replace(fmt["groupChar"], "")
        if fmt["decimalChar"] != ".":
            if "." in body:
                _warn(tracker, f"Value {value!r} contains an unexpected '.'")
                return value, False
            body = body.replace(fmt["decimalChar"], ".")
        text = sign + body

    regex = NUMERIC_REGEXES.get(type_name, _FLOATING)
    if scale and type_name not in ("decimal", "double", "float"):
        regex = _FLOATING
    if not regex.match(text):
        _warn(tracker, f"Value {value!r} is not a valid {type_name}")
        return value, False
    number = Decimal(text).scaleb(-scale)
    if scale and type_name not in ("decimal", "double", "float") and number != number.to_integral_value():
        _warn(tracker, f"Value {value!r} is not a valid {type_name}")
        return value, False

    low, high = INTEGER_RANGES.get(type_name, (None, None))
    if (low is not None and number < low) or (high is not None and number > high):
        _warn(tracker, f"Value {value!r} is out of range for {type_name}")
        return value, False
    if not _check_numeric_constraints(number, dt, value, tracker):
        return value, False
    return _canonical_number(number, type_name, text if not scale else format(number, "f")), True


def format_numeric(value: str, column, tracker=None) -> str:
    dt = _datatype(column)
    type_name = _type_name(column)
    if type_name in ("double", "float") and value in SPECIAL_FLOATS:
        return value
    if not NUMERIC_REGEXES.get(type_name, _FLOATING).match(value):
        _warn(tracker, f"Value {value!r} is not a valid {type_name}")
        return value
    number = Decimal(value)
    _check_numeric_constraints(number, dt, value, tracker)
    fmt = _number_format(dt)
    if fmt is None:
        return value
    if fmt["pattern"] is not None:
        return fmt["pattern"].render(number, fmt["decimalChar"], fmt["groupChar"])
    return value.replace(".", fmt["decimalChar"])


# ------------------------------ Date / time ------------------------------

_TZ = r"(Z|(\+|-)((0[0-9]|1[0-3]):[0-5][0-9]|14:00))"
_YEAR = r"-?([1-9][0-9]{3,}|0[0-9]{3})"
_TIME = r"(([01][0-9]|2[0-3]):[0-5][0-9]:[0-5][0-9](\.[0-9]+)?|(24:00:00(\.0+)?))"

DATE_REGEXES: Dict[str, "re.Pattern[str]"] = {
    "date": re.compile(rf"^{_YEAR}-(0[1-9]|1[0-2])-(0[1-9]|[12][0-9]|3[01]){_TZ}?$"),
    "dateTime": re.compile(rf"^{_YEAR}-(0[1-9]|1[0-2])-(0[1-9]|[12][0-9]|3[01])T{_TIME}{_TZ}?$"),
    "dateTimeStamp": re.compile(rf"^{_YEAR}-(0[1-9]|1[0-2])-(0[1-9]|[12][0-9]|3[01])T{_TIME}{_TZ}$"),
    "time": re.compile(rf"^{_TIME}{_TZ}?$"),
    "gDay": re.compile(rf"^---(0[1-9]|[12][0-9]|3[01]){_TZ}?$"),
    "gMonth": re.compile(rf"^--(0[1-9]|1[0-2]){_TZ}?$"),
    "gMonthDay": re.compile(rf"^--(0[1-9]|1[0-2])-(0[1-9]|[12][0-9]|3[01]){_TZ}?$"),
    "gYear": re.compile(rf"^{_YEAR}{_TZ}?$"),
    "gYearMonth": re.compile(rf"^{_YEAR}-(0[1-9]|1[0-2]){_TZ}?$"),
}

_TRAILING_TZ = re.compile(r"[+-]\d{2}:\d{2}$")
_LEADING_YEAR = re.compile(r"^(-?)(\d{4,})-")


def is_datetime_column(column) -> bool:
    return _datatype(column).base_iri in DATE_TYPES


def split_timezone(value: str) -> Tuple[str, Optional[str]]:
    """Split `2020-01-01T10:00:00+02:00` into the local part and `+02:00` (or `Z`)."""
    if value.endswith("Z"):
        return value[:-1], "Z"
    m = _TRAILING_TZ.search(value)
    if m and m.start() > 0:
        return value[: m.start()], m.group(0)
    return value, None


def _tzinfo(tz: Optional[str]):
    if tz is None:
        return None
    if tz == "Z":
        return tzutc()
    sign = -1 if tz[0] == "-" else 1
    digits = tz[1:].replace(":", "")
    hours = int(digits[:2])
    minutes = int(digits[2:4] or 0)
    return tzoffset(None, sign * (hours * 3600 + minutes * 60))


def to_datetime(lexical: str, type_name: str) -> Optional[datetime]:
    """
    Calendar value of an XSD date/time lexical.

    None for gregorian fragments and for years outside 1..9999, which XSD allows
    but datetime cannot hold.
    """
    if type_name not in ("date", "dateTime", "dateTimeStamp", "time"):
        return None
    body, tz = split_timezone(lexical)
    year = _LEADING_YEAR.match(body)
    if year and (year.group(1) or not 1 <= int(year.group(2)) <= 9999):
        return None
    if type_name == "time":
        body = "2000-01-01T" + body
    moment = dateparser.isoparse(body)
    if tz is not None:
        moment = moment.replace(tzinfo=_tzinfo(tz))
    return moment


def _comparable(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=tzutc())


def _check_datetime_constraints(lexical: str, type_name: str, dt: Datatype, tracker) -> bool:
    moment = to_datetime(lexical, type_name)
    if moment is None:
        return True
    ok = True
    for bound, test, label in (
        (dt.min_inclusive, lambda a, b: a >= b, "minimum"),
        (dt.max_inclusive, lambda a, b: a <= b, "maximum"),
        (dt.min_exclusive, lambda a, b: a > b, "minExclusive"),
        (dt.max_exclusive, lambda a, b: a < b, "maxExclusive"),
    ):
        if bound is None:
            continue
        try:
            limit = to_datetime(str(bound), type_name)
        except ValueError:
            continue
        if limit is not None and not test(_comparable(moment), _comparable(limit)):
            _warn(tracker, f"Value {lexical!r} violates {label} {bound}")
            ok = False
    return ok


_UAX35_TOKEN = re.compile(r"yyyy|MM|M|dd|d|HH|H|mm|m|ss|s|S+|XXX|XX|X|xxx|xx|x|'[^']*'|.", re.DOTALL)

_UAX35_FIELDS = {
    "yyyy": r"(?P<year>-?\d{4,})",
    "MM": r"(?P<month>\d{2})",
    "M": r"(?P<month>\d{1,2})",
    "dd": r"(?P<day>\d{2})",
    "d": r"(?P<day>\d{1,2})",
    "HH": r"(?P<hour>\d{2})",
    "H": r"(?P<hour>\d{1,2})",
    "mm": r"(?P<minute>\d{2})",
    "m": r"(?P<minute>\d{1,2})",
    "ss": r"(?P<second>\d{2})",
    "s": r"(?P<second>\d{1,2})",
    "X": r"(?P<tz>Z|[+-]\d{2}(?:\d{2})?)",
    "XX": r"(?P<tz>Z|[+-]\d{4})",
    "XXX": r"(?P<tz>Z|[+-]\d{2}:\d{2})",
    "x": r"(?P<tz>[+-]\d{2}(?:\d{2})?)",
    "xx": r"(?P<tz>[+-]\d{4})",
    "xxx": r"(?P<tz>[+-]\d{2}:\d{2})",
}


def _uax35_tokens(fmt: str) -> List[str]:
    return _UAX35_TOKEN.findall(fmt)


def _uax35_regex(fmt: str) -> "re.Pattern[str]":
    parts = []
    for token in _uax35_tokens(fmt):
        if token in _UAX35_FIELDS:
            parts.append(_UAX35_FIELDS[token])
        elif token.startswith("S"):
            parts.append(rf"(?P<fraction>\d{{1,{len(token)}}})")
        elif token.startswith("'"):
            parts.append(re.escape(token[1:-1]))
        else:
            parts.append(re.escape(token))
    return re.compile("^" + "".join(parts) + "$")


def _normalize_tz(tz: Optional[str]) -> str:
    if not tz:
        return ""
    if tz == "Z":
        return "Z"
    digits = tz[1:].replace(":", "")
    minutes = digits[2:4] or "00"
    if digits[:2] == "00" and minutes == "00":
        return "Z"
    return f"{tz[0]}{digits[:2]}:{minutes}"


def _lexical_from_fields(fields: Dict[str, Optional[str]], type_name: str) -> str:
    """Build a canonical XSD lexical from UAX #35 fields, validating the calendar."""
    tz = _normalize_tz(fields.get("tz"))
    date_part = time_part = ""
    if fields.get("year") is not None:
        year, month, day = int(fields["year"]), int(fields.get("month") or 1), int(fields.get("day") or 1)
        date(year if 0 < year < 10000 else 2000, month, day)
        date_part = f"{'-' if year < 0 else ''}{abs(year):04d}-{month:02d}-{day:02d}"
    if fields.get("hour") is not None:
        hour, minute, second = int(fields["hour"]), int(fields.get("minute") or 0), int(fields.get("second") or 0)
        time(hour, minute, second)
        time_part = f"{hour:02d}:{minute:02d}:{second:02d}"
        if fields.get("fraction"):
            time_part += "." + fields["fraction"]
    if type_name == "date":
        if not date_part:
            raise ValueError("format has no date fields")
        return date_part + tz
    if type_name == "time":
        if not time_part:
            raise ValueError("format has no time fields")
        return time_part + tz
    if not date_part:
        raise ValueError("format has no date fields")
    return f"{date_part}T{time_part or '00:00:00'}{tz}"


def parse_datetime(value: str, column, tracker=None) -> ParseResult:
    dt = _datatype(column)
    type_name = _type_name(column)
    lexical = value
    if isinstance(dt.format, str) and type_name in ("date", "dateTime", "dateTimeStamp", "time"):
        m = _uax35_regex(dt.format).match(value)
        if m is None:
            _warn(tracker, f"Value {value!r} does not match date format {dt.format!r}")
            return value, False
        try:
            lexical = _lexical_from_fields(m.groupdict(), type_name)
        except ValueError as e:
            _warn(tracker, f"Value {value!r} is not a valid {type_name}: {e}")
            return value, False
    regex = DATE_REGEXES.get(type_name)
    if regex is not None and not regex.match(lexical):
        _warn(tracker, f"Value {value!r} is not a valid {type_name}")
        return value, False
    try:
        if not _check_datetime_constraints(lexical, type_name, dt, tracker):
            return value, False
    except ValueError as e:
        _warn(tracker, f"Value {value!r} is not a valid {type_name}: {e}")
        return value, False
    return lexical, True


def _render_uax35(fields: Dict[str, Any], fmt: str) -> str:
    out = []
    for token in _uax35_tokens(fmt):
        if token == "yyyy":
            out.append(str(fields["year"]).rjust(4, "0"))
        elif token in ("MM", "dd", "HH", "mm", "ss"):
            key = {"MM": "month", "dd": "day", "HH": "hour", "mm": "minute", "ss": "second"}[token]
            out.append(f"{fields[key]:02d}")
        elif token in ("M", "d", "H", "m", "s"):
            key = {"M": "month", "d": "day", "H": "hour", "m": "minute", "s": "second"}[token]
            out.append(str(fields[key]))
        elif token.startswith("S"):
            out.append((fields.get("fraction") or "").ljust(len(token), "0")[: len(token)])
        elif token.lower() in ("x", "xx", "xxx"):
            offset = fields.get("offset")
            if offset is None:
                continue
            if offset == 0 and token.startswith("X"):
                out.append("Z")
                continue
            sign = "-" if offset < 0 else "+"
            hours, minutes = divmod(abs(offset) // 60, 60)
            if token.lower() == "x" and minutes == 0:
                out.append(f"{sign}{hours:02d}")
            elif token.lower() == "xxx":
                out.append(f"{sign}{hours:02d}:{minutes:02d}")
            else:
                out.append(f"{sign}{hours:02d}{minutes:02d}")
        elif token.startswith("'"):
            out.append(token[1:-1])
        else:
            out.append(token)
    return "".join(out)


def format_datetime(value: str, column, tracker=None) -> str:
    dt = _datatype(column)
    type_name = _type_name(column)
    regex = DATE_REGEXES.get(type_name)
    if regex is not None and not regex.match(value):
        _warn(tracker, f"Value {value!r} is not a valid {type_name}")
        return value
    try:
        _check_datetime_constraints(value, type_name, dt, tracker)
        if not isinstance(dt.format, str):
            return value
        moment = to_datetime(value, type_name)
    except ValueError as e:
        _warn(tracker, f"Value {value!r} is not a valid {type_name}: {e}")
        return value
    if moment is None:
        return value
    body, tz = split_timezone(value)
    fraction = body.rpartition(".")[2] if "." in body.rpartition(":")[2] else ""
    offset = None
    if tz is not None:
        delta = moment.utcoffset() or timedelta(0)
        offset = int(delta.total_seconds() // 60)
    fields = {
        "year": moment.year, "month": moment.month, "day": moment.day,
        "hour": moment.hour, "minute": moment.minute, "second": moment.second,
        "fraction": fraction, "offset": offset,
    }
    return _render_uax35(fields, dt.format)


# ------------------------------ Duration ------------------------------

DURATION_REGEXES: Dict[str, "re.Pattern[str]"] = {
    "duration": re.compile(r"^-?P([0-9]+Y)?([0-9]+M)?([0-9]+D)?(T([0-9]+H)?([0-9]+M)?([0-9]+(\.[0-9]+)?S)?)?$"),
    "dayTimeDuration": re.compile(r"^-?P([0-9]+D)?(T([0-9]+H)?([0-9]+M)?([0-9]+(\.[0-9]+)?S)?)?$"),
    "yearMonthDuration": re.compile(r"^-?P([0-9]+Y)?([0-9]+M)?$"),
}

_DURATION_PARTS = re.compile(
    r"^(-)?P(?:([0-9]+)Y)?(?:([0-9]+)M)?(?:([0-9]+)D)?"
    r"(?:T(?:([0-9]+)H)?(?:([0-9]+)M)?(?:([0-9]+(?:\.[0-9]+)?)S)?)?$"
)


@dataclass(frozen=True)
class Duration:
    """An xsd:duration with signed components."""

    years: int = 0
    months: int = 0
    days: int = 0
    hours: int = 0
    minutes: int = 0
    seconds: Decimal = Decimal(0)

    def __neg__(self) -> "Duration":
        return Duration(-self.years, -self.months, -self.days, -self.hours, -self.minutes, -self.seconds)

    def approx_seconds(self) -> Decimal:
        """Length in seconds, counting a year as 365 days and a month as 30."""
        days = self.years * 365 + self.months * 30 + self.days
        return Decimal(((days * 24 + self.hours) * 60 + self.minutes) * 60) + self.seconds


def parse_duration(text: str) -> Duration:
    m = _DURATION_PARTS.match(text)
    if m is None or text.rstrip("T").endswith("P") or text.endswith("T"):
        raise ValueError(f"Invalid duration: {text!r}")
    sign = -1 if m.group(1) else 1
    years, months, days, hours, minutes = (int(g or 0) * sign for g in m.groups()[1:6])
    seconds = Decimal(m.group(7) or 0) * sign
    return Duration(years, months, days, hours, minutes, seconds)


def is_duration_column(column) -> bool:
    return _datatype(column).base_iri in DURATION_TYPES


def _check_duration(value: str, column, tracker) -> bool:
    dt = _datatype(column)
    type_name = _type_name(column)
    if not DURATION_REGEXES.get(type_name, DURATION_REGEXES["duration"]).match(value):
        _warn(tracker, f"Value {value!r} is not a valid {type_name}")
        return False
    if isinstance(dt.format, str) and not re.fullmatch(dt.format, value):
        _warn(tracker, f"Value {value!r} does not match format {dt.format!r}")
        return False
    try:
        length = parse_duration(value).approx_seconds()
    except ValueError as e:
        _warn(tracker, str(e))
        return False
    ok = True
    for bound, test, label in (
        (dt.min_inclusive, lambda a, b: a >= b, "minimum"),
        (dt.max_inclusive, lambda a, b: a <= b, "maximum"),
        (dt.min_exclusive, lambda a, b: a > b, "minExclusive"),
        (dt.max_exclusive, lambda a, b: a < b, "maxExclusive"),
    ):
        if bound is None:
            continue
        try:
            limit = parse_duration(str(bound)).approx_seconds()
        except ValueError:
            continue
        if not test(length, limit):
            _warn(tracker, f"Value {value!r} violates {label} {bound}")
            ok = False
    return ok


def parse_duration_value(value: str, column, tracker=None) -> ParseResult:
    return value, _check_duration(value, column, tracker)


def format_duration(value: str, column, tracker=None) -> str:
    _check_duration(value, column, tracker)
    return value


# ------------------------------ Other ------------------------------

_HEX = re.compile(r"^([0-9A-Fa-f]{2})*$")
_NO_FORMAT_TYPES = ("json", "xml", "html", "JSON", "XMLLiteral", "HTML")


def _value_length(value: str, type_name: str) -> Optional[int]:
    if type_name == "hexBinary":
        return len(value) // 2 if _HEX.match(value) else None
    if type_name == "base64Binary":
        try:
            return len(base64.b64decode(value, validate=True))
        except (binascii.Error, ValueError):
            return None
    return len(value)


def _check_other(value: str, column, tracker) -> bool:
    dt = _datatype(column)
    type_name = _type_name(column)
    ok = True
    length = _value_length(value, type_name)
    if length is None:
        _warn(tracker, f"Value {value!r} is not a valid {type_name}")
        return False
    if dt.length is not None and length != dt.length:
        _warn(tracker, f"Value {value!r} does not have length {dt.length}")
        ok = False
    if dt.min_length is not None and length < dt.min_length:
        _warn(tracker, f"Value {value!r} is shorter than minLength {dt.min_length}")
        ok = False
    if dt.max_length is not None and length > dt.max_length:
        _warn(tracker, f"Value {value!r} is longer than maxLength {dt.max_length}")
        ok = False
    if isinstance(dt.format, str) and type_name not in _NO_FORMAT_TYPES and dt.base not in ("json", "xml", "html"):
        try:
            if not re.fullmatch(dt.format, value):
                _warn(tracker, f"Value {value!r} does not match format {dt.format!r}")
                ok = False
        except re.error as e:
            _warn(tracker, f"Invalid format {dt.format!r}: {e}")
    return ok


def parse_other(value: str, column, tracker=None) -> ParseResult:
    return value, _check_other(value, column, tracker)


def format_other(value: str, column, tracker=None) -> str:
    _check_other(value, column, tracker)
    return value


# ------------------------------ Dispatch ------------------------------

Formatter = Callable[[str, Any, Any], str]
Parser = Callable[[str, Any, Any], ParseResult]

CODECS: List[Tuple[Callable[[Any], bool], Formatter, Parser]] = [
    (is_boolean_column, format_boolean, parse_boolean),
    (is_numeric_column, format_numeric, parse_numeric),
    (is_datetime_column, format_datetime, parse_datetime),
    (is_duration_column, format_duration, parse_duration_value),
]


def codec_for(column) -> Tuple[Formatter, Parser]:
    """Pick the (formatter, parser) pair for a column once, by its datatype."""
    for test, formatter, parser in CODECS:
        if test(column):
            return formatter, parser
    return format_other, parse_other
