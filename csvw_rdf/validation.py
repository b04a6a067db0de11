"""
Lenient validation of raw CSVW descriptor dictionaries.

Validation works in place on the parsed JSON.  Bad values are removed or
replaced with a safe default and reported as warnings; only structural
problems (no tables, no table url, blank node ids, wrong @type, dangling
foreign key targets) are fatal.
"""

from __future__ import annotations

import codecs
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urljoin

from language_tags import tags

from .datatypes import BOOLEAN_FORMAT, DURATION_REGEXES, NumberPattern, _uax35_regex
from .issues import IssueTracker
from .model import INHERITED_PROPERTIES
from .vocab import BOOLEAN_TYPE, DATATYPE_IRIS, DATE_TYPES, NUMERIC_TYPES


COLUMN_NAME = re.compile(r"^([A-Za-z0-9]|%[0-9A-Fa-f]{2})([A-Za-z0-9_.]|%[0-9A-Fa-f]{2})*$")
NUMBER_PATTERN = re.compile(r"^[0#,.eE+%‰-]+$")

TABLE_GROUP_KEYS = (
    "tables", "dialect", "notes", "tableDirection", "tableSchema",
    "transformations", "@id", "@type", "@context",
) + INHERITED_PROPERTIES
TABLE_KEYS = (
    "url", "dialect", "notes", "suppressOutput", "tableDirection", "tableSchema",
    "transformations", "@id", "@type", "@context",
) + INHERITED_PROPERTIES
SCHEMA_KEYS = ("columns", "foreignKeys", "notes", "primaryKey", "rowTitles", "@id", "@type") + INHERITED_PROPERTIES
COLUMN_KEYS = ("name", "notes", "suppressOutput", "titles", "virtual", "@id", "@type") + INHERITED_PROPERTIES
DIALECT_KEYS = (
    "commentPrefix", "delimiter", "doubleQuote", "encoding", "header", "headerRowCount",
    "lineTerminators", "notes", "quoteChar", "skipBlankRows", "skipColumns",
    "skipInitialSpace", "skipRows", "trim", "@id", "@type",
)
DATATYPE_KEYS = (
    "base", "format", "length", "minLength", "maxLength", "minimum", "maximum",
    "minInclusive", "maxInclusive", "minExclusive", "maxExclusive", "notes", "@id", "@type",
)
NUMBER_FORMAT_KEYS = ("pattern", "decimalChar", "groupChar")
FOREIGN_KEY_KEYS = ("columnReference", "reference")
REFERENCE_KEYS = ("resource", "schemaReference", "columnReference")

TEXT_DIRECTIONS = ("ltr", "rtl", "auto", "inherit")
TABLE_DIRECTIONS = ("ltr", "rtl", "auto")

DEFAULT_FORMATS = {
    "duration": DURATION_REGEXES["duration"].pattern,
    "dayTimeDuration": DURATION_REGEXES["dayTimeDuration"].pattern,
    "yearMonthDuration": DURATION_REGEXES["yearMonthDuration"].pattern,
    "hexBinary": r"^([0-9A-Fa-f]{2})*$",
    "base64Binary": r"^[A-Za-z0-9+/]*={0,2}$",
}


@dataclass
class ValidationContext:
    tracker: IssueTracker
    base: str = ""
    language: Optional[str] = None

    def resolve(self, url: str) -> str:
        return urljoin(self.base, url) if self.base else url


def is_common_property(key: str) -> bool:
    return ":" in key


def valid_language(value: Any) -> bool:
    return isinstance(value, str) and (value == "@none" or tags.check(value))


# ------------------------------ generic helpers ------------------------------

def validate_allowed_keys(obj: Dict[str, Any], allowed, level: str, ctx: ValidationContext) -> None:
    for key in list(obj):
        if key in allowed or is_common_property(key):
            continue
        ctx.tracker.add_warning(f"Unknown property '{key}' on {level} was removed")
        del obj[key]


def validate_id_and_type(obj: Dict[str, Any], expected: str, ctx: ValidationContext) -> None:
    node_id = obj.get("@id")
    if node_id is not None:
        if not isinstance(node_id, str):
            ctx.tracker.add_warning(f"{expected} @id must be a string")
            del obj["@id"]
        elif node_id.startswith("_:"):
            ctx.tracker.add_error(f"{expected} @id must not be a blank node: {node_id}")
    node_type = obj.get("@type")
    if node_type is not None and node_type != expected:
        ctx.tracker.add_error(f"{expected} @type must be '{expected}', found {node_type!r}")


def _check(obj: Dict[str, Any], key: str, test: Callable[[Any], bool], message: str, ctx: ValidationContext) -> None:
    if key in obj and not test(obj[key]):
        ctx.tracker.add_warning(f"{message}, found {obj[key]!r}; the value was ignored")
        del obj[key]


def _is_bool(v: Any) -> bool:
    return isinstance(v, bool)


def _is_count(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool) and v >= 0


def _validate_notes(obj: Dict[str, Any], ctx: ValidationContext) -> None:
    _check(obj, "notes", lambda v: isinstance(v, list), "Property 'notes' must be an array", ctx)


# ------------------------------ inherited properties ------------------------------

def validate_inherited_properties(obj: Dict[str, Any], level: str, ctx: ValidationContext) -> None:
    for key in ("aboutUrl", "propertyUrl", "valueUrl"):
        if key in obj and not isinstance(obj[key], str):
            ctx.tracker.add_warning(f"{level} property '{key}' must be a string template; using ''")
            obj[key] = ""
    _check(obj, "lang", valid_language, f"{level} property 'lang' must be a BCP-47 language tag", ctx)
    _check(obj, "default", lambda v: isinstance(v, str), f"{level} property 'default' must be a string", ctx)
    _check(obj, "required", _is_bool, f"{level} property 'required' must be a boolean", ctx)
    _check(obj, "ordered", _is_bool, f"{level} property 'ordered' must be a boolean", ctx)
    _check(obj, "separator", lambda v: v is None or isinstance(v, str),
           f"{level} property 'separator' must be a string or null", ctx)
    _check(obj, "textDirection", lambda v: v in TEXT_DIRECTIONS,
           f"{level} property 'textDirection' must be one of {', '.join(TEXT_DIRECTIONS)}", ctx)
    if "null" in obj:
        value = obj["null"]
        if isinstance(value, list):
            kept = [v for v in value if isinstance(v, str)]
            if len(kept) != len(value):
                ctx.tracker.add_warning(f"{level} property 'null' contained non-string values")
            obj["null"] = kept
        elif not isinstance(value, str):
            ctx.tracker.add_warning(f"{level} property 'null' must be a string or an array of strings")
            del obj["null"]
    if "datatype" in obj:
        datatype = validate_datatype(obj["datatype"], ctx)
        if datatype is None:
            del obj["datatype"]
        else:
            obj["datatype"] = datatype


# ------------------------------ datatype ------------------------------

def _validate_number_format(fmt: Any, ctx: ValidationContext) -> Optional[Dict[str, Any]]:
    if isinstance(fmt, str):
        fmt = {"pattern": fmt}
    if not isinstance(fmt, dict):
        ctx.tracker.add_warning(f"Invalid number format {fmt!r}")
        return None
    validate_allowed_keys(fmt, NUMBER_FORMAT_KEYS, "NumberFormat", ctx)
    for key in ("decimalChar", "groupChar"):
        _check(fmt, key, lambda v: isinstance(v, str), f"NumberFormat '{key}' must be a string", ctx)
    pattern = fmt.get("pattern")
    if pattern is not None:
        valid = isinstance(pattern, str) and NUMBER_PATTERN.match(pattern)
        if valid:
            try:
                NumberPattern.parse(pattern)
            except ValueError:
                valid = False
        if not valid:
            ctx.tracker.add_warning(f"Invalid number pattern {pattern!r}; the pattern was ignored")
            del fmt["pattern"]
    return fmt


def _validate_format(dt: Dict[str, Any], base: str, ctx: ValidationContext) -> None:
    fmt = dt.get("format")
    iri = DATATYPE_IRIS[base]
    if fmt is None:
        if base in DEFAULT_FORMATS:
            dt["format"] = DEFAULT_FORMATS[base]
        return
    if iri == BOOLEAN_TYPE:
        if not (isinstance(fmt, str) and BOOLEAN_FORMAT.match(fmt)):
            ctx.tracker.add_warning(f"Invalid boolean format {fmt!r}; the format was ignored")
            del dt["format"]
    elif iri in NUMERIC_TYPES:
        number_format = _validate_number_format(fmt, ctx)
        if number_format is None:
            del dt["format"]
        else:
            dt["format"] = number_format
    elif not isinstance(fmt, str):
        ctx.tracker.add_warning(f"Datatype format must be a string, found {fmt!r}")
        del dt["format"]
    elif iri in DATE_TYPES:
        _uax35_regex(fmt)
    elif base not in ("json", "xml", "html"):
        try:
            re.compile(fmt)
        except re.error as e:
            ctx.tracker.add_warning(f"Invalid regular expression format {fmt!r}: {e}")
            del dt["format"]


def _as_number(v: Any) -> Optional[float]:
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


def validate_datatype(value: Any, ctx: ValidationContext) -> Optional[Dict[str, Any]]:
    """Normalize a datatype to dictionary form, or None when it is unusable."""
    if isinstance(value, str):
        if value not in DATATYPE_IRIS:
            ctx.tracker.add_warning(f"Unknown datatype {value!r}; using 'string'")
            value = "string"
        dt: Dict[str, Any] = {"base": value}
    elif isinstance(value, dict):
        dt = dict(value)
    else:
        ctx.tracker.add_warning(f"Datatype must be a string or an object, found {value!r}")
        return None

    validate_allowed_keys(dt, DATATYPE_KEYS, "Datatype", ctx)
    if "@id" in dt:
        if not isinstance(dt["@id"], str):
            ctx.tracker.add_warning("Datatype @id must be a string")
            del dt["@id"]
        elif dt["@id"] in DATATYPE_IRIS.values():
            ctx.tracker.add_error(f"Datatype @id must not be a built-in datatype: {dt['@id']}", recoverable=True)
            del dt["@id"]
        elif dt["@id"].startswith("_:"):
            ctx.tracker.add_error(f"Datatype @id must not be a blank node: {dt['@id']}")
    base = dt.get("base", "string")
    if base not in DATATYPE_IRIS:
        ctx.tracker.add_warning(f"Unknown datatype base {base!r}; using 'string'")
        base = "string"
    dt["base"] = base

    for key in ("length", "minLength", "maxLength"):
        _check(dt, key, _is_count, f"Datatype '{key}' must be a non-negative integer", ctx)
    if any(k in dt for k in ("length", "minLength", "maxLength")):
        iri = DATATYPE_IRIS[base]
        if iri in NUMERIC_TYPES or iri in DATE_TYPES or iri == BOOLEAN_TYPE:
            ctx.tracker.add_error(f"Length constraints are not allowed on datatype {base!r}", recoverable=True)
            for key in ("length", "minLength", "maxLength"):
                dt.pop(key, None)
    length = dt.get("length")
    if length is not None:
        if dt.get("minLength") is not None and dt["minLength"] > length:
            ctx.tracker.add_error("Datatype minLength is greater than length", recoverable=True)
        if dt.get("maxLength") is not None and dt["maxLength"] < length:
            ctx.tracker.add_error("Datatype maxLength is less than length", recoverable=True)
    if dt.get("minLength") is not None and dt.get("maxLength") is not None and dt["minLength"] > dt["maxLength"]:
        ctx.tracker.add_error("Datatype minLength is greater than maxLength", recoverable=True)

    if "minimum" in dt:
        dt.setdefault("minInclusive", dt.pop("minimum"))
    if "maximum" in dt:
        dt.setdefault("maxInclusive", dt.pop("maximum"))
    for key in ("minInclusive", "maxInclusive", "minExclusive", "maxExclusive"):
        _check(dt, key, lambda v: isinstance(v, (str, int, float)) and not isinstance(v, bool),
               f"Datatype '{key}' must be a string or a number", ctx)
    if "minInclusive" in dt and "minExclusive" in dt:
        ctx.tracker.add_error("Datatype cannot have both minInclusive and minExclusive", recoverable=True)
    if "maxInclusive" in dt and "maxExclusive" in dt:
        ctx.tracker.add_error("Datatype cannot have both maxInclusive and maxExclusive", recoverable=True)
    low = _as_number(dt.get("minInclusive", dt.get("minExclusive")))
    high = _as_number(dt.get("maxInclusive", dt.get("maxExclusive")))
    if low is not None and high is not None and low > high:
        ctx.tracker.add_error("Datatype minimum is greater than its maximum", recoverable=True)

    _validate_format(dt, base, ctx)
    return dt


# ------------------------------ dialect ------------------------------

def _valid_encoding(v: Any) -> bool:
    if not isinstance(v, str):
        return False
    try:
        codecs.lookup(v)
    except LookupError:
        return False
    return True


def validate_dialect(dialect: Any, ctx: ValidationContext) -> Optional[Dict[str, Any]]:
    if not isinstance(dialect, dict):
        ctx.tracker.add_warning(f"Dialect must be an object, found {dialect!r}")
        return None
    validate_id_and_type(dialect, "Dialect", ctx)
    validate_allowed_keys(dialect, DIALECT_KEYS, "Dialect", ctx)
    for key in ("doubleQuote", "header", "skipBlankRows", "skipInitialSpace"):
        _check(dialect, key, _is_bool, f"Dialect '{key}' must be a boolean", ctx)
    for key in ("headerRowCount", "skipColumns", "skipRows"):
        _check(dialect, key, _is_count, f"Dialect '{key}' must be a non-negative integer", ctx)
    for key in ("commentPrefix", "delimiter"):
        _check(dialect, key, lambda v: isinstance(v, str), f"Dialect '{key}' must be a string", ctx)
    _check(dialect, "quoteChar", lambda v: v is None or isinstance(v, str), "Dialect 'quoteChar' must be a string or null", ctx)
    _check(dialect, "encoding", _valid_encoding, "Dialect 'encoding' must be a known encoding", ctx)
    _check(dialect, "trim", lambda v: isinstance(v, bool) or v in ("true", "false", "start", "end"),
           "Dialect 'trim' must be true, false, 'start' or 'end'", ctx)
    if "lineTerminators" in dialect:
        terminators = dialect["lineTerminators"]
        if isinstance(terminators, str):
            dialect["lineTerminators"] = [terminators]
        elif isinstance(terminators, list):
            kept = [t for t in terminators if isinstance(t, str)]
            if len(kept) != len(terminators):
                ctx.tracker.add_warning("Dialect 'lineTerminators' contained non-string entries")
            dialect["lineTerminators"] = kept
        else:
            ctx.tracker.add_warning("Dialect 'lineTerminators' must be a string or an array")
            del dialect["lineTerminators"]
    _validate_notes(dialect, ctx)
    return dialect


# ------------------------------ column / schema ------------------------------

def normalize_titles(value: Any, ctx: ValidationContext) -> Optional[Dict[str, List[str]]]:
    lang = ctx.language or "@none"
    if isinstance(value, str):
        return {lang: [value]}
    if isinstance(value, list):
        kept = [v for v in value if isinstance(v, str)]
        if len(kept) != len(value):
            ctx.tracker.add_warning("Column titles contained non-string values")
        return {lang: kept}
    if isinstance(value, dict):
        titles: Dict[str, List[str]] = {}
        for key, item in value.items():
            if not valid_language(key):
                ctx.tracker.add_warning(f"Invalid language tag {key!r} in column titles")
                continue
            items = item if isinstance(item, list) else [item]
            titles[key] = [v for v in items if isinstance(v, str)]
        return titles
    ctx.tracker.add_warning(f"Column titles must be a string, an array or an object, found {value!r}")
    return None


def validate_column(column: Dict[str, Any], index: int, ctx: ValidationContext) -> None:
    validate_id_and_type(column, "Column", ctx)
    validate_allowed_keys(column, COLUMN_KEYS, "Column", ctx)
    if "name" in column:
        name = column["name"]
        if not isinstance(name, str) or not COLUMN_NAME.match(name):
            ctx.tracker.add_warning(f"Column {index + 1} has an invalid name {name!r}; the name was ignored")
            del column["name"]
    if "titles" in column:
        titles = normalize_titles(column["titles"], ctx)
        if titles is None:
            del column["titles"]
        else:
            column["titles"] = titles
    _check(column, "suppressOutput", _is_bool, "Column 'suppressOutput' must be a boolean", ctx)
    _check(column, "virtual", _is_bool, "Column 'virtual' must be a boolean", ctx)
    _validate_notes(column, ctx)
    validate_inherited_properties(column, "Column", ctx)


def _column_refs(value: Any) -> Optional[List[str]]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    return None


def _schema_column_names(schema: Dict[str, Any]) -> List[str]:
    return [c["name"] for c in schema.get("columns", []) if isinstance(c, dict) and "name" in c]


def validate_schema(schema: Dict[str, Any], ctx: ValidationContext) -> None:
    validate_id_and_type(schema, "Schema", ctx)
    validate_allowed_keys(schema, SCHEMA_KEYS, "Schema", ctx)
    validate_inherited_properties(schema, "Schema", ctx)
    _validate_notes(schema, ctx)

    columns = schema.get("columns", [])
    if not isinstance(columns, list):
        ctx.tracker.add_warning("Schema 'columns' must be an array")
        columns = []
    kept = []
    for i, column in enumerate(columns):
        if not isinstance(column, dict):
            ctx.tracker.add_warning(f"Column {i + 1} must be an object; it was ignored")
            continue
        validate_column(column, i, ctx)
        kept.append(column)
    schema["columns"] = kept

    names = _schema_column_names(schema)
    seen = set()
    for name in names:
        if name in seen:
            ctx.tracker.add_error(f"Duplicate column name '{name}'")
        seen.add(name)

    virtual_seen = False
    for column in kept:
        if column.get("virtual"):
            virtual_seen = True
        elif virtual_seen:
            ctx.tracker.add_error(
                f"Column '{column.get('name', '?')}' follows a virtual column", recoverable=True
            )

    for key in ("primaryKey", "rowTitles"):
        if key not in schema:
            continue
        refs = _column_refs(schema[key])
        if refs is None:
            ctx.tracker.add_warning(f"Schema '{key}' must be a column name or an array of names")
            del schema[key]
            continue
        missing = [r for r in refs if r not in names]
        if missing:
            ctx.tracker.add_error(
                f"Schema '{key}' references unknown column(s): {', '.join(missing)}", recoverable=True
            )
            del schema[key]
        else:
            schema[key] = refs

    foreign_keys = schema.get("foreignKeys", [])
    if not isinstance(foreign_keys, list):
        ctx.tracker.add_warning("Schema 'foreignKeys' must be an array")
        foreign_keys = []
    valid_keys = []
    for fk in foreign_keys:
        if not isinstance(fk, dict) or not isinstance(fk.get("reference"), dict):
            ctx.tracker.add_warning("Foreign key must be an object with a 'reference' object; it was ignored")
            continue
        validate_allowed_keys(fk, FOREIGN_KEY_KEYS, "ForeignKey", ctx)
        validate_allowed_keys(fk["reference"], REFERENCE_KEYS, "ForeignKey reference", ctx)
        refs = _column_refs(fk.get("columnReference"))
        if refs is None:
            ctx.tracker.add_error("Foreign key 'columnReference' is missing or invalid", recoverable=True)
            continue
        missing = [r for r in refs if r not in names]
        if missing:
            ctx.tracker.add_error(
                f"Foreign key references unknown column(s): {', '.join(missing)}", recoverable=True
            )
            continue
        fk["columnReference"] = refs
        reference = fk["reference"]
        if ("resource" in reference) == ("schemaReference" in reference):
            ctx.tracker.add_error("Foreign key reference needs exactly one of 'resource' or 'schemaReference'")
        ref_columns = _column_refs(reference.get("columnReference"))
        if ref_columns is None or len(ref_columns) != len(refs):
            ctx.tracker.add_error("Foreign key reference 'columnReference' is missing or invalid", recoverable=True)
            continue
        reference["columnReference"] = ref_columns
        valid_keys.append(fk)
    if "foreignKeys" in schema:
        schema["foreignKeys"] = valid_keys


# ------------------------------ table / table group ------------------------------

def _validate_table_direction(obj: Dict[str, Any], level: str, ctx: ValidationContext) -> None:
    _check(obj, "tableDirection", lambda v: v in TABLE_DIRECTIONS,
           f"{level} 'tableDirection' must be one of {', '.join(TABLE_DIRECTIONS)}", ctx)


def validate_table(table: Dict[str, Any], ctx: ValidationContext) -> None:
    url = table.get("url")
    if not isinstance(url, str):
        ctx.tracker.add_error("Table is missing a 'url' string")
    ctx.tracker.location.update(table=url)
    validate_id_and_type(table, "Table", ctx)
    validate_allowed_keys(table, TABLE_KEYS, "Table", ctx)
    validate_inherited_properties(table, "Table", ctx)
    _validate_table_direction(table, "Table", ctx)
    _validate_notes(table, ctx)
    _check(table, "suppressOutput", _is_bool, "Table 'suppressOutput' must be a boolean", ctx)
    _check(table, "transformations", lambda v: isinstance(v, list), "Table 'transformations' must be an array", ctx)
    if "dialect" in table:
        dialect = validate_dialect(table["dialect"], ctx)
        if dialect is None:
            del table["dialect"]
    if "tableSchema" in table:
        if isinstance(table["tableSchema"], dict):
            validate_schema(table["tableSchema"], ctx)
        else:
            ctx.tracker.add_warning("Table 'tableSchema' must be an object; it was ignored")
            del table["tableSchema"]


def validate_foreign_key_targets(tables: List[Dict[str, Any]], ctx: ValidationContext) -> None:
    """Foreign keys must point at a sibling table, by url or by schema @id."""
    by_url = {ctx.resolve(t["url"]): t for t in tables if isinstance(t.get("url"), str)}
    by_schema = {
        ctx.resolve(t["tableSchema"]["@id"]): t
        for t in tables
        if isinstance(t.get("tableSchema"), dict) and "@id" in t["tableSchema"]
    }
    for table in tables:
        ctx.tracker.location.update(table=table.get("url"))
        for fk in table.get("tableSchema", {}).get("foreignKeys", []):
            reference = fk["reference"]
            if "resource" in reference:
                target = by_url.get(ctx.resolve(str(reference["resource"])))
                label = reference["resource"]
            else:
                target = by_schema.get(ctx.resolve(str(reference.get("schemaReference"))))
                label = reference.get("schemaReference")
            if target is None:
                ctx.tracker.add_error(f"Foreign key reference {label!r} does not match any table")
            names = _schema_column_names(target.get("tableSchema", {}))
            missing = [c for c in reference["columnReference"] if c not in names]
            if missing:
                ctx.tracker.add_error(
                    f"Foreign key references unknown column(s) of {label!r}: {', '.join(missing)}",
                    recoverable=True,
                )
    ctx.tracker.location.reset()


def validate_table_group(group: Dict[str, Any], ctx: ValidationContext) -> None:
    tables = group.get("tables")
    if not isinstance(tables, list) or not tables:
        ctx.tracker.add_error("TableGroup must contain a non-empty 'tables' array")
    validate_id_and_type(group, "TableGroup", ctx)
    validate_allowed_keys(group, TABLE_GROUP_KEYS, "TableGroup", ctx)
    validate_inherited_properties(group, "TableGroup", ctx)
    _validate_table_direction(group, "TableGroup", ctx)
    _validate_notes(group, ctx)
    _check(group, "transformations", lambda v: isinstance(v, list), "TableGroup 'transformations' must be an array", ctx)
    if "dialect" in group:
        dialect = validate_dialect(group["dialect"], ctx)
        if dialect is None:
            del group["dialect"]

    kept = []
    for table in tables:
        if not isinstance(table, dict):
            ctx.tracker.add_warning("TableGroup 'tables' entries must be objects; one was ignored")
            continue
        validate_table(table, ctx)
        kept.append(table)
    ctx.tracker.location.reset()
    if not kept:
        ctx.tracker.add_error("TableGroup contains no valid tables")
    group["tables"] = kept
    validate_foreign_key_targets(kept, ctx)
