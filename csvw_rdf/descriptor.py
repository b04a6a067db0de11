"""
Descriptor normalization: raw CSVW metadata JSON -> validated TableGroup tree.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Tuple, Union
from urllib.parse import quote, urljoin

from .issues import IssueTracker
from .model import (
    INHERITED_PROPERTIES,
    Column,
    Datatype,
    Dialect,
    ForeignKey,
    Schema,
    Table,
    TableGroup,
)
from .options import ConversionOptions
from .validation import ValidationContext, is_common_property, valid_language, validate_table_group
from .vocab import CSVW, CSVW_CONTEXT


_CSVW_NS = str(CSVW)

# properties whose values are JSON-LD and must not be rewritten
_OPAQUE = ("notes", "@context")


def canonical_key(key: str) -> str:
    """`csvw:tables` and `http://www.w3.org/ns/csvw#tables` both become `tables`."""
    if key.startswith(_CSVW_NS):
        return key[len(_CSVW_NS):]
    if key.startswith("csvw:"):
        return key[5:]
    return key


def canonicalize(value: Any) -> Any:
    if isinstance(value, list):
        return [canonicalize(v) for v in value]
    if not isinstance(value, dict):
        return value
    if set(value) == {"@value"}:
        return canonicalize(value["@value"])
    result = {}
    for key, item in value.items():
        key = canonical_key(key)
        if key in _OPAQUE or is_common_property(key):
            result[key] = item
        else:
            result[key] = canonicalize(item)
    return result


def parse_context(descriptor: Dict[str, Any], tracker: IssueTracker) -> Tuple[Optional[str], Optional[str]]:
    """Return (@base, @language) from the descriptor's @context."""
    context = descriptor.get("@context")
    if context is None:
        tracker.add_warning("Descriptor has no @context; assuming the CSVW context")
        return None, None
    if isinstance(context, str):
        if context.rstrip("#") != CSVW_CONTEXT:
            tracker.add_warning(f"Unexpected @context {context!r}")
        return None, None
    if (
        isinstance(context, list)
        and len(context) == 2
        and isinstance(context[0], str)
        and isinstance(context[1], dict)
    ):
        if context[0].rstrip("#") != CSVW_CONTEXT:
            tracker.add_warning(f"Unexpected @context {context[0]!r}")
        local = context[1]
        for key in local:
            if key not in ("@base", "@language"):
                tracker.add_warning(f"Unsupported @context property {key!r}")
        base = local.get("@base")
        if base is not None and not isinstance(base, str):
            tracker.add_warning("@context @base must be a string")
            base = None
        language = local.get("@language")
        if language is not None and not valid_language(language):
            tracker.add_warning(f"@context @language {language!r} is not a valid language tag")
            language = None
        return base, language
    tracker.add_warning(f"Invalid @context {context!r}")
    return None, None


def _fetch_json(value: str, base: Optional[str], resolver, tracker: IssueTracker, what: str) -> Any:
    text = resolver.resolve_jsonld(value, base)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        tracker.add_error(f"Referenced {what} {value!r} is not valid JSON: {e}")
    if not isinstance(data, dict):
        tracker.add_error(f"Referenced {what} {value!r} is not a JSON object")
    data = canonicalize(data)
    data.pop("@context", None)
    return data


def _load_references(obj: Dict[str, Any], base: Optional[str], resolver, tracker: IssueTracker) -> None:
    """Replace tableSchema/dialect URLs with the documents they point to."""
    schema = obj.get("tableSchema")
    if isinstance(schema, str):
        data = _fetch_json(schema, base, resolver, tracker, "schema")
        data.setdefault("@id", resolver.absolute(schema, base))
        obj["tableSchema"] = data
    dialect = obj.get("dialect")
    if isinstance(dialect, str):
        obj["dialect"] = _fetch_json(dialect, base, resolver, tracker, "dialect")


def infer_type(descriptor: Dict[str, Any]) -> str:
    if "@type" in descriptor:
        return descriptor["@type"]
    return "Table" if "url" in descriptor and "tables" not in descriptor else "TableGroup"


def encode_name(title: str) -> str:
    return quote(title, safe="").replace("-", "%2D")


# ------------------------------ building ------------------------------

def _str_or_none(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def build_datatype(dt: Dict[str, Any]) -> Datatype:
    return Datatype(
        base=dt.get("base", "string"),
        format=dt.get("format"),
        length=dt.get("length"),
        min_length=dt.get("minLength"),
        max_length=dt.get("maxLength"),
        min_inclusive=_str_or_none(dt.get("minInclusive")),
        max_inclusive=_str_or_none(dt.get("maxInclusive")),
        min_exclusive=_str_or_none(dt.get("minExclusive")),
        max_exclusive=_str_or_none(dt.get("maxExclusive")),
        id=dt.get("@id"),
    )


def build_dialect(d: Dict[str, Any]) -> Dialect:
    trim = d.get("trim", True)
    if trim in ("true", "false"):
        trim = trim == "true"
    header = d.get("header", True)
    return Dialect(
        comment_prefix=d.get("commentPrefix", "#"),
        delimiter=d.get("delimiter", ","),
        double_quote=d.get("doubleQuote", True),
        encoding=d.get("encoding"),
        header=header,
        header_row_count=d.get("headerRowCount", 1 if header else 0),
        line_terminators=d.get("lineTerminators", ["\r\n", "\n"]),
        quote_char=d.get("quoteChar", '"'),
        skip_blank_rows=d.get("skipBlankRows", False),
        skip_columns=d.get("skipColumns", 0),
        skip_initial_space=d.get("skipInitialSpace", False),
        skip_rows=d.get("skipRows", 0),
        trim=trim,
    )


def _split_properties(obj: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    inherited = {k: obj[k] for k in INHERITED_PROPERTIES if k in obj}
    if isinstance(inherited.get("datatype"), dict):
        inherited["datatype"] = build_datatype(inherited["datatype"])
    common = {k: v for k, v in obj.items() if is_common_property(k)}
    return inherited, common


def build_column(raw: Dict[str, Any], index: int) -> Column:
    inherited, common = _split_properties(raw)
    titles = raw.get("titles", {})
    name = raw.get("name")
    if name is None:
        first = next((v[0] for v in titles.values() if v), None)
        name = encode_name(first) if first else f"_col.{index + 1}"
    return Column(
        name=name,
        titles=titles,
        virtual=raw.get("virtual", False),
        suppress_output=raw.get("suppressOutput", False),
        id=raw.get("@id"),
        inherited=inherited,
        common=common,
    )


def build_schema(raw: Dict[str, Any], resolve) -> Schema:
    inherited, common = _split_properties(raw)
    schema = Schema(
        primary_key=list(raw.get("primaryKey", [])),
        row_titles=list(raw.get("rowTitles", [])),
        id=raw.get("@id"),
        inherited=inherited,
        common=common,
    )
    for i, column_raw in enumerate(raw.get("columns", [])):
        column = build_column(column_raw, i)
        column.parent = schema
        schema.columns.append(column)
    for fk in raw.get("foreignKeys", []):
        reference = fk["reference"]
        schema.foreign_keys.append(
            ForeignKey(
                column_reference=list(fk["columnReference"]),
                resource=resolve(reference["resource"]) if "resource" in reference else None,
                schema_reference=resolve(reference["schemaReference"]) if "schemaReference" in reference else None,
                ref_columns=list(reference["columnReference"]),
            )
        )
    return schema


def build_table(raw: Dict[str, Any], resolve) -> Table:
    inherited, common = _split_properties(raw)
    table = Table(
        url=resolve(raw["url"]),
        dialect=build_dialect(raw["dialect"]) if "dialect" in raw else None,
        suppress_output=raw.get("suppressOutput", False),
        table_direction=raw.get("tableDirection", "auto"),
        id=raw.get("@id"),
        notes=list(raw.get("notes", [])),
        inherited=inherited,
        common=common,
    )
    table.schema = build_schema(raw.get("tableSchema", {}), resolve)
    table.schema.parent = table
    return table


def build_table_group(raw: Dict[str, Any], base: str, language: Optional[str], is_group: bool, url: Optional[str]) -> TableGroup:
    def resolve(value: str) -> str:
        return urljoin(base, value) if base else value

    inherited, common = _split_properties(raw)
    group = TableGroup(
        dialect=build_dialect(raw["dialect"]) if "dialect" in raw else None,
        table_direction=raw.get("tableDirection", "auto"),
        id=raw.get("@id"),
        notes=list(raw.get("notes", [])),
        base=base or None,
        language=language,
        is_table_group=is_group,
        context=raw.get("@context", CSVW_CONTEXT),
        url=url,
        inherited=inherited,
        common=common,
    )
    for table_raw in raw["tables"]:
        table = build_table(table_raw, resolve)
        table.parent = group
        group.tables.append(table)
    return group


def normalize_descriptor(
    raw: Union[str, bytes, Dict[str, Any]],
    options: Optional[ConversionOptions] = None,
    tracker: Optional[IssueTracker] = None,
    url: Optional[str] = None,
    resolver=None,
) -> TableGroup:
    """
    Parse, validate and build a TableGroup from raw CSVW metadata.

    `raw` may be the JSON text or an already parsed object.  A lone Table
    descriptor is wrapped in an implicit group.  Table urls are resolved against
    the context @base, the descriptor `url`, or options.base_iri, in that order.
    Fatal problems raise StructuralError; referenced schemas or dialects that
    cannot be fetched raise ResolutionError.
    """
    options = options or ConversionOptions()
    tracker = tracker or IssueTracker(log_level=options.log_level)
    resolver = resolver or options.get_resolver()

    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            tracker.add_error(f"Descriptor is not valid JSON: {e}")
    if not isinstance(raw, dict):
        tracker.add_error("Descriptor must be a JSON object")

    descriptor = canonicalize(raw)
    context_base, language = parse_context(descriptor, tracker)
    document_url = url
    if url and options.base_iri:
        document_url = resolver.absolute(url, options.base_iri)
    base = document_url or options.base_iri or ""
    if context_base is not None:
        base = urljoin(base, context_base) if base else context_base

    kind = infer_type(descriptor)
    if kind == "Table":
        descriptor.setdefault("@type", "Table")
        context = descriptor.pop("@context", CSVW_CONTEXT)
        group_raw = {"@context": context, "tables": [descriptor]}
    else:
        group_raw = descriptor

    _load_references(group_raw, base, resolver, tracker)
    group_schema = group_raw.pop("tableSchema", None)
    tables = group_raw.get("tables")
    for table_raw in tables if isinstance(tables, list) else []:
        if not isinstance(table_raw, dict):
            continue
        _load_references(table_raw, base, resolver, tracker)
        # a group level tableSchema applies to tables that have none
        if "tableSchema" not in table_raw and isinstance(group_schema, dict):
            table_raw["tableSchema"] = json.loads(json.dumps(group_schema))

    ctx = ValidationContext(tracker=tracker, base=base, language=language)
    validate_table_group(group_raw, ctx)
    group = build_table_group(group_raw, base, language, kind != "Table", document_url)
    logging.debug(f"Normalized descriptor with {len(group.tables)} table(s), base {base!r}")
    return group


def embedded_descriptor(csv_url: str) -> Dict[str, Any]:
    """Descriptor for a CSV file with no metadata: columns come from its header."""
    return {"@context": CSVW_CONTEXT, "url": csv_url}


def load_descriptor(url: str, options: ConversionOptions, tracker: IssueTracker) -> TableGroup:
    """Fetch and normalize the descriptor at `url`."""
    resolver = options.get_resolver()
    text = resolver.resolve_jsonld(url, options.base_iri or None)
    return normalize_descriptor(text, options, tracker, url=url, resolver=resolver)
