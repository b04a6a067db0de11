"""
CSVW -> RDF conversion.

Csvw2RdfConvertor streams quads (s, p, o, g) with rdflib terms and g=None for
the default graph.  Rows are read lazily from the CSV, so the quads of row N
are produced before row N+1 is read.
"""

from __future__ import annotations

import itertools
import json
import logging
import re
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union
from urllib.parse import unquote, urldefrag, urljoin

from rdflib import BNode, Graph, Literal, URIRef
from rdflib.namespace import RDF, XSD
from rdflib.term import Node
from uritemplate import URITemplate

from .csv_reader import open_text, read_rows
from .datatypes import codec_for
from .descriptor import embedded_descriptor, encode_name, normalize_descriptor
from .errors import CsvwError, ResolutionError, StructuralError
from .issues import Issue, IssueTracker, LocationTracker
from .model import Column, Dialect, Table, TableGroup
from .options import ConversionOptions
from .templates import expand, resolve_iri, to_iri
from .vocab import COMMON_PREFIXES, CSVW, DATATYPE_IRIS


Quad = Tuple[Node, URIRef, Node, Optional[Node]]
Cell = Tuple[str, bool]

DEFAULT_METADATA_LOCATIONS = ("{+url}-metadata.json", "csv-metadata.json")
PROGRESS_EVERY = 10000

# types whose cell text keeps its whitespace
KEEP_WHITESPACE = frozenset(
    [
        str(XSD.string),
        str(XSD.normalizedString),
        DATATYPE_IRIS["anyAtomicType"],
        DATATYPE_IRIS["xml"],
        DATATYPE_IRIS["html"],
        DATATYPE_IRIS["json"],
    ]
)
_PLACEHOLDER_SUBJECT = "urn:x-csvw-rdf:subject"


def common_property_triples(
    subject: Node,
    properties: Dict[str, Any],
    notes: List[Any],
    base: Optional[str] = None,
    language: Optional[str] = None,
) -> List[Quad]:
    """Interpret common properties and notes as JSON-LD about `subject`."""
    if not properties and not notes:
        return []
    context: Dict[str, Any] = dict(COMMON_PREFIXES)
    if base:
        context["@base"] = base
    if language and language != "@none":
        context["@language"] = language
    document = {"@context": context, "@id": _PLACEHOLDER_SUBJECT, **properties}
    if notes:
        document[str(CSVW.note)] = notes
    graph = Graph()
    graph.parse(data=json.dumps(document), format="json-ld")
    placeholder = URIRef(_PLACEHOLDER_SUBJECT)
    return [(subject if s == placeholder else s, p, o, None) for s, p, o in graph]


class _TableContext:
    """Per-table state built once the header has been read."""

    def __init__(self, table: Table, dialect: Dialect):
        self.table = table
        self.dialect = dialect
        self.columns: List[Column] = table.schema.columns
        self.codecs: Dict[str, Any] = {}
        self.positions: Dict[str, int] = {}
        self.physical_count = 0

    @property
    def physical(self) -> List[Column]:
        return [c for c in self.columns if not c.virtual]

    def prepare(self) -> None:
        for column in self.columns:
            self.codecs[column.name] = codec_for(column)
        self.positions = {c.name: i for i, c in enumerate(self.physical)}
        self.physical_count = len(self.positions)


class Csvw2RdfConvertor:
    """
    Convert CSV files described by CSVW metadata into RDF quads.

    One convertor owns one issue tracker; create a new one per conversion when
    issues must not accumulate.
    """

    def __init__(self, options: Optional[ConversionOptions] = None, tracker: Optional[IssueTracker] = None):
        self.options = options or ConversionOptions()
        self.location = tracker.location if tracker is not None else LocationTracker()
        self.issue_tracker = tracker or IssueTracker(self.location, log_level=self.options.log_level)
        self.resolver = self.options.get_resolver()

    # ------------------------------ public API ------------------------------

    def convert(self, descriptor: Union[str, Dict[str, Any], TableGroup], url: Optional[str] = None) -> Iterator[Quad]:
        """Yield the quads for every table of `descriptor`."""
        group = self._normalize(descriptor, url)
        for item in self._convert_group(group, emit=True):
            if item is not None:
                yield item

    def convert_from_csv(self, csv_url: str) -> Iterator[Quad]:
        """Locate metadata for `csv_url` (or fall back to its header) and convert."""
        group = self.locate_metadata(csv_url)
        for item in self._convert_group(group, emit=True):
            if item is not None:
                yield item

    def validate(self, descriptor: Union[str, Dict[str, Any], TableGroup], url: Optional[str] = None) -> Iterator[Issue]:
        """
        Run the whole conversion without emitting quads and yield issues as
        they are found, one batch per row.  A fatal problem ends the stream with
        its error issue.
        """
        tracker = self.issue_tracker
        reported = 0
        try:
            group = self._normalize(descriptor, url)
            for item in self._convert_group(group, emit=False):
                if item is None and len(tracker.issues) > reported:
                    yield from tracker.issues[reported:]
                    reported = len(tracker.issues)
        except CsvwError as e:
            if not (isinstance(e, StructuralError) and e.issue is not None):
                tracker.add_error(str(e), recoverable=True)
        yield from tracker.issues[reported:]

    # ------------------------------ metadata ------------------------------

    def _normalize(self, descriptor, url: Optional[str]) -> TableGroup:
        if isinstance(descriptor, TableGroup):
            return descriptor
        return normalize_descriptor(descriptor, self.options, self.issue_tracker, url=url, resolver=self.resolver)

    def _metadata_templates(self, csv_url: str) -> List[str]:
        if not csv_url.startswith(("http://", "https://")):
            return list(DEFAULT_METADATA_LOCATIONS)
        try:
            text = self.resolver.resolve_text(urljoin(csv_url, "/.well-known/csvm"))
        except ResolutionError as e:
            logging.debug(f"No site-wide metadata configuration: {e}")
            return list(DEFAULT_METADATA_LOCATIONS)
        templates = [line.strip() for line in text.splitlines() if line.strip()]
        return templates or list(DEFAULT_METADATA_LOCATIONS)

    def _try_metadata(self, candidate: str, csv_url: str) -> Optional[TableGroup]:
        if not self.resolver.exists(candidate):
            return None
        scratch = IssueTracker(self.location, log_level=self.options.log_level)
        try:
            text = self.resolver.resolve_jsonld(candidate)
            group = normalize_descriptor(text, self.options, scratch, url=candidate, resolver=self.resolver)
        except CsvwError as e:
            self.issue_tracker.add_warning(f"Ignoring metadata {candidate}: {e}")
            return None
        if not any(self.resolver.absolute(t.url, candidate) == csv_url for t in group.tables):
            self.issue_tracker.add_warning(f"Metadata file {candidate} does not describe {csv_url}")
            return None
        self.issue_tracker.issues.extend(scratch.issues)
        return group

    def locate_metadata(self, csv_url: str) -> TableGroup:
        """Find the descriptor for a CSV file, trying the standard locations in order."""
        absolute = self.resolver.absolute(csv_url, self.options.base_iri or None)
        clean = urldefrag(absolute).url
        for template in self._metadata_templates(clean):
            candidate = urljoin(clean, URITemplate(template).expand(url=clean))
            group = self._try_metadata(candidate, clean)
            if group is not None:
                logging.info(f"Using metadata {candidate}")
                return group
        logging.info(f"No metadata found for {clean}; using the CSV header")
        return normalize_descriptor(
            embedded_descriptor(clean), self.options, self.issue_tracker, url=clean, resolver=self.resolver
        )

    # ------------------------------ conversion ------------------------------

    def _convert_group(self, group: TableGroup, emit: bool) -> Iterator[Optional[Quad]]:
        """Yield quads when `emit`, plus None after each processed row."""
        emit = emit and not self.options.minimal
        structure = emit and self.options.standard_mode
        group_node = URIRef(group.id) if group.id else BNode()
        if structure:
            yield (group_node, RDF.type, CSVW.TableGroup, None)
            yield from common_property_triples(group_node, group.common, group.notes, group.base, group.language)
        for table in group.tables:
            table_emit = emit and not table.suppress_output
            table_node = yield from self._convert_table(table, table_emit)
            if structure and not table.suppress_output:
                yield (group_node, CSVW.table, table_node, None)
        self.location.reset()

    def _convert_table(self, table: Table, emit: bool):
        self.location.update(table=table.url)
        structure = emit and self.options.standard_mode
        table_node = URIRef(table.id) if table.id else BNode()
        if structure:
            yield (table_node, RDF.type, CSVW.Table, None)
            yield (table_node, CSVW.url, URIRef(table.url), None)
            group = table.parent
            yield from common_property_triples(
                table_node, table.common, table.notes,
                group.base if group else None, group.language if group else None,
            )

        dialect = table.effective_dialect
        stream = self.resolver.resolve_stream(table.url)
        with open_text(stream, dialect, self.issue_tracker) as text:
            rows = read_rows(text, dialect, self.issue_tracker)
            ctx = _TableContext(table, dialect)
            rows = self._process_header(ctx, rows)
            ctx.prepare()
            rownum = 0
            for rownum, (source_row, cells) in enumerate(rows, start=1):
                self.location.update(table=table.url, row=rownum)
                row_node = BNode()
                if structure:
                    yield (table_node, CSVW.row, row_node, None)
                yield from self._convert_row(ctx, rownum, source_row, cells, row_node, emit)
                if rownum % PROGRESS_EVERY == 0:
                    logging.info(f"Processed {rownum} rows...")
                yield None
            logging.info(f"Finished {table.url}: {rownum} rows")
        self.location.update(table=table.url)
        return table_node

    # ------------------------------ header ------------------------------

    def _default_language(self, table: Table) -> str:
        lang = table.get("lang")
        group = table.parent
        return lang or (group.language if group is not None else None) or "@none"

    def _process_header(self, ctx: _TableContext, rows: Iterator[Tuple[int, List[str]]]):
        """Merge header titles into the schema; returns the remaining row iterator."""
        table = ctx.table
        schema = table.schema
        default_lang = self._default_language(table)
        physical_count = len(ctx.physical) if ctx.columns else None

        for column in ctx.columns:
            if "@none" in column.titles and default_lang not in column.titles:
                column.titles[default_lang] = column.titles.pop("@none")

        for i in range(ctx.dialect.header_row_count):
            try:
                _, values = next(rows)
            except StopIteration:
                self.issue_tracker.add_error("CSV stream ended before the header was read")
            if physical_count is not None and len(values) != physical_count:
                self.issue_tracker.add_warning(
                    f"Header row {i + 1} has {len(values)} columns, "
                    f"but the table schema has {physical_count} non-virtual columns"
                )
            self._header_to_titles(ctx, values, default_lang, first_row=i == 0)

        if not ctx.columns:
            try:
                first = next(rows)
            except StopIteration:
                return iter(())
            for j in range(len(first[1])):
                self._append_column(ctx, Column(name=f"_col.{j + 1}"))
            rows = itertools.chain([first], rows)

        names = set()
        for column in ctx.columns:
            if column.name in names:
                self.issue_tracker.add_error(f"Duplicate column name '{column.name}'")
            names.add(column.name)
        logging.debug(f"Table {table.url} has columns {[c.name for c in schema.columns]}")
        return rows

    def _append_column(self, ctx: _TableContext, column: Column) -> None:
        column.parent = ctx.table.schema
        ctx.columns.append(column)

    def _header_to_titles(self, ctx: _TableContext, values: List[str], lang: str, first_row: bool) -> None:
        physical = ctx.physical
        from_schema = bool(physical)
        for j, value in enumerate(values):
            if j >= len(physical):
                if from_schema:
                    continue
                name = encode_name(value) if value else f"_col.{j + 1}"
                self._append_column(ctx, Column(name=name, titles={lang: [value]} if value else {}))
                continue
            if not value:
                continue
            column = physical[j]
            if any(value in titles for titles in column.titles.values()):
                continue
            had_titles = any(column.titles.values())
            column.titles.setdefault(lang, []).append(value)
            if had_titles and first_row:
                self.issue_tracker.add_warning(
                    f"Column title {column.title!r} is different from header in the CSV file {value!r}"
                )

    # ------------------------------ rows ------------------------------

    def _typed(self, value: str, column: Column, parser) -> Optional[Cell]:
        if value == "":
            value = column.get("default") or ""
        if value in column.null_values:
            return None
        return parser(value, column, self.issue_tracker)

    def _cell_value(self, raw: str, column: Column, parser) -> Union[None, Cell, List[Cell]]:
        dt_iri = column.datatype.base_iri
        value = raw
        if dt_iri not in KEEP_WHITESPACE:
            value = re.sub(r"\s+", " ", value).strip()
        elif dt_iri == str(XSD.normalizedString):
            value = re.sub(r"[\t\r\n]", " ", value)
        if value == "":
            value = column.get("default") or ""
        separator = column.get("separator")
        if separator is None:
            return self._typed(value, column, parser)
        if value == "":
            return []
        if value in column.null_values:
            return None
        parts = value.split(separator)
        if dt_iri not in (str(XSD.string), DATATYPE_IRIS["anyAtomicType"]):
            parts = [p.strip() for p in parts]
        cells = [self._typed(p, column, parser) for p in parts]
        return [c for c in cells if c is not None]

    def _row_values(self, ctx: _TableContext, cells: List[str]) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        if len(cells) > ctx.physical_count:
            self.issue_tracker.add_warning(
                f"Row has {len(cells)} cells but the table schema has {ctx.physical_count} columns; extra cells ignored"
            )
        for index, column in enumerate(ctx.columns, start=1):
            self.location.update(column=index)
            _, parser = ctx.codecs[column.name]
            if column.virtual:
                default = column.get("default")
                values[column.name] = self._typed(default, column, parser) if default else None
                continue
            position = ctx.positions[column.name]
            raw = cells[position] if position < len(cells) else ""
            values[column.name] = self._cell_value(raw, column, parser)
        return values

    def _literal(self, cell: Cell, column: Column) -> Literal:
        lexical, ok = cell
        dt = column.datatype
        if not ok or dt.iri == str(XSD.string):
            lang = column.get("lang")
            if ok and lang and lang != "@none":
                return Literal(lexical, lang=lang)
            return Literal(lexical)
        return Literal(lexical, datatype=URIRef(resolve_iri(dt.iri, None)))

    def _template_iri(self, template: str, bindings: Dict[str, Any], base: str) -> URIRef:
        iri = resolve_iri(expand(template, bindings, self.issue_tracker), base)
        if self.options.template_iris:
            iri = to_iri(iri)
        return URIRef(iri)

    def _rdf_list(self, items: List[Node]) -> Tuple[Node, List[Quad]]:
        if not items:
            return RDF.nil, []
        head = BNode()
        quads: List[Quad] = []
        node = head
        for i, item in enumerate(items):
            quads.append((node, RDF.first, item, None))
            rest = BNode() if i < len(items) - 1 else RDF.nil
            quads.append((node, RDF.rest, rest, None))
            node = rest
        return head, quads

    def _convert_row(self, ctx: _TableContext, rownum: int, source_row: int, cells: List[str], row_node: BNode, emit: bool):
        table = ctx.table
        structure = emit and self.options.standard_mode
        if structure:
            yield (row_node, RDF.type, CSVW.Row, None)
            yield (row_node, CSVW.rownum, Literal(str(rownum), datatype=XSD.integer), None)
            yield (row_node, CSVW.url, URIRef(f"{table.url}#row={source_row}"), None)

        values = self._row_values(ctx, cells)
        bindings: Dict[str, Any] = {}
        for name, value in values.items():
            if isinstance(value, list):
                bindings[name] = [v[0] for v in value]
            else:
                bindings[name] = None if value is None else value[0]
        bindings.update(_row=str(rownum), _sourceRow=str(source_row))

        default_subject = BNode()
        described = set()
        for index, column in enumerate(ctx.columns, start=1):
            self.location.update(column=index)
            value = values[column.name]
            value_url = column.get("valueUrl")
            if value is None and not (column.virtual and value_url):
                if column.required:
                    self.issue_tracker.add_warning("Null value in a required column")
                continue
            if not emit or column.suppress_output:
                continue

            bindings.update(
                _column=str(index),
                _sourceColumn=str(index + ctx.dialect.skip_columns),
                _name=unquote(column.name),
            )
            about = column.get("aboutUrl")
            subject = self._template_iri(about, bindings, table.url) if about else default_subject
            if structure and subject not in described:
                described.add(subject)
                yield (row_node, CSVW.describes, subject, None)

            prop = column.get("propertyUrl")
            predicate = (
                self._template_iri(prop, bindings, table.url) if prop else URIRef(f"{table.url}#{column.name}")
            )
            if value_url:
                yield (subject, predicate, self._template_iri(value_url, bindings, table.url), None)
            elif isinstance(value, list):
                literals = [self._literal(v, column) for v in value]
                if column.ordered:
                    head, quads = self._rdf_list(literals)
                    yield from quads
                    yield (subject, predicate, head, None)
                else:
                    for literal in literals:
                        yield (subject, predicate, literal, None)
            else:
                yield (subject, predicate, self._literal(value, column), None)

        if structure:
            for name in table.schema.row_titles:
                column = table.schema.column(name)
                value = values.get(name)
                if column is None or not value:
                    continue
                lang = column.get("lang")
                for lexical, _ in value if isinstance(value, list) else [value]:
                    title = Literal(lexical, lang=lang) if lang and lang != "@none" else Literal(lexical)
                    yield (row_node, CSVW.title, title, None)
