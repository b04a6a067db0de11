"""
Structural schema inference for RDF -> tabular conversion.

Subjects are grouped by rdf:type, one table per type, with one column per
predicate.  Predicates with several values for one subject get their own
relation table.  Untyped subjects end up in `unknown_type.csv`.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Set
from urllib.parse import quote
from xml.sax import SAXException

from rdflib import BNode, Graph, Literal, URIRef
from rdflib.exceptions import ParserError
from rdflib.namespace import RDF, RDFS

from .descriptor import encode_name
from .errors import ResolutionError
from .issues import IssueTracker
from .options import ConversionOptions
from .rdf_io import guess_format
from .schema import ColumnSchema, TableGroupSchema, TableSchema
from .vocab import BUILTIN_NAMES, CSVW, SKOS, local_name
from .window import Quad, QuadStore, WindowStore


UNKNOWN_TYPE_TABLE = "unknown_type.csv"
SUBJECT_COLUMN = "subject_id"

_RESERVED = re.compile(r"[/?&=#\[\]{}]")
_CSVW_NS = str(CSVW)


def is_unknown_type_table(url: str) -> bool:
    return url.rsplit("/", 1)[-1].startswith(UNKNOWN_TYPE_TABLE[:-4])


def common_uri_template(current: str, iri: str, column_name: str) -> str:
    """
    Generalize `current` (an IRI or a template) so it also matches `iri`.

    The shared prefix and suffix stay literal, the differing middle becomes a
    `{column_name}` placeholder, or `{+column_name}` when reserved characters
    vary.
    """
    if current == iri:
        return current
    prefix = 0
    while prefix < len(current) and prefix < len(iri) and current[prefix] != "{" and current[prefix] == iri[prefix]:
        prefix += 1
    suffix = 0
    while (
        suffix < len(current) - prefix
        and suffix < len(iri) - prefix
        and current[-suffix - 1] != "}"
        and current[-suffix - 1] == iri[-suffix - 1]
    ):
        suffix += 1
    middle = iri[prefix:len(iri) - suffix]
    reserved = current[prefix:prefix + 2] == "{+" or bool(_RESERVED.search(middle))
    op = "+" if reserved else ""
    return f"{current[:prefix]}{{{op}{column_name}}}{current[len(current) - suffix:]}"


def column_prefix(predicate: str) -> str:
    """Column name stem from a predicate IRI, valid under the CSVW name grammar."""
    name = encode_name(local_name(predicate)) or "col"
    if not re.match(r"[A-Za-z0-9%]", name):
        name = "c" + name
    return name


def _is_structural(quad: Quad) -> bool:
    s, p, o, _ = quad
    if str(p).startswith(_CSVW_NS):
        return True
    if p == RDF.type and str(o).startswith(_CSVW_NS):
        return True
    # rdf:List cells of ordered columns
    return p in (RDF.first, RDF.rest) and isinstance(s, BNode)


class SchemaInferrer:
    def __init__(
        self,
        store: QuadStore,
        options: Optional[ConversionOptions] = None,
        tracker: Optional[IssueTracker] = None,
    ):
        self.store = store
        self.options = options or ConversionOptions()
        self.issue_tracker = tracker or IssueTracker(log_level=self.options.log_level)
        self.schema = TableGroupSchema()
        self.unknown_schema: Optional[TableSchema] = None
        self.revision = 0
        self._type_tables: Dict[URIRef, TableSchema] = {}
        self._labels: Dict[URIRef, str] = {}
        self._vocabs = Graph()
        self._loaded_vocabs: Set[str] = set()

    def infer(self, window: WindowStore) -> TableGroupSchema:
        """Consume the whole window stream and return the locked schema."""
        for quad in window.init_stream():
            self.add_quad(quad, add_to_unknown=True)
        while not window.done:
            for quad in window.move_window():
                self.add_quad(quad, add_to_unknown=True)
        self.lock_current_schema()
        logging.info(f"Inferred {len(self.schema.tables)} table(s)")
        return self.schema

    def add_quad(self, quad: Quad, add_to_unknown: bool = False) -> None:
        if _is_structural(quad):
            return
        s, p, o, _ = quad
        tables = self._subject_tables(s)
        prefix = column_prefix(str(p))
        label = local_name(str(p)) if p == RDF.type else self.get_label(p)
        datatype = self._datatype(o)
        if not tables:
            if add_to_unknown:
                self._add_to_table(quad, label, prefix, datatype, self._unknown_table())
            return
        for table in tables:
            self._add_to_table(quad, label, prefix, datatype, table)

    def lock_current_schema(self, lock_template_uris: bool = False) -> None:
        """
        Lock the current tables; later quads go to new tables.

        With `lock_template_uris` the templates become `{+name}` so that they
        keep matching whatever IRIs arrive later.
        """
        self.schema.lock()
        for table in self.schema.tables:
            if not table.columns:
                continue
            first = table.columns[0]
            if lock_template_uris:
                first.about_url = f"{{+{first.name}}}"
            for col in table.columns[1:]:
                col.about_url = first.about_url
                if lock_template_uris and col.value_url:
                    col.value_url = f"{{+{col.name}}}"
        self.revision += 1

    def snapshot(self) -> TableGroupSchema:
        """Copy of the current schema in which every column describes the first column's subject."""
        clone = self.schema.clone()
        for table in clone.tables:
            for col in table.columns[1:]:
                col.about_url = table.columns[0].about_url
        return clone

    # ------------------------------ tables ------------------------------

    def _unknown_table(self) -> TableSchema:
        if self.unknown_schema is None:
            self.unknown_schema = self.schema.add_table(UNKNOWN_TYPE_TABLE)
            self.unknown_schema.add_column(SUBJECT_COLUMN, datatype="anyURI", titles="Subject ID")
            self.unknown_schema.add_primary_key(SUBJECT_COLUMN)
            self.revision += 1
        return self.unknown_schema

    def _subject_tables(self, subject) -> List[TableSchema]:
        tables = []
        for type_iri in self.store.objects(subject, RDF.type):
            if not isinstance(type_iri, URIRef) or str(type_iri).startswith(_CSVW_NS):
                continue
            table = self._type_tables.get(type_iri)
            if table is None:
                table = self._new_type_table(type_iri)
            tables.append(table)
        return tables

    def _new_type_table(self, type_iri: URIRef) -> TableSchema:
        stem = quote(self.get_label(type_iri), safe="") or "type"
        url = f"{stem}.csv"
        n = 2
        while self.schema.get_table(url) is not None:
            url = f"{stem}_{n}.csv"
            n += 1
        table = self.schema.add_table(url)
        table.add_column(
            SUBJECT_COLUMN,
            titles="Subject ID",
            datatype="anyURI",
            property_url=str(RDF.type),
            value_url=str(type_iri),
        )
        table.add_primary_key(SUBJECT_COLUMN)
        self._type_tables[type_iri] = table
        self.revision += 1
        logging.debug(f"New table {url} for type {type_iri}")
        return table

    def _add_to_table(self, quad: Quad, label: str, prefix: str, datatype: str, table: TableSchema) -> None:
        s, p, o, _ = quad
        if p == RDF.type:
            if not table.locked:
                self._update_about_url(table, s)
            return
        rel = self._relation_table(table, quad, prefix)
        if rel.locked:
            return
        col = rel.merge_column(
            self._column_name(rel, prefix, str(p)),
            datatype=datatype,
            titles=label,
            property_url=str(p),
        )
        self._update_value_url(col, o)
        self._update_about_url(rel, s)
        self.revision += 1

    def _relation_table(self, table: TableSchema, quad: Quad, prefix: str) -> TableSchema:
        """The table that takes the quad's predicate for subjects of `table`."""
        predicate = str(quad[1])
        if any(c.property_url == predicate for c in table.columns):
            return table
        subject_col = table.columns[0]
        for candidate in self.schema.tables:
            if (
                candidate is not table
                and len(candidate.columns) == 2
                and candidate.columns[0].value_url == subject_col.value_url
                and candidate.columns[0].property_url == subject_col.property_url
                and candidate.columns[1].property_url == predicate
            ):
                return candidate
        if not table.locked and not self._has_multiple_values(quad):
            return table

        url = f"{table.url[:-4]}_{prefix}{len(self.schema.tables)}.csv"
        rel = self.schema.add_table(url)
        rel.add_column(
            SUBJECT_COLUMN,
            titles="Subject ID",
            datatype="anyURI",
            property_url=subject_col.property_url,
            value_url=subject_col.value_url,
        )
        rel.primary_key = [SUBJECT_COLUMN, f"{prefix}1"]
        logging.debug(f"New relation table {url} for {predicate}")
        return rel

    def _has_multiple_values(self, quad: Quad) -> bool:
        s, p, _, _ = quad
        return len(self.store.objects(s, p)) > 1

    @staticmethod
    def _column_name(table: TableSchema, prefix: str, predicate: str) -> str:
        index = next((i for i, c in enumerate(table.columns) if c.property_url == predicate), len(table.columns))
        return f"{prefix}{index}"

    @staticmethod
    def _update_about_url(table: TableSchema, subject) -> None:
        if not isinstance(subject, URIRef):
            return
        col = table.columns[0]
        col.about_url = common_uri_template(col.about_url or str(subject), str(subject), col.name)

    @staticmethod
    def _update_value_url(col: ColumnSchema, obj) -> None:
        if not isinstance(obj, URIRef):
            return
        col.value_url = common_uri_template(col.value_url or str(obj), str(obj), col.name)

    @staticmethod
    def _datatype(obj) -> str:
        if isinstance(obj, (URIRef, BNode)):
            return "anyURI"
        if isinstance(obj, Literal):
            if obj.datatype is None:
                return "string"
            return BUILTIN_NAMES.get(str(obj.datatype), "anyAtomicType")
        return "anyAtomicType"

    # ------------------------------ labels ------------------------------

    def get_label(self, iri) -> str:
        """Label for a type or predicate: vocabulary label when enabled, else the IRI suffix."""
        suffix = local_name(str(iri))
        if not self.options.use_vocab_metadata or not isinstance(iri, URIRef):
            return suffix
        if iri in self._labels:
            return self._labels[iri]
        self._load_vocab(str(iri))
        label = self._vocab_label(iri) or suffix
        self._labels[iri] = label
        return label

    def _vocab_label(self, iri: URIRef) -> Optional[str]:
        pref = self.options.pref_lang
        fallback = None
        for predicate in (SKOS.prefLabel, RDFS.label):
            labels = [o for o in self._vocabs.objects(iri, predicate) if isinstance(o, Literal)]
            for label in labels:
                lang = (label.language or "").lower()
                if lang == pref or lang.startswith(pref + "-"):
                    return str(label)
                if not lang and fallback is None:
                    fallback = str(label)
            if fallback is None and labels:
                fallback = str(labels[0])
        return fallback

    def _load_vocab(self, iri: str) -> None:
        vocab = iri[: max(iri.rfind("#"), iri.rfind("/"))]
        if not vocab or vocab in self._loaded_vocabs:
            return
        self._loaded_vocabs.add(vocab)
        resolver = self.options.get_resolver()
        try:
            text = resolver.resolve_text(vocab, self.options.base_iri or None)
            self._vocabs.parse(data=text, format=guess_format(vocab, default="xml"), publicID=vocab)
        except (ResolutionError, ParserError, SAXException, SyntaxError, ValueError) as e:
            self.issue_tracker.add_warning(f"Could not load vocabulary {vocab}: {e}")
            return
        logging.info(f"Loaded vocabulary {vocab}")
