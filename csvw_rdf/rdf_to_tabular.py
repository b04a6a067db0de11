"""
RDF -> CSVW conversion.

Quads are loaded into a QuadStore, either all at once or through a bounded
WindowStore.  Every table of the descriptor (given or inferred) gets a
TableBinder that turns one subject into zero or more rows by matching the
column patterns against the resident quads.  A subject is bound just before
its first quad leaves the window, or at the end of the stream.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, Iterator, List, NamedTuple, Optional, Set, Tuple, Union
from urllib.parse import unquote

from rdflib import BNode, Literal, URIRef
from rdflib.namespace import RDF, XSD
from rdflib.term import Node

from .datatypes import codec_for
from .descriptor import normalize_descriptor
from .inference import SUBJECT_COLUMN, SchemaInferrer, is_unknown_type_table
from .issues import IssueTracker, LocationTracker
from .model import Column, Table, TableGroup
from .options import ConversionOptions
from .schema import TableGroupSchema
from .templates import (
    expand,
    extract,
    has_row_variables,
    resolve_iri,
    resolve_template,
    substitute_specials,
    template_pattern,
    variables,
)
from .vocab import CSVW, expand_iri
from .window import Quad, QuadStore, WindowStore


PROGRESS_EVERY = 10000

# marks bindings in which at least one pattern matched
_MATCHED = "__matched__"

Binding = Dict[str, Any]
Descriptor = Union[str, bytes, Dict[str, Any], TableGroup, TableGroupSchema]


class TableRow(NamedTuple):
    table: str
    row: Dict[str, str]


def _lang_matches(tag: Optional[str], wanted: str) -> bool:
    if not tag:
        return False
    tag, wanted = tag.lower(), wanted.lower()
    return wanted == "*" or tag == wanted or tag.startswith(wanted + "-")


class _ColumnPlan:
    """How one column is matched against the store."""

    def __init__(self, table: Table, column: Column, index: int, variable_for: Callable[[str], str]):
        self.column = column
        self.index = index
        self.name = column.name
        special_name = unquote(column.name)
        number = index + 1

        about = column.get("aboutUrl")
        prop = column.get("propertyUrl")
        value = column.get("valueUrl")
        self.about_key = about or ""
        self.value_key = value or None
        self.about_template = resolve_template(substitute_specials(about, number, special_name), table.url) if about else None
        self.value_template = resolve_template(substitute_specials(value, number, special_name), table.url) if value else None

        self.is_type = bool(prop) and expand_iri(prop) == str(RDF.type)
        self.binds_subject = self.is_type or column.name == SUBJECT_COLUMN
        self.subject_var = variable_for(self.about_key)

        self.predicate: Optional[URIRef] = None
        self.predicate_regex = None
        self.has_pattern = True
        if prop:
            prop = substitute_specials(prop, number, special_name)
            if has_row_variables(prop):
                self.predicate_regex = template_pattern(resolve_template(prop, table.url))[0]
            else:
                self.predicate = URIRef(resolve_iri(expand(prop, {}), table.url))
        elif self.binds_subject:
            self.has_pattern = False
        else:
            self.predicate = URIRef(f"{table.url}#{column.name}")

        self.constant: Optional[URIRef] = None
        if self.value_template is not None and not has_row_variables(self.value_template):
            self.constant = URIRef(expand(self.value_template, {}))
        self.about_regex = template_pattern(self.about_template)[0] if self.about_template else None
        self.value_regex = template_pattern(self.value_template)[0] if self.value_template else None

        if self.binds_subject:
            self.var = self.subject_var
        elif value:
            self.var = variable_for(value)
        else:
            self.var = f"_col{index}"

        dt = column.datatype
        lang = column.get("lang")
        self.lang = lang if lang and lang != "@none" and not value and dt.iri == str(XSD.string) else None
        separator = column.get("separator")
        self.separator = separator
        self.multi = None
        if separator is not None and not value:
            self.multi = "list" if column.ordered else "join"
        self.required = column.required
        self.formatter = codec_for(column)[0]

    def subject_ok(self, subject: Node) -> bool:
        if self.about_regex is None:
            return True
        return isinstance(subject, URIRef) and self.about_regex.match(str(subject)) is not None

    def object_ok(self, obj: Node) -> bool:
        if self.value_regex is not None:
            return not isinstance(obj, Literal) and self.value_regex.match(str(obj)) is not None
        if self.lang is not None:
            return isinstance(obj, Literal) and _lang_matches(obj.language, self.lang)
        return True


class TableBinder:
    """
    Bind the subjects of one table to rows.

    Columns sharing an aboutUrl share a subject variable; a column whose
    valueUrl equals another aboutUrl links that subject in as a nested group.
    Unrequired columns are optional, required ones drop rows that lack them.
    Several values of one column give one row per value unless the column has
    a separator.
    """

    def __init__(self, table: Table, store: QuadStore, tracker: IssueTracker):
        self.table = table
        self.store = store
        self.issue_tracker = tracker
        self._variables: Dict[str, str] = {}
        columns = table.schema.columns
        self.plans = [_ColumnPlan(table, c, i, self._variable_for) for i, c in enumerate(columns)]
        self.output = []
        for plan in self.plans:
            if plan.column.virtual:
                break
            self.output.append(plan)
        self.titles = [plan.column.title or f"_col.{plan.index + 1}" for plan in self.output]
        self.root_var = self.plans[0].subject_var if self.plans else None
        self.untyped_only = is_unknown_type_table(table.url)
        self._top_level = self._build_top_level()

    def _variable_for(self, key: str) -> str:
        if key not in self._variables:
            self._variables[key] = f"_{len(self._variables)}"
        return self._variables[key]

    def _build_top_level(self) -> List[Tuple[int, list]]:
        plans = self.plans
        primary_key = set(self.table.schema.primary_key)

        def referenced(plan: _ColumnPlan) -> bool:
            for other in plans:
                if other is plan:
                    continue
                if other.is_type:
                    if other.about_key and other.about_key == plan.about_key:
                        return True
                elif other.value_key and other.value_key == plan.about_key:
                    return True
            return False

        top = [
            (plan.index, self._children(plan, {plan.index}))
            for plan in plans
            if not referenced(plan) or plan.name in primary_key
        ]
        unrelated = [plans[i].name for i, _ in top if plans[i].subject_var != self.root_var]
        if unrelated:
            self.issue_tracker.add_warning(
                f"Columns {', '.join(unrelated)} of table {self.table.url} describe subjects "
                "unrelated to the first column and stay empty"
            )
        return top

    def _children(self, plan: _ColumnPlan, path: Set[int]) -> list:
        """Nested patterns of `plan` as a tree of (index, children)."""
        nested = []
        if plan.is_type:
            if plan.about_key:
                nested = [p for p in self.plans if p is not plan and p.about_key == plan.about_key]
        elif plan.value_key:
            type_column = next((p for p in self.plans if p.is_type and p.about_key == plan.value_key), None)
            nested = [
                p
                for p in self.plans
                if p is not plan and p.about_key == plan.value_key and (type_column is None or p.is_type)
            ]
        tree = []
        for child in nested:
            if child.index in path:
                logging.debug(f"Skipping cyclic reference to column {child.name} in {self.table.url}")
                continue
            tree.append((child.index, self._children(child, path | {child.index})))
        return tree

    # ------------------------------ matching ------------------------------

    def rows(self, subject: Node) -> Iterator[Binding]:
        """Solutions with `subject` as the root subject."""
        if self.root_var is None or not self.plans[0].subject_ok(subject):
            return
        if self.untyped_only and any(
            not str(t).startswith(str(CSVW)) for t in self.store.objects(subject, RDF.type)
        ):
            return
        for binding in self._solve(self._top_level, {self.root_var: subject}):
            if binding.get(_MATCHED):
                yield binding

    def _solve(self, blocks: list, binding: Binding) -> Iterator[Binding]:
        if not blocks:
            yield binding
            return
        (index, children), rest = blocks[0], blocks[1:]
        for partial in self._block(index, children, binding):
            yield from self._solve(rest, partial)

    def _block(self, index: int, children: list, binding: Binding) -> Iterator[Binding]:
        plan = self.plans[index]
        found = False
        for partial in self._match(plan, binding):
            for solution in self._solve(children, partial):
                found = True
                yield solution
        if not found and not plan.required:
            yield binding

    def _match(self, plan: _ColumnPlan, binding: Binding) -> Iterator[Binding]:
        subject = binding.get(plan.subject_var)
        if subject is None or isinstance(subject, tuple) or not plan.subject_ok(subject):
            return
        if not plan.has_pattern:
            yield binding
            return
        bound = binding.get(plan.var) if not plan.binds_subject else None
        for value in self._candidates(plan, subject):
            if bound is not None and bound != value:
                continue
            extended = dict(binding)
            extended[plan.var] = value
            extended[_MATCHED] = True
            yield extended

    def _objects(self, plan: _ColumnPlan, subject: Node) -> List[Node]:
        if plan.predicate_regex is not None:
            triples = [(p, o) for _, p, o in self.store.match(subject, None, None)]
            objects = [o for p, o in triples if plan.predicate_regex.match(str(p))]
        else:
            objects = self.store.objects(subject, plan.predicate)
        return [o for o in objects if plan.object_ok(o)]

    def _candidates(self, plan: _ColumnPlan, subject: Node) -> List[Any]:
        if plan.constant is not None:
            if plan.predicate is not None and not self.store.has(subject, plan.predicate, plan.constant):
                return []
            if plan.predicate is None and plan.constant not in self._objects(plan, subject):
                return []
            return [subject if plan.binds_subject else plan.constant]
        objects = self._objects(plan, subject)
        if plan.binds_subject:
            return [subject] if objects else []
        if not objects:
            return []
        if plan.multi == "join":
            return [tuple(objects)]
        if plan.multi == "list":
            return [tuple(self._list_items(head)) for head in objects]
        return objects

    def _list_items(self, head: Node) -> List[Node]:
        items = []
        seen = set()
        node = head
        while node != RDF.nil and node not in seen:
            seen.add(node)
            first = self.store.objects(node, RDF.first)
            if not first:
                break
            items.append(first[0])
            rest = self.store.objects(node, RDF.rest)
            node = rest[0] if rest else RDF.nil
        return items

    # ------------------------------ transform ------------------------------

    def to_row(self, binding: Binding) -> Dict[str, str]:
        row: Dict[str, str] = {}
        for title, plan in zip(self.titles, self.output):
            self.issue_tracker.location.update(column=plan.index + 1)
            value = binding.get(plan.var)
            if value is None:
                row[title] = plan.column.null_values[0]
            elif isinstance(value, tuple):
                separator = plan.separator if plan.separator is not None else " "
                row[title] = separator.join(self._cell(plan, v) for v in value)
            else:
                row[title] = self._cell(plan, value)
        self.issue_tracker.location.clear("column")
        return row

    def _cell(self, plan: _ColumnPlan, term: Node) -> str:
        if isinstance(term, BNode):
            return f"_:{term}"
        text = str(term)
        template = plan.about_template if plan.binds_subject else plan.value_template
        if template is not None and not isinstance(term, Literal) and plan.name in variables(template):
            text = extract(template, plan.name, text, self.issue_tracker)
        return plan.formatter(text, plan.column, self.issue_tracker)


class Rdf2CsvwConvertor:
    """
    Convert an RDF quad stream into rows of CSVW tables.

    With `window_size` unset the whole stream is loaded first.  Otherwise at
    most `window_size` quads are resident and rows come out as their subjects
    leave the window.
    """

    def __init__(self, options: Optional[ConversionOptions] = None, tracker: Optional[IssueTracker] = None):
        self.options = options or ConversionOptions()
        self.location = tracker.location if tracker is not None else LocationTracker()
        self.issue_tracker = tracker or IssueTracker(self.location, log_level=self.options.log_level)
        self.last_schema: Optional[TableGroup] = None
        self.inferred_schema: Optional[TableGroupSchema] = None

    # ------------------------------ public API ------------------------------

    def convert(self, quads: Iterable[Quad], descriptor: Optional[Descriptor] = None) -> Iterator[TableRow]:
        store = QuadStore()
        window = WindowStore(store, quads, self.options.window_size, self.options.effective_step_size())
        added = window.init_stream()
        if not added:
            logging.info("RDF input is empty")

        inferrer = None
        if descriptor is None:
            inferrer = SchemaInferrer(store, self.options, self.issue_tracker)
            for quad in added:
                inferrer.add_quad(quad, add_to_unknown=True)
            inferrer.lock_current_schema(lock_template_uris=window.window_size is not None)
            self.inferred_schema = inferrer.schema
        else:
            self.last_schema = self._normalize(descriptor)

        state = _FlushState(self, store)
        state.note(added, 0)
        if inferrer is not None:
            state.refresh(inferrer, bool(added))
        else:
            state.use(self.last_schema)

        while not window.done:
            pending_rows: List[TableRow] = []
            first_seq = window.seen
            added = window.move_window(
                before_evict=lambda evicting: pending_rows.extend(
                    state.flush_until(window.evicted_total + len(evicting))
                )
            )
            yield from pending_rows
            if inferrer is not None:
                revision = inferrer.revision
                for quad in added:
                    inferrer.add_quad(quad, add_to_unknown=True)
                if inferrer.revision != revision:
                    state.refresh(inferrer, True)
            state.prune()
            state.note(added, first_seq)

        yield from state.flush_until(None)
        logging.info(f"Converted {state.row_count} rows from {window.seen} quads")

    def infer_schema(self, quads: Iterable[Quad]) -> TableGroupSchema:
        store = QuadStore()
        window = WindowStore(store, quads, self.options.window_size, self.options.effective_step_size())
        inferrer = SchemaInferrer(store, self.options, self.issue_tracker)
        schema = inferrer.infer(window)
        if not schema.tables and window.seen:
            self.issue_tracker.add_warning("No tables could be inferred from the RDF input")
        self.inferred_schema = schema
        return schema

    # ------------------------------ helpers ------------------------------

    def _normalize(self, descriptor: Descriptor) -> TableGroup:
        if isinstance(descriptor, TableGroup):
            return descriptor
        if isinstance(descriptor, TableGroupSchema):
            descriptor.lock()
            descriptor = descriptor.to_descriptor()
        return normalize_descriptor(descriptor, self.options, self.issue_tracker)

    def binders_for(self, group: TableGroup, store: QuadStore) -> List[TableBinder]:
        binders = []
        for table in group.tables:
            self.location.update(table=table.url)
            if table.suppress_output:
                self.issue_tracker.add_warning(f"Skipping table {table.url}: suppressOutput set to true")
                continue
            if not table.schema.columns:
                self.issue_tracker.add_warning(f"Skipping table {table.url}: no columns found")
                continue
            binders.append(TableBinder(table, store, self.issue_tracker))
        self.location.reset()
        return binders


class _FlushState:
    """Subjects waiting to be bound, in order of first residency."""

    def __init__(self, convertor: Rdf2CsvwConvertor, store: QuadStore):
        self.convertor = convertor
        self.store = store
        self.binders: List[TableBinder] = []
        self.pending: Dict[Node, int] = {}
        self.done: Set[Tuple[str, Node]] = set()
        self.row_numbers: Dict[str, int] = {}
        self.row_count = 0

    def use(self, group: TableGroup) -> None:
        self.binders = self.convertor.binders_for(group, self.store)

    def refresh(self, inferrer: SchemaInferrer, has_input: bool) -> None:
        snapshot = inferrer.snapshot()
        if not snapshot.tables:
            if has_input:
                self.convertor.issue_tracker.add_warning("No tables could be inferred from the RDF input")
            self.binders = []
            return
        group = normalize_descriptor(snapshot.to_descriptor(), self.convertor.options, self.convertor.issue_tracker)
        self.convertor.last_schema = group
        self.use(group)

    def note(self, quads: List[Quad], first_seq: int) -> None:
        for offset, quad in enumerate(quads):
            subject = quad[0]
            if subject not in self.pending:
                self.pending[subject] = first_seq + offset

    def flush_until(self, threshold: Optional[int]) -> Iterator[TableRow]:
        """Bind pending subjects whose first quad sequence number is below `threshold` (all when None)."""
        while self.pending:
            subject, seq = next(iter(self.pending.items()))
            if threshold is not None and seq >= threshold:
                break
            del self.pending[subject]
            yield from self._bind(subject)

    def prune(self) -> None:
        """Forget bound subjects that no longer have a quad in the window."""
        self.done = {key for key in self.done if self.store.has(key[1], None, None)}

    def _bind(self, subject: Node) -> Iterator[TableRow]:
        location = self.convertor.location
        for binder in self.binders:
            url = binder.table.url
            key = (url, subject)
            if key in self.done:
                continue
            matched = False
            for binding in binder.rows(subject):
                matched = True
                number = self.row_numbers.get(url, 0) + 1
                self.row_numbers[url] = number
                location.update(table=url, row=number)
                yield TableRow(url, binder.to_row(binding))
                self.row_count += 1
                if self.row_count % PROGRESS_EVERY == 0:
                    logging.info(f"Processed {self.row_count} rows...")
            if matched:
                self.done.add(key)
        location.reset()
