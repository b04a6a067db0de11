"""
Validated descriptor tree: TableGroup -> Table -> Schema -> Column.

Nodes are built by descriptor.normalize_descriptor(); header processing may
still add titles or columns before the first data row.  Inherited properties
are looked up through the parent chain; the nearest explicit value wins.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .vocab import DATATYPE_IRIS, CSVW_CONTEXT


INHERITED_PROPERTIES = (
    "aboutUrl",
    "datatype",
    "default",
    "lang",
    "null",
    "ordered",
    "propertyUrl",
    "required",
    "separator",
    "textDirection",
    "valueUrl",
)


@dataclass
class Datatype:
    base: str = "string"
    format: Any = None
    length: Optional[int] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    min_inclusive: Optional[str] = None
    max_inclusive: Optional[str] = None
    min_exclusive: Optional[str] = None
    max_exclusive: Optional[str] = None
    id: Optional[str] = None

    @property
    def base_iri(self) -> str:
        return DATATYPE_IRIS.get(self.base, DATATYPE_IRIS["string"])

    @property
    def iri(self) -> str:
        """IRI used for literals: an explicit @id wins over the base type."""
        return self.id or self.base_iri


@dataclass
class Dialect:
    comment_prefix: Optional[str] = "#"
    delimiter: str = ","
    double_quote: bool = True
    encoding: Optional[str] = None
    header: bool = True
    header_row_count: int = 1
    line_terminators: List[str] = field(default_factory=lambda: ["\r\n", "\n"])
    quote_char: Optional[str] = '"'
    skip_blank_rows: bool = False
    skip_columns: int = 0
    skip_initial_space: bool = False
    skip_rows: int = 0
    trim: Any = True


class _Node:
    """Mixin providing inherited property lookup through `parent`."""

    inherited: Dict[str, Any]
    parent: Optional["_Node"]

    def get(self, prop: str, default: Any = None) -> Any:
        node: Optional[_Node] = self
        while node is not None:
            if prop in node.inherited:
                return node.inherited[prop]
            node = node.parent
        return default

    @property
    def datatype(self) -> Datatype:
        dt = self.get("datatype")
        return dt if dt is not None else Datatype()

    @property
    def null_values(self) -> List[str]:
        value = self.get("null")
        if value is None:
            return [""]
        return value if isinstance(value, list) else [value]

    @property
    def required(self) -> bool:
        return bool(self.get("required", False))

    @property
    def ordered(self) -> bool:
        return bool(self.get("ordered", False))


@dataclass
class Column(_Node):
    name: Optional[str] = None
    titles: Dict[str, List[str]] = field(default_factory=dict)
    virtual: bool = False
    suppress_output: bool = False
    id: Optional[str] = None
    inherited: Dict[str, Any] = field(default_factory=dict)
    common: Dict[str, Any] = field(default_factory=dict)
    parent: Optional["Schema"] = field(default=None, repr=False, compare=False)

    @property
    def title(self) -> str:
        """Display title used as the row key when converting back to tables."""
        lang = self.table_default_language()
        if lang in self.titles and self.titles[lang]:
            return self.titles[lang][0]
        for values in self.titles.values():
            if values:
                return values[0]
        return self.name or ""

    def table_default_language(self) -> str:
        table = self.parent.parent if self.parent is not None else None
        group = table.parent if table is not None else None
        return getattr(group, "language", None) or "@none"

    @property
    def number(self) -> int:
        """1-based position inside the schema."""
        return self.parent.columns.index(self) + 1 if self.parent is not None else 1


@dataclass
class ForeignKey:
    column_reference: List[str]
    resource: Optional[str] = None
    schema_reference: Optional[str] = None
    ref_columns: List[str] = field(default_factory=list)


@dataclass
class Schema(_Node):
    columns: List[Column] = field(default_factory=list)
    primary_key: List[str] = field(default_factory=list)
    foreign_keys: List[ForeignKey] = field(default_factory=list)
    row_titles: List[str] = field(default_factory=list)
    id: Optional[str] = None
    inherited: Dict[str, Any] = field(default_factory=dict)
    common: Dict[str, Any] = field(default_factory=dict)
    parent: Optional["Table"] = field(default=None, repr=False, compare=False)

    def column(self, name: str) -> Optional[Column]:
        return next((c for c in self.columns if c.name == name), None)


@dataclass
class Table(_Node):
    url: str = ""
    schema: Schema = field(default_factory=Schema)
    dialect: Optional[Dialect] = None
    suppress_output: bool = False
    table_direction: str = "auto"
    id: Optional[str] = None
    notes: List[Any] = field(default_factory=list)
    inherited: Dict[str, Any] = field(default_factory=dict)
    common: Dict[str, Any] = field(default_factory=dict)
    parent: Optional["TableGroup"] = field(default=None, repr=False, compare=False)

    @property
    def effective_dialect(self) -> Dialect:
        if self.dialect is not None:
            return self.dialect
        if self.parent is not None and self.parent.dialect is not None:
            return self.parent.dialect
        return Dialect()


@dataclass
class TableGroup(_Node):
    tables: List[Table] = field(default_factory=list)
    dialect: Optional[Dialect] = None
    table_direction: str = "auto"
    id: Optional[str] = None
    notes: List[Any] = field(default_factory=list)
    base: Optional[str] = None
    language: Optional[str] = None
    is_table_group: bool = True
    context: Any = CSVW_CONTEXT
    url: Optional[str] = None
    inherited: Dict[str, Any] = field(default_factory=dict)
    common: Dict[str, Any] = field(default_factory=dict)
    parent: None = field(default=None, repr=False, compare=False)
