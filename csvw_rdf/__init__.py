"""
csvw_rdf: CSV on the Web (CSVW) <-> RDF conversion.

    convert_tabular_to_rdf()   descriptor (+ CSV files) -> quads
    validate_tabular()         descriptor (+ CSV files) -> issues
    convert_rdf_to_tabular()   quads -> rows, with a descriptor or an inferred schema
    infer_schema()             quads -> editable TableGroupSchema

All four return lazily evaluated iterators (infer_schema excepted) and accept
a ConversionOptions instance.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Iterator, Optional, Union

from .errors import CsvwError, ResolutionError, SchemaError, StoreError, StructuralError
from .issues import Issue, IssueTracker, LocationTracker
from .model import TableGroup
from .options import ConversionOptions, LogLevel
from .rdf_to_tabular import Rdf2CsvwConvertor, TableRow
from .schema import ColumnSchema, TableGroupSchema, TableSchema
from .tabular_to_rdf import Csvw2RdfConvertor, Quad

__version__ = "0.1.0"

__all__ = [
    "ColumnSchema",
    "ConversionOptions",
    "Csvw2RdfConvertor",
    "CsvwError",
    "Issue",
    "IssueTracker",
    "LocationTracker",
    "LogLevel",
    "Quad",
    "Rdf2CsvwConvertor",
    "ResolutionError",
    "SchemaError",
    "StoreError",
    "StructuralError",
    "TableGroup",
    "TableGroupSchema",
    "TableRow",
    "TableSchema",
    "convert_rdf_to_tabular",
    "convert_tabular_to_rdf",
    "infer_schema",
    "validate_tabular",
]

TabularInput = Union[str, bytes, Dict[str, Any], TableGroup]


def convert_tabular_to_rdf(
    descriptor: TabularInput,
    options: Optional[ConversionOptions] = None,
    url: Optional[str] = None,
) -> Iterator[Quad]:
    """
    Convert the tables described by `descriptor` into quads.

    `url` is where the descriptor came from and serves as its base.  A fatal
    problem raises a CsvwError; quads already yielded are the partial result.
    """
    return Csvw2RdfConvertor(options).convert(descriptor, url=url)


def validate_tabular(
    descriptor: TabularInput,
    options: Optional[ConversionOptions] = None,
    url: Optional[str] = None,
) -> Iterator[Issue]:
    """Run the conversion without emitting quads and yield the issues found."""
    return Csvw2RdfConvertor(options).validate(descriptor, url=url)


def convert_rdf_to_tabular(
    quads: Iterable[Quad],
    options: Optional[ConversionOptions] = None,
    descriptor: Optional[Union[TabularInput, TableGroupSchema]] = None,
) -> Iterator[TableRow]:
    """Convert quads into table rows, inferring a schema when no descriptor is given."""
    return Rdf2CsvwConvertor(options).convert(quads, descriptor)


def infer_schema(quads: Iterable[Quad], options: Optional[ConversionOptions] = None) -> TableGroupSchema:
    return Rdf2CsvwConvertor(options).infer_schema(quads)
