"""Exception classes raised by the conversion pipelines."""

from __future__ import annotations

from typing import Optional


class CsvwError(Exception):
    """Base class for all fatal conversion errors."""


class StructuralError(CsvwError):
    """The descriptor or the CSV data is structurally broken; conversion stops."""

    def __init__(self, message: str, issue=None):
        super().__init__(message)
        self.issue = issue


class ResolutionError(CsvwError):
    """A resource required by the conversion could not be fetched."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class StoreError(CsvwError):
    """The resident window store failed to accept or evict a quad."""


class SchemaError(CsvwError):
    """An invalid edit was attempted on a table group schema."""
