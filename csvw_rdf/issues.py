"""
Issue collection with layered location context.

Every component records problems through an IssueTracker instead of raising.
Only non-recoverable errors interrupt the caller (as StructuralError).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import StructuralError
from .options import LogLevel


class LocationTracker:
    """
    Current position inside a conversion, as a stack of layers.

    Layers go from least to most specific.  Setting a layer drops every more
    specific layer that is not set in the same call.
    """

    LAYERS = ("table", "row", "column")

    def __init__(self):
        self._value: Dict[str, Any] = {}

    def update(self, **partial: Any) -> None:
        unknown = set(partial) - set(self.LAYERS)
        if unknown:
            raise ValueError(f"Unknown location layer(s): {', '.join(sorted(unknown))}")

        given = [i for i, layer in enumerate(self.LAYERS) if layer in partial]
        if not given:
            return
        deepest = max(given)
        new_value: Dict[str, Any] = {}
        for i, layer in enumerate(self.LAYERS[: deepest + 1]):
            if layer in partial:
                new_value[layer] = partial[layer]
            elif layer in self._value:
                new_value[layer] = self._value[layer]
            else:
                raise ValueError(
                    f"Cannot set location layer '{self.LAYERS[deepest]}' "
                    f"while enclosing layer '{layer}' is unset"
                )
        self._value = new_value

    def clear(self, layer: str) -> None:
        if layer not in self.LAYERS:
            raise ValueError(f"Unknown location layer: {layer}")
        index = self.LAYERS.index(layer)
        for inner in self.LAYERS[index:]:
            self._value.pop(inner, None)

    def reset(self) -> None:
        self._value = {}

    def snapshot(self) -> Dict[str, Any]:
        return dict(self._value)

    @property
    def value(self) -> Dict[str, Any]:
        return self.snapshot()


@dataclass(frozen=True)
class Issue:
    severity: str
    message: str
    location: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        return self.severity == "error"

    def __str__(self) -> str:
        label = "Error" if self.is_error else "Warning"
        if not self.location:
            return f"{label}: {self.message}"
        where = ", ".join(f"{k}: {v}" for k, v in self.location.items())
        return f"{label}: {self.message} ({where})"


class IssueTracker:
    """Collects errors and warnings; the caller decides whether to continue."""

    def __init__(self, location: Optional[LocationTracker] = None, log_level: LogLevel = LogLevel.WARN):
        self.location = location or LocationTracker()
        self.log_level = log_level
        self.issues: List[Issue] = []

    def add_error(self, message: str, recoverable: bool = False) -> Issue:
        issue = Issue("error", message, self.location.snapshot())
        self.issues.append(issue)
        if self.log_level >= LogLevel.ERROR:
            logging.error(str(issue))
        if not recoverable:
            raise StructuralError(message, issue)
        return issue

    def add_warning(self, message: str) -> Issue:
        issue = Issue("warning", message, self.location.snapshot())
        self.issues.append(issue)
        if self.log_level >= LogLevel.WARN:
            logging.warning(str(issue))
        return issue

    def get_errors(self) -> List[Issue]:
        return [i for i in self.issues if i.is_error]

    def get_warnings(self) -> List[Issue]:
        return [i for i in self.issues if not i.is_error]

    def has_errors(self) -> bool:
        return any(i.is_error for i in self.issues)
