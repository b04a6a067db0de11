"""Conversion options shared by both pipelines."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, List, Optional, Tuple, Union


class LogLevel(IntEnum):
    ERROR = 0
    WARN = 1
    INFO = 2
    DEBUG = 3

    def to_logging(self) -> int:
        return {
            LogLevel.ERROR: logging.ERROR,
            LogLevel.WARN: logging.WARNING,
            LogLevel.INFO: logging.INFO,
            LogLevel.DEBUG: logging.DEBUG,
        }[self]


PathOverride = Tuple[Union[str, "re.Pattern[str]"], str]


@dataclass
class ConversionOptions:
    """
    Options recognized by the tabular->RDF and RDF->tabular convertors.

    path_overrides    (from, to) pairs; `from` is a literal prefix or a compiled regex
    base_iri          base used to resolve relative descriptor and table URLs
    template_iris     turn templated IRIs (IDNA hosts, percent escapes) into IRI form
    minimal           validate only, emit no quads
    standard_mode     also emit csvw:TableGroup/Table/Row structure triples
    window_size       resident quad limit for RDF->tabular; None loads everything
    step_size         quads added per window advance; defaults to max(W // 10, 1)
    use_vocab_metadata  fetch vocabularies to label inferred tables and columns
    """

    path_overrides: List[PathOverride] = field(default_factory=list)
    base_iri: str = ""
    template_iris: bool = False
    minimal: bool = False
    standard_mode: bool = True
    window_size: Optional[int] = None
    step_size: Optional[int] = None
    use_vocab_metadata: bool = False
    pref_lang: str = "en"
    log_level: LogLevel = LogLevel.WARN
    resolver: Any = None
    cache_errors: bool = False

    def effective_step_size(self) -> Optional[int]:
        if self.window_size is None:
            return None
        if self.step_size:
            return self.step_size
        return max(self.window_size // 10, 1)

    def get_resolver(self):
        """Return the configured resolver, creating one bound to these options if needed."""
        if self.resolver is None:
            from .resolvers import FetchCache, Resolver

            self.resolver = Resolver(
                path_overrides=self.path_overrides,
                cache=FetchCache(cache_errors=self.cache_errors),
            )
        return self.resolver
