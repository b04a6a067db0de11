"""
URI template codec for aboutUrl / propertyUrl / valueUrl.

expand()  fills a template from a row (RFC 6570 via `uritemplate`).
extract() inverts it: it recovers one variable's value from a produced IRI.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import unquote, urljoin, urlsplit, urlunsplit

from uritemplate import URITemplate

from .vocab import expand_iri


PLACEHOLDER = re.compile(r"\{([+#./;?&]?)([^{}]*)\}")

SPECIAL_VARIABLES = ("_column", "_sourceColumn", "_row", "_sourceRow", "_name")

# operator -> (text before the first variable, separator between variables)
_OPERATORS = {
    "": ("", ","),
    "+": ("", ","),
    "#": ("#", ","),
    ".": (".", "."),
    "/": ("/", "/"),
    ";": (";", ";"),
    "?": ("?", "&"),
    "&": ("&", "&"),
}
_NAMED_OPERATORS = {";", "?", "&"}

_ABSOLUTE = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*:")


def _var_name(varspec: str) -> str:
    return varspec.split(":", 1)[0].rstrip("*")


def variables(template: str):
    """Variable names used by a template, in order of appearance."""
    names = []
    for m in PLACEHOLDER.finditer(template):
        for varspec in m.group(2).split(","):
            name = _var_name(varspec.strip())
            if name and name not in names:
                names.append(name)
    return names


def expand(template: str, bindings: Mapping[str, Any], tracker=None) -> str:
    """
    Expand `template` with `bindings`.

    A binding whose value is None is undefined and expands to nothing.  A variable
    that has no binding at all also expands to nothing but is reported.
    """
    missing = [name for name in variables(template) if name not in bindings]
    if missing and tracker is not None:
        tracker.add_warning(
            f"Template {template!r} references unknown variable(s): {', '.join(missing)}"
        )
    values = {}
    for k, v in bindings.items():
        if v is None:
            continue
        values[k] = [str(x) for x in v] if isinstance(v, (list, tuple)) else str(v)
    return URITemplate(template).expand(values)


def template_pattern(template: str) -> Tuple["re.Pattern[str]", Dict[str, str]]:
    """
    Compile `template` into an anchored regex.

    Each variable becomes a non-greedy named group, preceded by its operator text
    as an optional literal.  Returns the regex and a map group name -> variable.
    """
    parts = []
    groups: Dict[str, str] = {}
    pos = 0
    for m in PLACEHOLDER.finditer(template):
        parts.append(re.escape(template[pos:m.start()]))
        op = m.group(1)
        first, sep = _OPERATORS[op]
        for k, varspec in enumerate(m.group(2).split(",")):
            name = _var_name(varspec.strip())
            lead = first if k == 0 else sep
            if op in _NAMED_OPERATORS:
                lead += name + "="
            group = f"v{len(groups)}"
            if name in groups.values():
                # repeated variable must produce the same text again
                previous = next(g for g, n in groups.items() if n == name)
                parts.append(f"(?:{re.escape(lead)})?(?P={previous})")
                continue
            groups[group] = name
            prefix = f"(?:{re.escape(lead)})?" if lead else ""
            parts.append(f"{prefix}(?P<{group}>.*?)")
        pos = m.end()
    parts.append(re.escape(template[pos:]))
    return re.compile("^" + "".join(parts) + "$", re.DOTALL), groups


def extract(template: str, column_name: str, iri: str, tracker=None) -> str:
    """Recover the value of `column_name` from `iri`; on any mismatch return `iri` unchanged."""
    value = iri
    if value.startswith("<") and value.endswith(">"):
        value = value[1:-1]

    pattern, groups = template_pattern(template)
    group = next((g for g, name in groups.items() if name == column_name), None)
    if group is None:
        if tracker is not None:
            tracker.add_warning(f"Column {column_name!r} does not appear in template {template!r}")
        return iri

    m = pattern.match(value)
    if m is None or not m.group(group):
        if tracker is not None:
            tracker.add_warning(f"Value {iri!r} does not match template {template!r}")
        return iri
    return unquote(m.group(group))


def substitute_specials(template: str, column_number: int, name: str) -> str:
    """Expand only the column-level placeholders; row data placeholders are kept."""
    specials = {"_column": str(column_number), "_sourceColumn": str(column_number), "_name": name}

    def repl(m: "re.Match[str]") -> str:
        names = [_var_name(v.strip()) for v in m.group(2).split(",")]
        if names and all(n in specials for n in names):
            return URITemplate(m.group(0)).expand(specials)
        return m.group(0)

    return PLACEHOLDER.sub(repl, template)


def has_row_variables(template: str) -> bool:
    return any(name not in ("_column", "_sourceColumn", "_name") for name in variables(template))


def resolve_template(template: str, base: Optional[str]) -> str:
    """
    Make a template absolute: expand a known prefix, then resolve the literal
    text before the first placeholder against `base`.
    """
    template = expand_iri(template)
    m = PLACEHOLDER.search(template)
    head = template[: m.start()] if m else template
    if not base or _ABSOLUTE.match(template) or (m is not None and m.start() == 0):
        return template
    # the sentinel keeps empty fragments and queries through urljoin
    joined = urljoin(base, head + "_")[:-1]
    return joined + template[len(head):]


def resolve_iri(iri: str, base: Optional[str]) -> str:
    iri = expand_iri(iri)
    if not base or _ABSOLUTE.match(iri):
        return iri
    return urljoin(base, iri)


_ESCAPES = re.compile(r"(?:%[0-9A-Fa-f]{2})+")


def to_iri(uri: str) -> str:
    """Turn IDNA host labels and percent-escaped non-ASCII text back into characters."""
    parts = urlsplit(uri)
    netloc = parts.netloc
    if parts.hostname and "xn--" in parts.hostname:
        try:
            host = parts.hostname.encode("ascii").decode("idna")
            netloc = netloc.replace(parts.hostname, host)
        except UnicodeError as e:
            logging.debug(f"Keeping punycode host {parts.hostname}: {e}")

    def decode(m: "re.Match[str]") -> str:
        try:
            text = unquote(m.group(0), errors="strict")
        except UnicodeDecodeError:
            return m.group(0)
        return text if any(ord(c) > 127 for c in text) else m.group(0)

    return urlunsplit(
        (parts.scheme, netloc, _ESCAPES.sub(decode, parts.path),
         _ESCAPES.sub(decode, parts.query), _ESCAPES.sub(decode, parts.fragment))
    )
