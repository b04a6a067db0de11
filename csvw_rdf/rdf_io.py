"""
RDF parsing and serialization on top of rdflib.

N-Triples and N-Quads are read line by line so that large dumps can be fed to
the windowed convertor without loading them first.  Other formats are parsed
as one document.
"""

from __future__ import annotations

import io
import logging
from typing import BinaryIO, Dict, Iterable, Iterator, Optional, TextIO, Union

import requests
from rdflib import Dataset, Graph, URIRef
from rdflib.graph import DATASET_DEFAULT_GRAPH_ID

from .issues import IssueTracker
from .vocab import COMMON_PREFIXES
from .window import Quad


PREFIX_CC = "https://prefix.cc/reverse"

# file extension / user format name -> rdflib plugin name
FORMATS: Dict[str, str] = {
    "ttl": "turtle",
    "turtle": "turtle",
    "n3": "n3",
    "nt": "nt",
    "ntriples": "nt",
    "n-triples": "nt",
    "nq": "nquads",
    "nquads": "nquads",
    "n-quads": "nquads",
    "trig": "trig",
    "jsonld": "json-ld",
    "json-ld": "json-ld",
    "json": "json-ld",
    "rdf": "xml",
    "rdfxml": "xml",
    "xml": "xml",
    "owl": "xml",
}
LINE_FORMATS = ("nt", "nquads")
QUAD_FORMATS = ("nquads", "trig", "json-ld")


def guess_format(path_or_url: str, explicit: Optional[str] = None, default: Optional[str] = "turtle") -> Optional[str]:
    """rdflib format name for an explicit name or the file extension."""
    if explicit:
        fmt = FORMATS.get(explicit.lower())
        if fmt is None:
            raise ValueError(f"Unknown RDF format: {explicit}")
        return fmt
    path = path_or_url.split("#", 1)[0].split("?", 1)[0]
    ext = path.rsplit(".", 1)[-1].lower() if "." in path.rsplit("/", 1)[-1] else ""
    return FORMATS.get(ext, default)


def _graph_or_none(graph) -> Optional[URIRef]:
    identifier = getattr(graph, "identifier", graph)
    if identifier is None or identifier == DATASET_DEFAULT_GRAPH_ID:
        return None
    return identifier


def _text(stream: Union[BinaryIO, TextIO]) -> TextIO:
    if isinstance(stream, io.TextIOBase):
        return stream
    return io.TextIOWrapper(stream, encoding="utf-8", newline="")


def read_quads(stream: Union[BinaryIO, TextIO], fmt: str, base: Optional[str] = None) -> Iterator[Quad]:
    """
    Yield (s, p, o, g) quads from `stream`, g=None for the default graph.

    Blank node labels are shared across the whole stream.
    """
    if fmt in LINE_FORMATS:
        bnodes: Dict[str, object] = {}
        for number, line in enumerate(_text(stream), start=1):
            if not line.strip() or line.lstrip().startswith("#"):
                continue
            dataset = Dataset()
            target = dataset if fmt in QUAD_FORMATS else dataset.default_graph
            target.parse(data=line, format=fmt, bnode_context=bnodes)
            for s, p, o, g in dataset.quads((None, None, None, None)):
                yield s, p, o, _graph_or_none(g)
            if number % 100000 == 0:
                logging.info(f"Read {number} lines...")
        return

    dataset = Dataset()
    if fmt in QUAD_FORMATS:
        dataset.parse(source=stream, format=fmt, publicID=base)
    else:
        dataset.default_graph.parse(source=stream, format=fmt, publicID=base)
    logging.info(f"Parsed {len(dataset)} triples ({fmt})")
    for s, p, o, g in dataset.quads((None, None, None, None)):
        yield s, p, o, _graph_or_none(g)


def write_quads(quads: Iterable[Quad], out: TextIO, fmt: str, prefixes: Optional[Dict[str, str]] = None) -> int:
    """Serialize `quads` to `out`; line formats are written as they arrive."""
    count = 0
    if fmt in LINE_FORMATS:
        for s, p, o, g in quads:
            terms = [s.n3(), p.n3(), o.n3()]
            if fmt == "nquads" and g is not None:
                terms.append(g.n3())
            out.write(" ".join(terms) + " .\n")
            count += 1
        return count

    if fmt in QUAD_FORMATS:
        store = Dataset()
        for s, p, o, g in quads:
            store.add((s, p, o, g if g is not None else DATASET_DEFAULT_GRAPH_ID))
            count += 1
    else:
        store = Graph()
        for s, p, o, _ in quads:
            store.add((s, p, o))
            count += 1
    for prefix, namespace in (prefixes or {}).items():
        store.bind(prefix, namespace, override=True, replace=True)
    out.write(store.serialize(format=fmt))
    return count


def prefix_candidates(iris: Iterable[str]) -> Dict[str, None]:
    """Namespaces (up to the first '#' or last '/') that could become prefixes."""
    candidates: Dict[str, None] = {}
    for iri in iris:
        hash_index = iri.find("#")
        if hash_index > 0:
            candidates.setdefault(iri[: hash_index + 1])
        elif hash_index == -1:
            slash = iri.rfind("/")
            if slash > 0:
                candidates.setdefault(iri[: slash + 1])
    return candidates


def lookup_prefixes(
    iris: Iterable[str],
    prefixes: Optional[Dict[str, str]] = None,
    session: Optional[requests.Session] = None,
    tracker: Optional[IssueTracker] = None,
    timeout: float = 10.0,
) -> Dict[str, str]:
    """
    Choose prefixes for the namespaces used by `iris`.

    Known prefixes win, then the common prefixes, then prefix.cc.  Lookup
    failures are reported as warnings and leave the namespace unprefixed.
    """
    result = dict(prefixes or {})
    used = set(result.values())
    common = {ns: prefix for prefix, ns in COMMON_PREFIXES.items()}
    session = session or requests.Session()
    for candidate in prefix_candidates(iris):
        if candidate in used:
            continue
        prefix = common.get(candidate)
        if prefix is None and candidate.startswith("http"):
            try:
                response = session.get(PREFIX_CC, params={"uri": candidate, "format": "json"}, timeout=timeout)
                response.raise_for_status()
                prefix = next(iter(response.json()), None)
            except (requests.RequestException, ValueError) as e:
                message = f"Prefix lookup failed for {candidate}: {e}"
                if tracker is not None:
                    tracker.add_warning(message)
                else:
                    logging.warning(message)
        if prefix and prefix not in result:
            result[prefix] = candidate
            used.add(candidate)
    return result
