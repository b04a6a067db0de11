#!/usr/bin/env python3
# ----------------------------- requirements.txt -----------------------------
# rdflib==7.1.0
# chardet==5.2.0
# python-dateutil==2.9.0.post0
# uritemplate==4.1.1
# language-tags==1.2.0
# requests==2.32.3
# ---------------------------------------------------------------------------

"""
CSVW <-> RDF from the command line.

USAGE
------
python -m csvw_rdf csvw2rdf --input data.csv-metadata.json --format ttl --output data.ttl
python -m csvw_rdf csvw2rdf --input data.csv --output data.nt --format nt
python -m csvw_rdf rdf2csvw --input dump.nt --out-dir tables/ --window-size 100000
python -m csvw_rdf rdf2csvw --input dump.ttl --descriptor tables.json --out-dir tables/
python -m csvw_rdf validate --input data.csv-metadata.json
python -m csvw_rdf infer-schema --input dump.ttl --output schema.json

Notes
-----
- Inputs ending in .csv are converted with metadata discovery
  (`{+url}-metadata.json`, `csv-metadata.json`, or /.well-known/csvm); anything
  else is read as a metadata document.
- --path-override FROM TO serves remote URLs from another location, e.g. a
  local directory. It can be repeated; the longest matching prefix wins.
- N-Triples and N-Quads are streamed. Other RDF formats are parsed whole.
- rdf2csvw writes one CSV per table, named after the last segment of the table url.
"""

from __future__ import annotations

import argparse
import csv
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, TextIO
from urllib.parse import unquote, urlsplit

from rdflib import URIRef

from .descriptor import load_descriptor
from .errors import CsvwError
from .options import ConversionOptions, LogLevel
from .rdf_io import LINE_FORMATS, guess_format, lookup_prefixes, read_quads, write_quads
from .rdf_to_tabular import Rdf2CsvwConvertor
from .tabular_to_rdf import Csvw2RdfConvertor
from .vocab import COMMON_PREFIXES


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Set up logging configuration."""
    if quiet:
        level = logging.WARNING
    else:
        level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def build_options(args: argparse.Namespace) -> ConversionOptions:
    """ConversionOptions from the common command line flags."""
    if args.verbose:
        log_level = LogLevel.DEBUG
    elif args.quiet:
        log_level = LogLevel.WARN
    else:
        log_level = LogLevel.INFO
    return ConversionOptions(
        path_overrides=[(source, target) for source, target in (args.path_override or [])],
        base_iri=args.base_iri or "",
        template_iris=args.template_iris,
        minimal=args.minimal,
        window_size=getattr(args, "window_size", None),
        step_size=getattr(args, "step_size", None),
        use_vocab_metadata=args.use_vocab_metadata,
        log_level=log_level,
    )


def table_file_name(table_url: str) -> str:
    """Local file name for a table url: its last path segment, unescaped."""
    path = urlsplit(table_url).path if "://" in table_url else table_url
    name = unquote(path.rstrip("/").rsplit("/", 1)[-1])
    return name or "table.csv"


def _open_output(path: Optional[Path]) -> TextIO:
    if path is None:
        return sys.stdout
    path.parent.mkdir(parents=True, exist_ok=True)
    return path.open("w", encoding="utf-8", newline="")


# ------------------------------ commands ------------------------------

def run_csvw2rdf(args: argparse.Namespace, options: ConversionOptions) -> int:
    convertor = Csvw2RdfConvertor(options)
    source = str(args.input)
    if source.lower().endswith(".csv"):
        quads = convertor.convert_from_csv(source)
    else:
        text = options.get_resolver().resolve_jsonld(source, options.base_iri or None)
        quads = convertor.convert(text, url=source)

    fmt = guess_format(str(args.output or ""), args.format)
    out = _open_output(args.output)
    try:
        if fmt in LINE_FORMATS:
            count = write_quads(quads, out, fmt)
        else:
            collected = list(quads)
            prefixes = dict(COMMON_PREFIXES)
            if args.lookup_prefixes:
                iris = {str(term) for quad in collected for term in quad[:2] if isinstance(term, URIRef)}
                prefixes = lookup_prefixes(iris, prefixes, session=options.get_resolver().session, tracker=convertor.issue_tracker)
            count = write_quads(collected, out, fmt, prefixes)
    finally:
        if out is not sys.stdout:
            out.close()
    logging.info(f"Wrote {count} quads ({fmt})")
    if convertor.issue_tracker.get_warnings():
        logging.info(f"{len(convertor.issue_tracker.get_warnings())} warning(s) reported")
    return 0


def run_rdf2csvw(args: argparse.Namespace, options: ConversionOptions) -> int:
    convertor = Rdf2CsvwConvertor(options)
    descriptor = None
    if args.descriptor:
        descriptor = load_descriptor(str(args.descriptor), options, convertor.issue_tracker)

    out_dir: Path = args.out_dir
    out_dir.mkdir(parents=True, exist_ok=True)
    files: Dict[str, TextIO] = {}
    writers: Dict[str, csv.DictWriter] = {}
    counts: Dict[str, int] = {}
    try:
        with open(args.input, "rb") as stream:
            quads = read_quads(stream, guess_format(str(args.input), args.format), base=options.base_iri or None)
            for table_url, row in convertor.convert(quads, descriptor):
                writer = writers.get(table_url)
                if writer is None:
                    path = out_dir / table_file_name(table_url)
                    logging.info(f"Writing table {table_url} to {path}")
                    files[table_url] = path.open("w", encoding="utf-8", newline="")
                    writer = csv.DictWriter(files[table_url], fieldnames=list(row), extrasaction="ignore")
                    writer.writeheader()
                    writers[table_url] = writer
                writer.writerow(row)
                counts[table_url] = counts.get(table_url, 0) + 1
    finally:
        for f in files.values():
            f.close()

    if convertor.inferred_schema is not None and args.write_schema:
        schema_path = out_dir / "csv-metadata.json"
        schema_path.write_text(json.dumps(convertor.inferred_schema.to_descriptor(), indent=2), encoding="utf-8")
        logging.info(f"Wrote inferred schema to {schema_path}")
    for table_url, n in counts.items():
        logging.info(f"{table_url}: {n} rows")
    return 0


def run_validate(args: argparse.Namespace, options: ConversionOptions) -> int:
    convertor = Csvw2RdfConvertor(options)
    source = str(args.input)
    if source.lower().endswith(".csv"):
        group = convertor.locate_metadata(source)
        issues = convertor.validate(group)
    else:
        text = options.get_resolver().resolve_jsonld(source, options.base_iri or None)
        issues = convertor.validate(text, url=source)

    errors = 0
    for issue in issues:
        print(str(issue))
        if issue.is_error:
            errors += 1
    warnings = len(convertor.issue_tracker.get_warnings())
    print(f"{errors} error(s), {warnings} warning(s)")
    return 1 if errors else 0


def run_infer_schema(args: argparse.Namespace, options: ConversionOptions) -> int:
    convertor = Rdf2CsvwConvertor(options)
    with open(args.input, "rb") as stream:
        quads = read_quads(stream, guess_format(str(args.input), args.format), base=options.base_iri or None)
        schema = convertor.infer_schema(quads)
    out = _open_output(args.output)
    try:
        json.dump(schema.to_descriptor(), out, indent=2)
        out.write("\n")
    finally:
        if out is not sys.stdout:
            out.close()
    logging.info(f"Inferred {len(schema)} table(s)")
    return 0


COMMANDS = {
    "csvw2rdf": run_csvw2rdf,
    "rdf2csvw": run_rdf2csvw,
    "validate": run_validate,
    "infer-schema": run_infer_schema,
}


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--base-iri", help="Base IRI for relative descriptor and table URLs")
    p.add_argument("--path-override", nargs=2, action="append", metavar=("FROM", "TO"),
                   help="Read URLs starting with FROM from TO instead (repeatable)")
    p.add_argument("--template-iris", action="store_true", help="Convert templated URIs to IRI form")
    p.add_argument("--minimal", action="store_true", help="Validate only, emit no triples")
    p.add_argument("--use-vocab-metadata", action="store_true",
                   help="Fetch vocabularies to label inferred tables and columns")
    p.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    p.add_argument("--quiet", action="store_true", help="Only log warnings and errors")


def parse_args(argv: Optional[List[str]] = None):
    p = argparse.ArgumentParser(description="Convert between CSV on the Web (CSVW) and RDF.")
    sub = p.add_subparsers(dest="command", required=True)

    c = sub.add_parser("csvw2rdf", help="CSV + CSVW metadata -> RDF")
    c.add_argument("--input", "-i", required=True, help="Metadata document, or a CSV file to discover metadata for")
    c.add_argument("--format", "-f", help="Output RDF format (ttl, nt, nq, trig, jsonld, rdf); default from --output or ttl")
    c.add_argument("--output", "-o", type=Path, help="Output path (stdout if omitted)")
    c.add_argument("--lookup-prefixes", action="store_true", help="Look up namespace prefixes on prefix.cc")
    _add_common(c)

    r = sub.add_parser("rdf2csvw", help="RDF -> CSV tables")
    r.add_argument("--input", "-i", required=True, type=Path, help="RDF file")
    r.add_argument("--format", "-f", help="Input RDF format (default from the file extension)")
    r.add_argument("--descriptor", "-d", help="CSVW metadata describing the target tables (inferred if omitted)")
    r.add_argument("--out-dir", type=Path, default=Path("."), help="Directory for the CSV files")
    r.add_argument("--window-size", type=int, help="Maximum number of resident quads")
    r.add_argument("--step-size", type=int, help="Quads added per window move")
    r.add_argument("--write-schema", action="store_true", help="Also write the inferred csv-metadata.json")
    _add_common(r)

    v = sub.add_parser("validate", help="Validate CSVW metadata and data")
    v.add_argument("--input", "-i", required=True, help="Metadata document or CSV file")
    _add_common(v)

    s = sub.add_parser("infer-schema", help="Infer CSVW metadata from RDF")
    s.add_argument("--input", "-i", required=True, type=Path, help="RDF file")
    s.add_argument("--format", "-f", help="Input RDF format (default from the file extension)")
    s.add_argument("--output", "-o", type=Path, help="Output JSON path (stdout if omitted)")
    s.add_argument("--window-size", type=int, help="Maximum number of resident quads")
    s.add_argument("--step-size", type=int, help="Quads added per window move")
    _add_common(s)

    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None):
    args = parse_args(argv)
    setup_logging(args.verbose, args.quiet)

    try:
        logging.info(f"Starting {args.command}")
        logging.info(f"Input: {args.input}")
        options = build_options(args)
        status = COMMANDS[args.command](args, options)
        if status == 0:
            logging.info("Conversion completed successfully")
    except (CsvwError, OSError, ValueError) as e:
        logging.error(f"Error during {args.command}: {e}")
        print(f"[ERROR] {e}", file=sys.stderr)
        sys.exit(1)
    if status:
        sys.exit(status)


if __name__ == "__main__":
    main()
