"""
Dialect-driven CSV reading.

Rows are produced lazily from a binary stream so arbitrarily large files are
converted without loading them into memory.
"""

from __future__ import annotations

import codecs
import csv
import io
import logging
from typing import BinaryIO, Iterator, List, TextIO, Tuple

import chardet

from .issues import IssueTracker
from .model import Dialect


SNIFF_BYTES = 64 * 1024
_STANDARD_TERMINATORS = {"\r\n", "\n", "\r"}


def detect_encoding(sample: bytes, tracker: IssueTracker) -> str:
    """Pick an encoding for undeclared CSV bytes; UTF-8 wins when the sample decodes."""
    try:
        codecs.getincrementaldecoder("utf-8")().decode(sample, final=False)
    except UnicodeDecodeError:
        logging.debug("CSV sample is not UTF-8, running chardet")
    else:
        return "utf-8-sig"
    res = chardet.detect(sample)
    encoding = (res.get("encoding") or "utf-8").lower()
    confidence = res.get("confidence") or 0
    logging.info(f"Detected encoding: {encoding} (confidence: {confidence:.2f})")
    if confidence < 0.5:
        tracker.add_warning("Could not detect the CSV encoding reliably; decoding as UTF-8")
        return "utf-8"
    tracker.add_warning(f"CSV is not UTF-8; decoding as detected {encoding}")
    return encoding


def open_text(stream: BinaryIO, dialect: Dialect, tracker: IssueTracker) -> TextIO:
    """Wrap a binary stream for reading, honouring the declared or detected encoding."""
    buffered = stream if isinstance(stream, io.BufferedReader) else io.BufferedReader(stream, SNIFF_BYTES)
    if dialect.encoding:
        encoding = dialect.encoding
    else:
        encoding = detect_encoding(buffered.peek(SNIFF_BYTES)[:SNIFF_BYTES], tracker)
    if encoding.lower().replace("_", "-") in ("utf-8", "utf8"):
        encoding = "utf-8-sig"
    return io.TextIOWrapper(buffered, encoding=encoding, errors="replace", newline="")


def _normalized_lines(text: TextIO, terminators: List[str], chunk_size: int = SNIFF_BYTES) -> Iterator[str]:
    """Rewrite custom line terminators to '\\n' and split into lines."""
    custom = sorted((t for t in terminators if t and t not in _STANDARD_TERMINATORS), key=len, reverse=True)
    keep = max(max((len(t) for t in custom), default=1) - 1, 1)
    pending = ""
    while True:
        chunk = text.read(chunk_size)
        data = pending + chunk
        if chunk and keep:
            data, pending = data[:-keep], data[-keep:]
        else:
            pending = ""
        for t in custom:
            data = data.replace(t, "\n")
        yield from io.StringIO(data, newline="")
        if not chunk:
            break


def _line_source(text: TextIO, dialect: Dialect) -> Iterator[str]:
    if any(t not in _STANDARD_TERMINATORS for t in dialect.line_terminators):
        return _restitch(_normalized_lines(text, dialect.line_terminators))
    return iter(text)


def _restitch(lines: Iterator[str]) -> Iterator[str]:
    """Join line fragments split across chunk boundaries."""
    partial = ""
    for line in lines:
        partial += line
        if partial.endswith(("\n", "\r")):
            yield partial
            partial = ""
    if partial:
        yield partial


def _reader(lines: Iterator[str], dialect: Dialect):
    kwargs = dict(
        delimiter=dialect.delimiter,
        skipinitialspace=dialect.skip_initial_space,
        strict=True,
    )
    if dialect.quote_char is None:
        kwargs["quoting"] = csv.QUOTE_NONE
    else:
        kwargs["quotechar"] = dialect.quote_char
        kwargs["doublequote"] = dialect.double_quote
        if not dialect.double_quote:
            kwargs["escapechar"] = "\\"
    return csv.reader(lines, **kwargs)


def _trim(cell: str, trim) -> str:
    if trim is True or trim == "true":
        return cell.strip()
    if trim == "start":
        return cell.lstrip()
    if trim == "end":
        return cell.rstrip()
    return cell


def read_rows(text: TextIO, dialect: Dialect, tracker: IssueTracker) -> Iterator[Tuple[int, List[str]]]:
    """
    Yield (source_row_number, cells) for every record after `skipRows`.

    Source row numbers are 1-based and count every physical record, including
    skipped, comment and blank rows.  Header rows are yielded like any other;
    the caller decides how many of them to consume.
    """
    reader = _reader(_line_source(text, dialect), dialect)
    source_row = 0
    while True:
        try:
            record = next(reader)
        except StopIteration:
            return
        except csv.Error as e:
            tracker.add_error(f"Malformed CSV near row {source_row + 1}: {e}")
        source_row += 1
        if source_row <= dialect.skip_rows:
            continue
        if dialect.comment_prefix and record and record[0].startswith(dialect.comment_prefix):
            logging.debug(f"Skipping comment row {source_row}")
            continue
        if dialect.skip_blank_rows and not any(cell.strip() for cell in record):
            continue
        cells = [_trim(cell, dialect.trim) for cell in record[dialect.skip_columns:]]
        yield source_row, cells
