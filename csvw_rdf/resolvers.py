"""
Resource resolution: local paths, file: URLs and http(s) through requests.

Every lookup first rewrites the URL through the configured path overrides, so
remote descriptors can be served from a local directory.
"""

from __future__ import annotations

import io
import logging
import os
import re
from pathlib import Path
from typing import BinaryIO, Dict, Iterable, Optional
from urllib.parse import urljoin, urlsplit
from urllib.request import url2pathname

import requests

from .errors import ResolutionError
from .options import PathOverride


JSONLD_CONTEXT_REL = "http://www.w3.org/ns/json-ld#context"
_SCHEME = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*:")


def is_url(value: str) -> bool:
    """True for anything with a URL scheme other than a Windows drive letter."""
    return bool(_SCHEME.match(value)) and not re.match(r"^[A-Za-z]:[\\/]", value)


def replace_url(url: str, path_overrides: Iterable[PathOverride]) -> str:
    """
    Rewrite the longest matching prefix of `url` (literal or regex anchored at 0).

    A literal prefix ending in "/" keeps that slash in front of the rest when the
    replacement does not end in one, so ("/a/b/", "Y") maps "/a/b/c" to "Y/c".
    """
    longest = ""
    replacement = ""
    literal = False
    for source, target in path_overrides:
        if isinstance(source, str):
            if url.startswith(source) and len(source) > len(longest):
                longest, replacement, literal = source, target, True
        else:
            m = source.match(url)
            if m and len(m.group(0)) > len(longest):
                longest, replacement, literal = m.group(0), target, False
    if not longest:
        return url
    rest = url[len(longest):]
    if literal and longest.endswith("/") and not replacement.endswith("/"):
        rest = "/" + rest
    return replacement + rest


class FetchCache:
    """Fetched documents by absolute URL; owned by one resolver, never global."""

    def __init__(self, cache_errors: bool = False):
        self.cache_errors = cache_errors
        self._entries: Dict[str, Dict[str, object]] = {}

    def __contains__(self, url: str) -> bool:
        return url in self._entries

    def get(self, url: str) -> Optional[str]:
        entry = self._entries.get(url)
        if entry is None:
            return None
        if "error" in entry:
            raise entry["error"]
        return entry["result"]

    def put(self, url: str, content: str) -> None:
        self._entries[url] = {"result": content}

    def put_error(self, url: str, error: Exception) -> None:
        if self.cache_errors:
            self._entries[url] = {"error": error}


class Resolver:
    def __init__(
        self,
        path_overrides: Optional[Iterable[PathOverride]] = None,
        cache: Optional[FetchCache] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ):
        self.path_overrides = list(path_overrides or [])
        self.cache = cache if cache is not None else FetchCache()
        self.session = session or requests.Session()
        self.timeout = timeout

    def absolute(self, url: str, base: Optional[str] = None) -> str:
        """Resolve `url` against `base`, which may be a URL or a filesystem path."""
        if not base or is_url(url) or os.path.isabs(url):
            return url
        if is_url(base):
            return urljoin(base, url)
        base_path = Path(base)
        directory = base_path if base_path.is_dir() else base_path.parent
        return str((directory / url).resolve())

    def locate(self, url: str, base: Optional[str] = None) -> str:
        """The location actually read for `url`, after path overrides."""
        return replace_url(self.absolute(url, base), self.path_overrides)

    # ------------------------------ reading ------------------------------

    def _local_path(self, location: str) -> Optional[Path]:
        if location.startswith("file:"):
            return Path(url2pathname(urlsplit(location).path))
        if not is_url(location):
            return Path(location)
        return None

    def _get(self, location: str, stream: bool = False) -> requests.Response:
        try:
            response = self.session.get(location, timeout=self.timeout, stream=stream)
            response.raise_for_status()
        except requests.RequestException as e:
            raise ResolutionError(f"Failed to fetch {location}: {e}", location) from e
        return response

    def _cached(self, key: str, load) -> str:
        if key in self.cache:
            return self.cache.get(key)
        try:
            content = load()
        except ResolutionError as e:
            self.cache.put_error(key, e)
            raise
        self.cache.put(key, content)
        return content

    def _read_text(self, location: str) -> str:
        path = self._local_path(location)
        if path is not None:
            try:
                return path.read_text(encoding="utf-8")
            except OSError as e:
                raise ResolutionError(f"Failed to read {path}: {e}", location) from e
        response = self._get(location)
        response.encoding = response.encoding or "utf-8"
        return response.text

    def resolve_text(self, url: str, base: Optional[str] = None) -> str:
        key = self.absolute(url, base)
        logging.debug(f"Resolving text {key}")
        return self._cached(key, lambda: self._read_text(replace_url(key, self.path_overrides)))

    def _read_jsonld(self, location: str) -> str:
        if self._local_path(location) is not None:
            return self._read_text(location)
        response = self._get(location)
        content_type = response.headers.get("content-type", "")
        link = response.links.get(JSONLD_CONTEXT_REL)
        if link and not content_type.startswith("application/ld+json"):
            # requests keeps the last header for a repeated rel
            target = urljoin(response.url or location, link["url"])
            logging.info(f"Following JSON-LD context link {target}")
            return self._read_text(replace_url(target, self.path_overrides))
        response.encoding = response.encoding or "utf-8"
        return response.text

    def resolve_jsonld(self, url: str, base: Optional[str] = None) -> str:
        key = self.absolute(url, base)
        logging.debug(f"Resolving JSON-LD {key}")
        return self._cached(key, lambda: self._read_jsonld(replace_url(key, self.path_overrides)))

    def resolve_stream(self, url: str, base: Optional[str] = None) -> BinaryIO:
        """Open `url` for incremental binary reading; the caller closes it."""
        location = self.locate(url, base)
        logging.debug(f"Opening stream {location}")
        path = self._local_path(location)
        if path is not None:
            try:
                return open(path, "rb")
            except OSError as e:
                raise ResolutionError(f"Failed to open {path}: {e}", location) from e
        response = self._get(location, stream=True)
        if response.raw is None:
            return io.BytesIO(response.content)
        response.raw.decode_content = True
        return response.raw

    def exists(self, url: str, base: Optional[str] = None) -> bool:
        """Existence check used for metadata discovery."""
        location = self.locate(url, base)
        path = self._local_path(location)
        if path is not None:
            return path.is_file()
        try:
            response = self.session.head(location, timeout=self.timeout, allow_redirects=True)
        except requests.RequestException as e:
            logging.debug(f"HEAD {location} failed: {e}")
            return False
        return response.ok
