"""
Resident quad window for RDF -> tabular conversion.

QuadStore indexes the quads currently visible to row binding.  WindowStore
feeds it from a quad iterator, keeping at most `window_size` quads resident and
evicting the oldest first.
"""

from __future__ import annotations

import logging
from collections import Counter, deque
from typing import Callable, Deque, Iterable, Iterator, List, Optional, Tuple

from rdflib import Dataset
from rdflib.graph import DATASET_DEFAULT_GRAPH_ID
from rdflib.term import Node

from .errors import StoreError


Quad = Tuple[Node, Node, Node, Optional[Node]]


def _graph_id(graph: Optional[Node]) -> Node:
    return DATASET_DEFAULT_GRAPH_ID if graph is None else graph


class QuadStore:
    """
    In-memory quad index with point insert and point delete.

    The same quad may be put several times; it stays resident until it has been
    deleted as many times as it was put.  Pattern matching looks at the union of
    all graphs.
    """

    def __init__(self):
        self.dataset = Dataset(default_union=True)
        self._counts: Counter = Counter()
        self._size = 0

    def put(self, quad: Quad) -> None:
        s, p, o, g = quad
        key = (s, p, o, _graph_id(g))
        try:
            if not self._counts[key]:
                self.dataset.add(key)
        except (AssertionError, TypeError, ValueError) as e:
            raise StoreError(f"Cannot store quad {quad!r}: {e}") from e
        self._counts[key] += 1
        self._size += 1

    def put_stream(self, quads: Iterable[Quad]) -> int:
        n = 0
        for quad in quads:
            self.put(quad)
            n += 1
        return n

    def delete(self, quad: Quad) -> None:
        s, p, o, g = quad
        key = (s, p, o, _graph_id(g))
        if not self._counts.get(key):
            raise StoreError(f"Cannot delete quad that is not resident: {quad!r}")
        self._counts[key] -= 1
        self._size -= 1
        if not self._counts[key]:
            del self._counts[key]
            try:
                self.dataset.remove(key)
            except (AssertionError, TypeError, ValueError) as e:
                raise StoreError(f"Cannot remove quad {quad!r}: {e}") from e

    def match(self, s: Optional[Node] = None, p: Optional[Node] = None, o: Optional[Node] = None) -> Iterator[Tuple[Node, Node, Node]]:
        return self.dataset.triples((s, p, o))

    def has(self, s: Node, p: Node, o: Node) -> bool:
        return next(iter(self.match(s, p, o)), None) is not None

    def objects(self, s: Optional[Node] = None, p: Optional[Node] = None) -> List[Node]:
        """Distinct objects in first-seen order."""
        seen = {}
        for _, _, o in self.match(s, p, None):
            seen.setdefault(o, None)
        return list(seen)

    def subjects(self, p: Optional[Node] = None, o: Optional[Node] = None) -> List[Node]:
        seen = {}
        for s, _, _ in self.match(None, p, o):
            seen.setdefault(s, None)
        return list(seen)

    def quads(self) -> Iterator[Quad]:
        for s, p, o, g in self.dataset.quads((None, None, None, None)):
            graph = getattr(g, "identifier", g)
            yield s, p, o, None if graph == DATASET_DEFAULT_GRAPH_ID else graph

    def __len__(self) -> int:
        return self._size

    def __contains__(self, quad: Quad) -> bool:
        s, p, o, g = quad
        return bool(self._counts.get((s, p, o, _graph_id(g))))


class WindowStore:
    """
    FIFO window over a quad stream.

    Without a window size the whole stream is loaded by init_stream().  With one,
    init_stream() fills the window and every move_window() admits up to
    `step_size` further quads, evicting the oldest ones beyond `window_size`.
    """

    def __init__(
        self,
        store: QuadStore,
        source: Iterable[Quad],
        window_size: Optional[int] = None,
        step_size: Optional[int] = None,
    ):
        if window_size is not None and window_size < 1:
            raise ValueError("window_size must be positive")
        self.store = store
        self.window_size = window_size
        if window_size is None:
            self.step_size = None
        else:
            self.step_size = min(step_size or max(window_size // 10, 1), window_size)
        self._source = iter(source)
        self._buffer: Deque[Quad] = deque()
        self._initialized = False
        self.done = False
        self.seen = 0
        self.evicted: List[Quad] = []
        self.evicted_total = 0

    def _pull(self, limit: Optional[int]) -> List[Quad]:
        quads: List[Quad] = []
        while not self.done and (limit is None or len(quads) < limit):
            try:
                quads.append(next(self._source))
            except StopIteration:
                self.done = True
        self.seen += len(quads)
        return quads

    def init_stream(self) -> List[Quad]:
        """Populate the store and return the quads inserted."""
        if self._initialized:
            raise StoreError("Stream already initialized")
        self._initialized = True
        if self.window_size is None:
            added = self._pull(None)
            self.store.put_stream(added)
            logging.info(f"Stream fully loaded into store ({len(added)} quads)")
            return added
        added = self._pull(self.window_size)
        for quad in added:
            self.store.put(quad)
            self._buffer.append(quad)
        logging.debug(f"Window initialized with {len(added)} quads")
        return added

    def move_window(self, before_evict: Optional[Callable[[List[Quad]], None]] = None) -> List[Quad]:
        """
        Advance by up to `step_size` quads and return the quads added.

        `before_evict` is called with the quads about to leave the window while
        they are still resident.
        """
        if not self._initialized:
            raise StoreError("Stream not initialized")
        self.evicted = []
        if self.window_size is None or self.done:
            return []
        added = self._pull(self.step_size)
        overflow = len(self._buffer) + len(added) - self.window_size
        evicting = [self._buffer[i] for i in range(max(overflow, 0))]
        if evicting and before_evict is not None:
            before_evict(evicting)
        for quad in evicting:
            self._buffer.popleft()
            self.store.delete(quad)
        for quad in added:
            self.store.put(quad)
            self._buffer.append(quad)
        self.evicted = evicting
        self.evicted_total += len(evicting)
        return added

    def __len__(self) -> int:
        return len(self.store)
