#!/usr/bin/env python3
"""
Tests for the resident quad store and the sliding window over a quad stream.
"""

import unittest

from rdflib import Literal, URIRef

from csvw_rdf.errors import StoreError
from csvw_rdf.window import QuadStore, WindowStore


EX = "http://ex.org/"


def quad(n, graph=None):
    return (URIRef(f"{EX}s{n}"), URIRef(f"{EX}p"), Literal(n), graph)


class TestQuadStore(unittest.TestCase):
    """Point insert, point delete and matching"""

    def test_put_match_delete(self):
        store = QuadStore()
        store.put(quad(1))
        self.assertIn(quad(1), store)
        self.assertTrue(store.has(URIRef(f"{EX}s1"), URIRef(f"{EX}p"), Literal(1)))
        store.delete(quad(1))
        self.assertEqual(len(store), 0)
        self.assertFalse(store.has(URIRef(f"{EX}s1"), None, None))

    def test_duplicates_are_counted(self):
        store = QuadStore()
        store.put(quad(1))
        store.put(quad(1))
        store.delete(quad(1))
        self.assertIn(quad(1), store)
        self.assertEqual(len(store), 1)

    def test_delete_missing_raises(self):
        with self.assertRaises(StoreError):
            QuadStore().delete(quad(1))

    def test_named_graphs_matched_as_union(self):
        store = QuadStore()
        store.put(quad(1, URIRef(f"{EX}g")))
        store.put(quad(2))
        self.assertEqual(len(store.subjects(URIRef(f"{EX}p"))), 2)
        graphs = {q[3] for q in store.quads()}
        self.assertEqual(graphs, {URIRef(f"{EX}g"), None})

    def test_objects_distinct_in_order(self):
        store = QuadStore()
        s, p = URIRef(f"{EX}s"), URIRef(f"{EX}p")
        store.put_stream([(s, p, Literal("a"), None), (s, p, Literal("a"), URIRef(f"{EX}g"))])
        self.assertEqual(store.objects(s, p), [Literal("a")])


class TestWindowStore(unittest.TestCase):
    """Window bounds and eviction order"""

    def test_unbounded_loads_everything(self):
        store = QuadStore()
        window = WindowStore(store, [quad(i) for i in range(5)])
        self.assertEqual(len(window.init_stream()), 5)
        self.assertEqual(len(store), 5)
        self.assertEqual(window.move_window(), [])

    def test_residency_never_exceeds_window(self):
        store = QuadStore()
        window = WindowStore(store, (quad(i) for i in range(25)), window_size=10, step_size=3)
        window.init_stream()
        self.assertEqual(len(store), 10)
        while not window.done:
            window.move_window()
            self.assertEqual(len(store), min(window.seen, 10))
        self.assertEqual(window.seen, 25)

    def test_oldest_evicted_first_while_still_resident(self):
        store = QuadStore()
        window = WindowStore(store, [quad(i) for i in range(6)], window_size=4, step_size=2)
        window.init_stream()
        seen_by_callback = []

        def before_evict(evicting):
            seen_by_callback.extend(evicting)
            self.assertTrue(all(q in store for q in evicting))

        added = window.move_window(before_evict)
        self.assertEqual(added, [quad(4), quad(5)])
        self.assertEqual(seen_by_callback, [quad(0), quad(1)])
        self.assertEqual(window.evicted, [quad(0), quad(1)])
        self.assertEqual(window.evicted_total, 2)
        self.assertNotIn(quad(0), store)

    def test_small_stream_fits(self):
        store = QuadStore()
        window = WindowStore(store, [quad(1), quad(2)], window_size=10)
        window.init_stream()
        self.assertEqual(len(store), 2)
        self.assertTrue(window.done)

    def test_default_and_clamped_step(self):
        self.assertEqual(WindowStore(QuadStore(), [], window_size=100).step_size, 10)
        self.assertEqual(WindowStore(QuadStore(), [], window_size=5).step_size, 1)
        self.assertEqual(WindowStore(QuadStore(), [], window_size=5, step_size=50).step_size, 5)

    def test_invalid_window_size(self):
        with self.assertRaises(ValueError):
            WindowStore(QuadStore(), [], window_size=0)

    def test_move_before_init_raises(self):
        with self.assertRaises(StoreError):
            WindowStore(QuadStore(), [quad(1)], window_size=1).move_window()

    def test_double_init_raises(self):
        window = WindowStore(QuadStore(), [quad(1)])
        window.init_stream()
        with self.assertRaises(StoreError):
            window.init_stream()


if __name__ == "__main__":
    unittest.main()
