from __future__ import annotations

import json
import math
from pathlib import Path

import numpy as np

from kb_index.query import QUERY_CACHE_FILE, QueryCache, cosine_similarity, hash_query_context


def _unit(angle_cosine: float) -> list[float]:
    """A 2-d unit vector whose cosine with [1, 0] is angle_cosine."""
    return [angle_cosine, math.sqrt(1.0 - angle_cosine**2)]


def test_exact_lookup_requires_query_and_context_hash() -> None:
    cache = QueryCache()
    cache.insert_answer("how?", "ctx-1", [1.0, 0.0], "like this")

    assert cache.get_cached_answer("how?", "ctx-1") == "like this"
    assert cache.get_cached_answer("how?", "ctx-2") is None
    assert cache.get_cached_answer("why?", "ctx-1") is None


def test_similarity_lookup_respects_threshold() -> None:
    cache = QueryCache()
    cache.insert_answer("q", "ctx", [1.0, 0.0], "cached answer")

    assert cache.find_similar(_unit(0.95), threshold=0.93) == "cached answer"
    assert cache.find_similar(_unit(0.90), threshold=0.93) is None


def test_similarity_lookup_picks_best_score() -> None:
    cache = QueryCache()
    cache.insert_answer("q1", "ctx", _unit(0.94), "close")
    cache.insert_answer("q2", "ctx", _unit(0.99), "closest")

    assert cache.find_similar([1.0, 0.0], threshold=0.93) == "closest"


def test_similarity_ties_go_to_earliest_entry() -> None:
    cache = QueryCache()
    cache.insert_answer("q1", "ctx-a", [1.0, 0.0], "first")
    cache.insert_answer("q2", "ctx-b", [1.0, 0.0], "second")

    assert cache.find_similar([1.0, 0.0], threshold=0.5) == "first"


def test_entries_with_other_dimensions_are_ignored() -> None:
    cache = QueryCache()
    cache.insert_answer("q", "ctx", [1.0, 0.0, 0.0], "three-d")

    assert cache.find_similar([1.0, 0.0], threshold=0.0) is None


def test_cosine_similarity_handles_zero_vectors() -> None:
    zero = np.zeros(3)
    assert cosine_similarity(zero, np.ones(3)) == 0.0
    assert math.isclose(cosine_similarity(np.ones(3), np.ones(3)), 1.0, rel_tol=1e-6)


def test_context_hash_depends_on_query_and_chunk_content() -> None:
    base = hash_query_context("q", ["a", "b"])

    assert base == hash_query_context("q", ["a", "b"])
    assert base != hash_query_context("q", ["a", "c"])
    assert base != hash_query_context("q2", ["a", "b"])
    assert len(base) == 64


def test_cache_roundtrip_keeps_entries_in_order(tmp_path: Path) -> None:
    cache = QueryCache()
    cache.insert_answer("q1", "h1", [0.5, 0.25], "a1")
    cache.insert_answer("q1", "h1", [0.5, 0.25], "duplicate kept")
    cache.save(tmp_path)

    loaded = QueryCache.load(tmp_path)

    assert loaded.entries == cache.entries
    assert len(loaded) == 2
    payload = json.loads((tmp_path / QUERY_CACHE_FILE).read_text(encoding="utf-8"))
    assert payload["schema_version"] == 1
    assert payload["entries"][0]["embedding"] == [0.5, 0.25]
