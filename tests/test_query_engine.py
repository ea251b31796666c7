"""End-to-end tests for term and phrase search."""

import threading
import time

import pytest

from websearch.inverted_index import InvertedIndex
from websearch.index_builder import IndexBuilder
from websearch.query_engine import QueryEngine, count_pages, paginate, parse_query
from websearch.store import MemoryIndexStore, SqliteIndexStore


@pytest.fixture
def corpus(builder, index, make_document):
    doc_a = make_document("https://example.com/a", title="Hello World", content="the quick brown fox")
    doc_b = make_document("https://example.com/b", title="Goodbye", content="quick fox jumps")
    report = builder.build_index([doc_a, doc_b])
    assert report.succeeded == 2
    assert index.flush()
    return doc_a, doc_b


def test_term_search_ranks_shorter_document_first(engine, corpus):
    doc_a, doc_b = corpus
    response = engine.search("quick fox")

    assert response.total_results == 2
    assert response.total_pages == 1
    assert response.current_page == 1
    assert [r.doc_id for r in response.results] == [doc_b.doc_id, doc_a.doc_id]
    first, second = response.results
    assert first.score == pytest.approx(0.7)
    assert second.score == pytest.approx(0.56)
    assert first.relevance_score == pytest.approx(1.0)
    assert second.relevance_score == pytest.approx(0.8)


def test_results_carry_title_url_and_snippet(engine, corpus):
    doc_a, _ = corpus
    [result] = engine.search("brown").results
    assert result.doc_id == doc_a.doc_id
    assert result.url == "https://example.com/a"
    assert result.title == "Hello World"
    assert result.description == "the quick brown fox"


def test_title_terms_are_searchable(engine, corpus):
    doc_a, _ = corpus
    assert [r.doc_id for r in engine.search("hello").results] == [doc_a.doc_id]


def test_phrase_search_requires_adjacent_tokens(engine, corpus):
    doc_a, doc_b = corpus
    assert [r.doc_id for r in engine.search('"quick fox"').results] == [doc_b.doc_id]
    assert [r.doc_id for r in engine.search('"quick brown"').results] == [doc_a.doc_id]
    assert engine.search('"brown quick"').results == []
    assert engine.search('"hello world"').total_results == 1


def test_single_token_phrase_behaves_like_term_search(engine, corpus):
    assert engine.search('"fox"').total_results == 2


def test_query_without_valid_terms_is_empty(engine, corpus):
    for query in ("", "the and of", '""', "!!!"):
        response = engine.search(query)
        assert response.results == []
        assert response.total_results == 0


def test_unknown_terms_return_nothing(engine, corpus):
    assert engine.search("zebra").total_results == 0


def test_pagination(builder, index, engine, make_document):
    docs = [make_document(f"https://example.com/p{i}", content=f"pagination sample{i}") for i in range(25)]
    builder.build_index(docs)
    index.flush()

    first = engine.search("pagination", page=1, page_size=10)
    assert first.total_results == 25
    assert first.total_pages == 3
    assert len(first.results) == 10

    last = engine.search("pagination", page=3, page_size=10)
    assert len(last.results) == 5
    assert last.current_page == 3

    past_end = engine.search("pagination", page=4, page_size=10)
    assert past_end.results == []
    assert past_end.current_page == 4

    seen = {r.doc_id for p in (1, 2, 3) for r in engine.search("pagination", page=p).results}
    assert len(seen) == 25


def test_response_dict_uses_wire_names(engine, corpus):
    data = engine.search("fox").to_dict()
    assert set(data) == {"results", "totalResults", "totalPages", "currentPage"}
    assert data["totalResults"] == 2
    assert {"doc_id", "url", "title", "description", "score"} <= set(data["results"][0])


@pytest.mark.parametrize(
    "page, expected",
    [(0, list(range(0, 10))), (2, list(range(20, 25))), (3, [])],
)
def test_paginate_is_zero_based(page, expected):
    assert paginate(list(range(25)), page, 10) == expected


def test_count_pages():
    assert count_pages(25, 10) == 3
    assert count_pages(20, 10) == 2
    assert count_pages(0, 10) == 0


@pytest.mark.parametrize(
    "raw, text, is_phrase",
    [
        ('"quick fox"', "quick fox", True),
        ('find "quick fox" now', "quick fox", True),
        ("quick   fox", "quick fox", False),
        ('say "hi', "say hi", False),
        ('""', "", False),
        (None, "", False),
    ],
)
def test_parse_query(raw, text, is_phrase):
    parsed = parse_query(raw)
    assert parsed.text == text
    assert parsed.is_phrase is is_phrase


class SlowStore(MemoryIndexStore):
    """Reads of one term hang until released."""

    def __init__(self, slow_term):
        super().__init__()
        self.slow_term = slow_term
        self.release = threading.Event()

    def get_postings(self, term):
        if term == self.slow_term:
            self.release.wait(timeout=10)
        return super().get_postings(term)


def test_slow_term_times_out_without_failing_query(make_document):
    store = SlowStore("slow")
    index = InvertedIndex(store, writer_threads=1)
    engine = QueryEngine(index, store, fetch_timeout=0.2, fetch_workers=2)
    try:
        IndexBuilder(index, store, num_threads=2).build_index(
            [
                make_document("https://example.com/a", content="quick answers"),
                make_document("https://example.com/b", content="slow answers"),
            ]
        )
        index.flush()

        started = time.monotonic()
        response = engine.search("quick slow")
        elapsed = time.monotonic() - started

        assert elapsed < 5
        assert [r.url for r in response.results] == ["https://example.com/a"]
    finally:
        store.release.set()
        engine.close()
        index.close()


def test_search_failure_returns_empty_response(engine, corpus, monkeypatch):
    def broken(terms):
        raise RuntimeError("boom")

    monkeypatch.setattr(engine, "fetch_postings", broken)
    response = engine.search("quick", page=2)
    assert response.results == []
    assert response.current_page == 2


def test_sqlite_index_survives_reopen(tmp_path, make_document):
    path = tmp_path / "index.sqlite3"
    store = SqliteIndexStore(path)
    index = InvertedIndex(store, batch_size=4)
    IndexBuilder(index, store, num_threads=2).build_index(
        [
            make_document("https://example.com/a", title="Hello World", content="the quick brown fox"),
            make_document("https://example.com/b", title="Goodbye", content="quick fox jumps"),
        ]
    )
    assert index.close()

    store = SqliteIndexStore(path)
    index = InvertedIndex(store)
    try:
        with QueryEngine(index, store) as engine:
            response = engine.search("quick fox")
            assert [r.url for r in response.results] == ["https://example.com/b", "https://example.com/a"]
            assert [r.url for r in engine.search('"quick brown"').results] == ["https://example.com/a"]
    finally:
        index.close()


def test_repeated_queries_reuse_store_connections(tmp_path, make_document):
    store = SqliteIndexStore(tmp_path / "index.sqlite3")
    index = InvertedIndex(store)
    try:
        IndexBuilder(index, store, num_threads=2).build_index(
            [
                make_document("https://example.com/a", content="the quick brown fox"),
                make_document("https://example.com/b", content="quick fox jumps"),
            ]
        )
        assert index.flush()
        with QueryEngine(index, store, fetch_workers=2) as engine:
            engine.search("quick fox")
            baseline = len(store._connections)
            for _ in range(50):
                assert engine.search("quick fox").total_results == 2
            assert len(store._connections) <= baseline + 2
    finally:
        index.close()
