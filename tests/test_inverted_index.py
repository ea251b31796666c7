"""Tests for the inverted index merge cache and batched persistence."""

import threading
import time

import pytest

from websearch.errors import IndexClosedError, IndexInitializationError, StoreError
from websearch.inverted_index import InvertedIndex
from websearch.posting import FieldType, Posting
from websearch.store import MemoryIndexStore


def body_posting(doc_id, *positions):
    posting = Posting(doc_id=doc_id, url=f"https://example.com/{doc_id}")
    for position in positions:
        posting.add_position(position, FieldType.BODY)
    return posting


class SlowStore(MemoryIndexStore):
    def __init__(self, delay=0.01):
        super().__init__()
        self.delay = delay
        self.batches = 0

    def upsert_postings_batch(self, updates):
        time.sleep(self.delay)
        self.batches += 1
        super().upsert_postings_batch(updates)


class GatedStore(MemoryIndexStore):
    """Writes block until the gate opens."""

    def __init__(self):
        super().__init__()
        self.gate = threading.Event()

    def upsert_postings_batch(self, updates):
        self.gate.wait(timeout=10)
        super().upsert_postings_batch(updates)


class FailingStore(MemoryIndexStore):
    """Fails the first `failures` batch writes."""

    def __init__(self, failures):
        super().__init__()
        self.failures = failures

    def upsert_postings_batch(self, updates):
        if self.failures > 0:
            self.failures -= 1
            raise StoreError("write failed")
        super().upsert_postings_batch(updates)


class UnreachableStore(MemoryIndexStore):
    def count(self):
        raise StoreError("connection refused")


def test_same_term_and_doc_merge_into_one_posting(index, store):
    index.add_term("fox", body_posting("d1", 0, 2))
    index.add_term("fox", body_posting("d1", 5, 9))
    assert index.flush()

    [stored] = store.get_postings("fox")
    assert stored.positions(FieldType.BODY) == [0, 2, 5, 9]
    [cached] = index.cached_postings("fox")
    assert cached.positions(FieldType.BODY) == [0, 2, 5, 9]


def test_concurrent_producers_keep_one_posting_per_doc(store):
    index = InvertedIndex(store, batch_size=8, queue_size=16, writer_threads=3)

    def produce(worker):
        for i in range(25):
            index.add_term("shared", body_posting("d1", worker * 100 + i))
            index.add_term(f"w{worker}", body_posting(f"doc{i}", 0))

    threads = [threading.Thread(target=produce, args=(w,)) for w in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert index.close()

    [posting] = store.get_postings("shared")
    expected = sorted(w * 100 + i for w in range(6) for i in range(25))
    assert posting.positions(FieldType.BODY) == expected
    assert len(store.get_postings("w3")) == 25


def test_caller_posting_is_not_shared_with_index(index, store):
    posting = body_posting("d1", 0)
    index.add_term("fox", posting)
    posting.add_position(99, FieldType.BODY)
    index.flush()
    assert store.get_postings("fox")[0].positions(FieldType.BODY) == [0]


def test_get_postings_reads_store_and_returns_copies(index, store):
    store.upsert_postings_batch([("dog", body_posting("d7", 3))])
    postings = index.get_postings("dog")
    assert [p.doc_id for p in postings] == ["d7"]
    postings[0].add_position(42, FieldType.BODY)
    assert index.get_postings("dog")[0].positions(FieldType.BODY) == [3]
    assert [p.doc_id for p in index.cached_postings("dog")] == ["d7"]
    assert index.get_postings("unknown") == []


def test_terms_and_size_combine_cache_and_store(index, store):
    store.upsert_postings_batch([("stored", body_posting("d1", 0))])
    index.add_term("fresh", body_posting("d2", 0))
    assert index.get_terms() >= {"stored", "fresh"}
    assert index.size() == 2
    assert "fresh" in index
    assert "absent" not in index


def test_invalid_updates_are_ignored(index, store):
    index.add_term("", body_posting("d1", 0))
    index.add_term("fox", None)
    index.flush()
    assert store.count() == 0


def test_close_drains_queue_before_closing_store():
    store = SlowStore()
    index = InvertedIndex(store, batch_size=5, queue_size=10, writer_threads=2)
    for i in range(60):
        index.add_term(f"term{i}", body_posting("d1", i))
    assert index.close()
    assert store.closed
    assert store.count() == 60
    assert index.pending_updates == 0


def test_close_is_idempotent_and_rejects_new_updates(index):
    assert index.close()
    assert index.close()
    with pytest.raises(IndexClosedError):
        index.add_term("late", body_posting("d1", 0))


def test_rejected_update_leaves_cache_untouched(index):
    index.add_term("fox", body_posting("d1", 0))
    index.close()
    with pytest.raises(IndexClosedError):
        index.add_term("fox", body_posting("d1", 7))
    with pytest.raises(IndexClosedError):
        index.add_term("late", body_posting("d1", 0))

    [posting] = index.cached_postings("fox")
    assert posting.positions(FieldType.BODY) == [0]
    assert index.cached_postings("late") == []


def test_full_queue_blocks_producers_until_writers_catch_up():
    store = GatedStore()
    index = InvertedIndex(store, batch_size=1, queue_size=2, writer_threads=1)

    producer = threading.Thread(
        target=lambda: [index.add_term(f"t{i}", body_posting("d1", i)) for i in range(10)]
    )
    producer.start()
    producer.join(timeout=0.3)
    assert producer.is_alive()

    store.gate.set()
    producer.join(timeout=10)
    assert not producer.is_alive()
    assert index.close()
    assert store.count() == 10


def test_failed_write_is_kept_and_retried_on_flush():
    store = FailingStore(failures=1)
    index = InvertedIndex(store, batch_size=100, writer_threads=1)
    index.add_term("fox", body_posting("d1", 0))
    assert index.flush()
    assert [p.doc_id for p in store.get_postings("fox")] == ["d1"]
    assert index.close()


def test_persistent_write_failure_leaves_index_usable_but_unflushed():
    store = FailingStore(failures=10**6)
    index = InvertedIndex(store, writer_threads=1)
    index.add_term("fox", body_posting("d1", 0))
    assert not index.flush()
    assert index.pending_updates == 1
    assert [p.doc_id for p in index.cached_postings("fox")] == ["d1"]
    assert not index.close()


def test_unreachable_store_fails_construction():
    with pytest.raises(IndexInitializationError):
        InvertedIndex(UnreachableStore())


def test_read_failure_returns_empty_postings(index, store, monkeypatch):
    def broken(term):
        raise StoreError("read failed")

    monkeypatch.setattr(store, "get_postings", broken)
    assert index.get_postings("fox") == []
