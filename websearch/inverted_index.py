"""
Inverted index: term -> postings, with asynchronous batched persistence.

Updates are merged into an in-memory cache (one Posting per (term, doc_id))
and pushed onto a bounded queue. A fixed pool of writer threads drains the
queue in batches, collapses duplicate (term, doc_id) updates and upserts
them into the store. A full queue blocks producers. ``close()`` drains and
flushes everything before the store is released.
"""

from __future__ import annotations

import logging
import queue
import threading
import zlib

from .errors import IndexClosedError, IndexInitializationError, StoreError
from .posting import Posting, merge_updates
from .store import IndexStore

logger = logging.getLogger(__name__)

BATCH_SIZE = 1000
QUEUE_SIZE = 10_000
WRITER_THREADS = 2
LOCK_SHARDS = 64

_STOP = object()


class InvertedIndex:
    """
    Write-through inverted index over an ``IndexStore``.
    The store is the source of truth for reads; the cache holds what this
    process has indexed (and whatever it last read back).
    """

    def __init__(
        self,
        store: IndexStore,
        *,
        batch_size: int = BATCH_SIZE,
        queue_size: int = QUEUE_SIZE,
        writer_threads: int = WRITER_THREADS,
        lock_shards: int = LOCK_SHARDS,
    ) -> None:
        if batch_size < 1 or queue_size < 1 or writer_threads < 1 or lock_shards < 1:
            raise ValueError("batch_size, queue_size, writer_threads and lock_shards must be positive")
        try:
            existing_terms = store.count()
        except Exception as e:
            raise IndexInitializationError(f"Index store is unreachable: {e}") from e

        self.store = store
        self.batch_size = batch_size
        self._cache: dict[str, dict[str, Posting]] = {}
        self._cache_lock = threading.Lock()
        self._shard_locks = [threading.Lock() for _ in range(lock_shards)]
        self._queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self._accepting = threading.Lock()
        self._closed = False
        self._unflushed: list[tuple[str, Posting]] = []
        self._unflushed_lock = threading.Lock()
        self._writers = [
            threading.Thread(target=self._writer_loop, name=f"index-writer-{i}", daemon=True)
            for i in range(writer_threads)
        ]
        for writer in self._writers:
            writer.start()
        logger.info(
            "Inverted index ready (%d terms in store, %d writers, batch size %d)",
            existing_terms, writer_threads, batch_size,
        )

    # -- writes ---------------------------------------------------------------

    def _lock_for(self, term: str) -> threading.Lock:
        return self._shard_locks[zlib.crc32(term.encode("utf-8")) % len(self._shard_locks)]

    def add_term(self, term: str, posting: Posting) -> None:
        """
        Merge posting into the index and queue it for persistence.
        Blocks only while the persistence queue is full.
        """
        if not term or posting is None:
            logger.warning("Ignoring invalid update: term=%r posting=%r", term, posting)
            return
        update = posting.copy()
        with self._accepting:
            if self._closed:
                raise IndexClosedError(f"Index is closed; cannot add term {term!r}")
            self._queue.put((term, update))
        # only accepted updates reach the cache
        with self._lock_for(term):
            with self._cache_lock:
                by_doc = self._cache.setdefault(term, {})
            existing = by_doc.get(update.doc_id)
            if existing is None:
                by_doc[update.doc_id] = update.copy()
            else:
                existing.merge(update)

    def _next_batch(self) -> tuple[list[tuple[str, Posting]], bool]:
        """Block for one update, then take whatever else is queued up to batch_size."""
        batch: list[tuple[str, Posting]] = []
        item = self._queue.get()
        if item is _STOP:
            return batch, True
        batch.append(item)
        stop = False
        while len(batch) < self.batch_size:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if item is _STOP:
                stop = True
                break
            batch.append(item)
        return batch, stop

    def _writer_loop(self) -> None:
        while True:
            batch, stop = self._next_batch()
            try:
                if batch:
                    self._write(batch)
            finally:
                for _ in range(len(batch) + (1 if stop else 0)):
                    self._queue.task_done()
            if stop:
                return

    def _write(self, updates: list[tuple[str, Posting]]) -> bool:
        merged = merge_updates(updates)
        try:
            self.store.upsert_postings_batch(merged)
        except Exception as e:
            # Writer threads must survive store failures; the updates stay pending.
            logger.error("Failed to persist %d postings, keeping them for retry: %s", len(merged), e)
            with self._unflushed_lock:
                self._unflushed.extend(merged)
            return False
        logger.debug("Persisted %d postings (%d queued updates)", len(merged), len(updates))
        return True

    def _retry_unflushed(self) -> bool:
        with self._unflushed_lock:
            pending, self._unflushed = self._unflushed, []
        if not pending:
            return True
        logger.info("Retrying %d unflushed postings", len(pending))
        return self._write(pending)

    def flush(self) -> bool:
        """
        Wait until every update queued so far has been written, then retry
        earlier failed writes. Returns True if nothing is left unflushed.
        """
        self._queue.join()
        return self._retry_unflushed()

    @property
    def pending_updates(self) -> int:
        """Updates queued or held back after a failed write."""
        with self._unflushed_lock:
            unflushed = len(self._unflushed)
        return self._queue.qsize() + unflushed

    # -- reads ----------------------------------------------------------------

    def get_postings(self, term: str) -> list[Posting]:
        """Postings for term read from the store; refreshes the cache entry."""
        try:
            postings = self.store.get_postings(term)
        except (StoreError, OSError) as e:
            logger.error("Failed to read postings for %r: %s", term, e)
            return []
        if postings:
            with self._lock_for(term):
                with self._cache_lock:
                    self._cache[term] = {p.doc_id: p.copy() for p in postings}
        return [p.copy() for p in postings]

    def cached_postings(self, term: str) -> list[Posting]:
        """Copy of the in-memory postings for term."""
        with self._lock_for(term):
            with self._cache_lock:
                by_doc = self._cache.get(term, {})
            return [p.copy() for p in by_doc.values()]

    def get_terms(self) -> set[str]:
        with self._cache_lock:
            terms = set(self._cache)
        try:
            terms.update(self.store.get_terms())
        except (StoreError, OSError) as e:
            logger.error("Failed to list stored terms: %s", e)
        return terms

    def size(self) -> int:
        return len(self.get_terms())

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, term: str) -> bool:
        with self._cache_lock:
            if term in self._cache:
                return True
        return bool(self.get_postings(term))

    # -- shutdown -------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> bool:
        """
        Stop accepting updates, drain the queue, flush, then close the store.
        Returns True if every update reached the store.
        """
        with self._accepting:
            if self._closed:
                return True
            self._closed = True
            for _ in self._writers:
                self._queue.put(_STOP)
        for writer in self._writers:
            writer.join()
        flushed = self._retry_unflushed()
        if not flushed:
            with self._unflushed_lock:
                lost = len(self._unflushed)
            logger.error("Closing index with %d postings that could not be persisted", lost)
        try:
            self.store.close()
        except (StoreError, OSError) as e:
            logger.error("Error closing index store: %s", e)
        logger.info("Inverted index closed")
        return flushed

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
