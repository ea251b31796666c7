"""
Query engine: free-text and exact-phrase search over the inverted index.

Postings for the distinct query terms are fetched in parallel, one task per
term, under a shared timeout. A term that times out or fails contributes
nothing; the query still answers with whatever the other terms found.
Candidates are ranked, paginated, and the returned page is enriched with
document details and a snippet.
"""

from __future__ import annotations

from collections import Counter
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
import logging
import math
import os
import re
from typing import Sequence, TypeVar

from .inverted_index import InvertedIndex
from .models import QueryCandidate, SearchResponse, SearchResult
from .phrase import PhraseState, match_phrase, phrase_tokens
from .posting import Posting
from .ranker import Ranker
from .snippet import find_first_context_match
from .store import IndexStore
from .tokenizer import tokenize

logger = logging.getLogger(__name__)

FETCH_TIMEOUT = 10.0
DEFAULT_PAGE_SIZE = 10

_QUOTED = re.compile(r'"([^"]+)"')

T = TypeVar("T")


@dataclass
class ParsedQuery:
    text: str
    is_phrase: bool


def parse_query(raw_query: str | None) -> ParsedQuery:
    """
    A double-quoted substring selects phrase search with the quoted text as
    the phrase; anything else is a free-text query.
    """
    if not raw_query:
        return ParsedQuery("", False)
    match = _QUOTED.search(raw_query)
    if match and match.group(1).strip():
        return ParsedQuery(match.group(1).strip(), True)
    return ParsedQuery(" ".join(raw_query.replace('"', " ").split()), False)


def paginate(items: Sequence[T], page: int, page_size: int) -> list[T]:
    """Zero-based page of items; an out-of-range page is empty."""
    if page < 0:
        page = 0
    if page_size <= 0:
        page_size = DEFAULT_PAGE_SIZE
    start = page * page_size
    return list(items[start : start + page_size])


def count_pages(total: int, page_size: int) -> int:
    if page_size <= 0:
        page_size = DEFAULT_PAGE_SIZE
    return math.ceil(total / page_size)


def _unique(tokens: Sequence[str]) -> list[str]:
    return list(dict.fromkeys(tokens))


class QueryEngine:
    """Answers term and phrase queries with ranked, paginated results."""

    def __init__(
        self,
        index: InvertedIndex,
        store: IndexStore | None = None,
        *,
        ranker: Ranker | None = None,
        fetch_timeout: float = FETCH_TIMEOUT,
        fetch_workers: int | None = None,
    ) -> None:
        self.index = index
        self.store = store if store is not None else index.store
        self.ranker = ranker if ranker is not None else Ranker(self.store)
        self.fetch_timeout = fetch_timeout
        self.fetch_workers = fetch_workers or os.cpu_count() or 1
        # Shared by every query; caps fetch threads, and with them per-thread
        # store connections, at fetch_workers.
        self._executor = ThreadPoolExecutor(
            max_workers=self.fetch_workers, thread_name_prefix="postings-fetch"
        )

    def fetch_postings(self, terms: Sequence[str]) -> dict[str, list[Posting]]:
        """
        Fetch postings for each distinct term in parallel.
        Terms with no postings, a failure or a timeout are left out.
        """
        terms = _unique(terms)
        if not terms:
            return {}
        futures = {self._executor.submit(self.index.get_postings, term): term for term in terms}
        done, not_done = wait(futures, timeout=self.fetch_timeout)
        for future in not_done:
            future.cancel()
            logger.warning("Postings fetch for %r timed out after %.1fs", futures[future], self.fetch_timeout)
        fetched: dict[str, list[Posting]] = {}
        for future in done:
            term = futures[future]
            try:
                postings = future.result()
            except Exception as e:
                logger.warning("Postings fetch for %r failed: %s", term, e)
                continue
            if postings:
                fetched[term] = postings
        # keep query order so candidate order (the tie-break) is deterministic
        return {term: fetched[term] for term in terms if term in fetched}

    def close(self) -> None:
        """Stop the fetch pool. Fetches still stuck on the store are abandoned."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def search(self, query: str, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> SearchResponse:
        """Entry point: quoted text runs a phrase search, anything else a term search."""
        parsed = parse_query(query)
        if parsed.is_phrase:
            return self.phrase_search(parsed.text, page, page_size)
        return self.term_search(parsed.text, page, page_size)

    def term_search(self, query: str, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> SearchResponse:
        page, page_size = self._paging(page, page_size)
        try:
            tokens = tokenize(query)
            if not tokens:
                logger.info("No valid terms in query %r", query)
                return SearchResponse.empty(page)
            return self._term_search_tokens(tokens, page, page_size)
        except Exception:
            logger.exception("Term search failed for %r", query)
            return SearchResponse.empty(page)

    def phrase_search(self, phrase: str, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> SearchResponse:
        page, page_size = self._paging(page, page_size)
        try:
            tokens = phrase_tokens(tokenize(phrase))
            if not tokens:
                logger.info("No valid terms in phrase %r", phrase)
                return SearchResponse.empty(page)
            if len(tokens) == 1:
                return self._term_search_tokens(tokens, page, page_size)

            postings_by_term = self.fetch_postings(tokens)
            match = match_phrase(tokens, postings_by_term)
            logger.debug("Phrase %r ended in state %s after %d tokens", phrase, match.state.name, match.steps)
            if match.state is not PhraseState.MATCHED:
                return SearchResponse.empty(page)

            candidates = [
                QueryCandidate(doc_id=doc_id, url=url, term_frequencies={t: 1 for t in tokens})
                for doc_id, url in match.matches.items()
            ]
            return self._respond(Counter(tokens), candidates, tokens, page, page_size)
        except Exception:
            logger.exception("Phrase search failed for %r", phrase)
            return SearchResponse.empty(page)

    def _paging(self, page: int, page_size: int) -> tuple[int, int]:
        return max(1, page), page_size if page_size > 0 else DEFAULT_PAGE_SIZE

    def _term_search_tokens(self, tokens: list[str], page: int, page_size: int) -> SearchResponse:
        postings_by_term = self.fetch_postings(tokens)
        candidates: dict[str, QueryCandidate] = {}
        for term, postings in postings_by_term.items():
            for posting in postings:
                candidate = candidates.get(posting.doc_id)
                if candidate is None:
                    candidate = candidates[posting.doc_id] = QueryCandidate(
                        doc_id=posting.doc_id, url=posting.url, term_frequencies={}
                    )
                # field-weighted occurrence count
                frequencies = candidate.term_frequencies
                frequencies[term] = frequencies.get(term, 0.0) + posting.weight
        return self._respond(Counter(tokens), list(candidates.values()), tokens, page, page_size)

    def _respond(
        self,
        query_bag: Counter,
        candidates: list[QueryCandidate],
        tokens: list[str],
        page: int,
        page_size: int,
    ) -> SearchResponse:
        if not candidates:
            return SearchResponse.empty(page)
        ranked = self.ranker.rank(query_bag, candidates)
        page_items = paginate(ranked, page - 1, page_size)
        results = [SearchResult.from_candidate(c) for c in page_items]
        self._enrich(results, tokens)
        return SearchResponse(
            results=results,
            total_results=len(ranked),
            total_pages=count_pages(len(ranked), page_size),
            current_page=page,
        )

    def _enrich(self, results: list[SearchResult], tokens: list[str]) -> None:
        """Fill title and a matching snippet for the results of one page."""
        if not results:
            return
        try:
            details = self.store.get_documents_by_ids([r.doc_id for r in results])
        except Exception as e:
            logger.warning("Could not load document details: %s", e)
            return
        for result in results:
            document = details.get(result.doc_id)
            if document is None:
                continue
            result.title = document.title or result.title
            result.url = document.url or result.url
            snippet = find_first_context_match(document.content, tokens)
            result.description = snippet or document.description or result.description
