"""
Ranker: TF-IDF relevance blended with a precomputed popularity score.

Everything is scoped to the candidate set of the current query: document
frequency counts candidate documents, N is the number of candidates, and
both relevance and popularity are normalized by their maximum among the
candidates.

    tf    = count / total words in the document (query length for the query)
    idf   = log10(N / (1 + df))
    score = 0.7 * relevance + 0.3 * popularity
"""

from __future__ import annotations

import logging
import math
from typing import Mapping, Sequence

from .models import QueryCandidate
from .store import IndexStore

logger = logging.getLogger(__name__)

RELEVANCE_WEIGHT = 0.7
POPULARITY_WEIGHT = 0.3


def document_frequencies(candidates: Sequence[QueryCandidate]) -> dict[str, int]:
    """Number of candidates containing each term."""
    df: dict[str, int] = {}
    for candidate in candidates:
        for term, count in candidate.term_frequencies.items():
            if count > 0:
                df[term] = df.get(term, 0) + 1
    return df


def tfidf_vector(
    term_counts: Mapping[str, float],
    length: float,
    df: Mapping[str, int],
    total_docs: int,
) -> dict[str, float]:
    """TF-IDF weight of every term in term_counts."""
    if length <= 0 or total_docs <= 0:
        return {term: 0.0 for term in term_counts}
    vector: dict[str, float] = {}
    for term, count in term_counts.items():
        idf = math.log10(total_docs / (1 + df.get(term, 0)))
        vector[term] = (count / length) * idf
    return vector


def dot_product(query_vector: Mapping[str, float], doc_vector: Mapping[str, float]) -> float:
    """Dot product over the terms both vectors share."""
    return sum(weight * doc_vector[term] for term, weight in query_vector.items() if term in doc_vector)


def _document_length(candidate: QueryCandidate) -> float:
    if candidate.total_words > 0:
        return candidate.total_words
    # Unknown length: fall back to the counts we have for this candidate.
    return sum(candidate.term_frequencies.values())


def relevance_scores(query_bag: Mapping[str, float], candidates: Sequence[QueryCandidate]) -> list[float]:
    """Raw (unnormalized) relevance of each candidate, in candidate order."""
    total_docs = len(candidates)
    df = document_frequencies(candidates)
    query_vector = tfidf_vector(query_bag, sum(query_bag.values()), df, total_docs)
    return [
        dot_product(
            query_vector,
            tfidf_vector(c.term_frequencies, _document_length(c), df, total_docs),
        )
        for c in candidates
    ]


def _normalize(values: list[float]) -> list[float]:
    peak = max(values, default=0.0)
    if peak <= 0:
        return [0.0 for _ in values]
    return [v / peak for v in values]


class Ranker:
    """Scores and orders the candidates of a query."""

    def __init__(self, store: IndexStore | None = None) -> None:
        self.store = store

    def populate(self, candidates: Sequence[QueryCandidate]) -> None:
        """
        Attach popularity, document length, title and description from the
        store. Lookups that fail leave the candidate with popularity 0.
        """
        if self.store is None:
            return
        for candidate in candidates:
            try:
                document = self.store.get_document(candidate.doc_id)
            except Exception as e:
                logger.warning("Metadata lookup failed for %s: %s", candidate.doc_id, e)
                continue
            if document is None:
                logger.debug("No metadata for %s", candidate.doc_id)
                continue
            candidate.popularity_score = max(0.0, float(document.popularity_score or 0.0))
            candidate.total_words = int(document.total_words or 0)
            candidate.title = document.title or candidate.title
            candidate.description = document.description or candidate.description
            if not candidate.url:
                candidate.url = document.url

    def rank(
        self,
        query_bag: Mapping[str, float],
        candidates: Sequence[QueryCandidate],
    ) -> list[QueryCandidate]:
        """Score candidates and return them sorted by combined score, best first."""
        candidates = list(candidates)
        if not candidates:
            return []
        self.populate(candidates)

        popularity = _normalize([c.popularity_score for c in candidates])
        relevance = _normalize(relevance_scores(query_bag, candidates))
        for candidate, rel, pop in zip(candidates, relevance, popularity):
            candidate.popularity_score = pop
            candidate.relevance_score = rel
            candidate.score = RELEVANCE_WEIGHT * rel + POPULARITY_WEIGHT * pop

        # sorted() is stable: equal scores keep candidate order
        ranked = sorted(candidates, key=lambda c: c.score, reverse=True)
        logger.debug("Ranked %d candidates", len(ranked))
        return ranked
