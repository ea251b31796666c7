"""
PageRank over the crawled link graph, stored as each document's
popularity score.

Usage:
    python -m websearch.pagerank --db data/index.sqlite3
"""

from __future__ import annotations

import argparse
import logging
from typing import Iterable, Mapping

from .config import configure_logging, get_settings
from .documents import normalize_url
from .store import IndexStore, open_store

logger = logging.getLogger(__name__)

DAMPING_FACTOR = 0.85
TOLERANCE = 1.0e-6
MAX_ITER = 100


def compute_page_rank(
    links_by_url: Mapping[str, Iterable[str]],
    *,
    damping: float = DAMPING_FACTOR,
    tolerance: float = TOLERANCE,
    max_iter: int = MAX_ITER,
) -> dict[str, float]:
    """
    Iterative PageRank. Links to URLs outside links_by_url are ignored;
    pages without outgoing links spread their rank evenly.
    Returns url -> rank, summing to 1.
    """
    pages = list(links_by_url)
    n = len(pages)
    if n == 0:
        return {}
    known = set(pages)
    outgoing = {
        page: sorted({to for to in links_by_url[page] if to in known and to != page})
        for page in pages
    }
    incoming: dict[str, list[str]] = {page: [] for page in pages}
    for page, targets in outgoing.items():
        for to in targets:
            incoming[to].append(page)

    ranks = {page: 1.0 / n for page in pages}
    for iteration in range(max_iter):
        dangling = sum(ranks[p] for p in pages if not outgoing[p])
        base = (1.0 - damping) / n + damping * dangling / n
        new_ranks = {
            page: base + damping * sum(ranks[src] / len(outgoing[src]) for src in incoming[page])
            for page in pages
        }
        diff = sum(abs(new_ranks[p] - ranks[p]) for p in pages)
        ranks = new_ranks
        if diff < tolerance:
            logger.debug("PageRank converged after %d iterations", iteration + 1)
            break
    return ranks


def _canonical(url: str) -> str:
    return normalize_url(url, url) or url


def refresh_popularity_scores(store: IndexStore) -> int:
    """Recompute PageRank for every stored document and save the scores."""
    documents = store.get_all_documents()
    graph: dict[str, list[str]] = {}
    for doc in documents:
        targets = graph.setdefault(_canonical(doc.url), [])
        targets.extend(_canonical(link) for link in doc.links)
    ranks = compute_page_rank(graph)
    scores = {doc.url: ranks[_canonical(doc.url)] for doc in documents}
    updated = store.update_popularity_scores(scores)
    logger.info("Updated popularity scores for %d of %d documents", updated, len(documents))
    return updated


def main(argv: Iterable[str] | None = None) -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Compute PageRank popularity scores for indexed documents.")
    parser.add_argument("--db", default=settings.database_path, help="Path to the SQLite index database.")
    args = parser.parse_args(list(argv) if argv is not None else None)

    configure_logging(settings.log_level)
    store = open_store(args.db)
    try:
        updated = refresh_popularity_scores(store)
    finally:
        store.close()
    print(f"Updated popularity scores for {updated} documents.")


if __name__ == "__main__":
    main()
