"""
Build the positional inverted index from crawled pages and print analytics.

Usage:
    python build_index.py --data data/pages --db data/index.sqlite3

The data directory holds crawler output: ``*.json`` files with ``url`` and
``content`` (raw HTML) keys, or plain ``*.html`` files.

Output:
  - SQLite database with postings and document metadata (--db)
  - Analytics table printed to console
  - Optionally, PageRank popularity scores (--pagerank)
"""

import argparse
import sys
from pathlib import Path

from websearch.config import configure_logging, get_settings
from websearch.documents import load_documents
from websearch.index_builder import IndexBuilder
from websearch.inverted_index import InvertedIndex
from websearch.pagerank import refresh_popularity_scores
from websearch.store import open_store


def main() -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Build the web search index")
    parser.add_argument("--data", type=Path, default=Path("data/pages"), help="Directory of crawled pages")
    parser.add_argument("--db", default=settings.database_path, help="SQLite index database path")
    parser.add_argument("--threads", type=int, default=settings.index_threads, help="Indexing threads")
    parser.add_argument("--batch-size", type=int, default=settings.batch_size, help="Postings per store write")
    parser.add_argument("--pagerank", action="store_true", help="Compute popularity scores after indexing")
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level")
    args = parser.parse_args()

    configure_logging(args.log_level)

    if not args.data.exists():
        print(f"No data folder found at {args.data}.")
        sys.exit(1)

    store = open_store(args.db)
    index = InvertedIndex(
        store,
        batch_size=args.batch_size,
        queue_size=settings.queue_size,
        writer_threads=settings.writer_threads,
    )
    builder = IndexBuilder(
        index,
        store,
        num_threads=args.threads,
        max_content_bytes=settings.max_content_bytes,
    )
    try:
        report = builder.build_index(load_documents(args.data, max_bytes=settings.max_content_bytes))
        if not index.flush():
            print("Warning: some postings could not be written to the store.")
        num_terms = index.size()
        num_docs = len(store.get_all_documents())
        if args.pagerank:
            refresh_popularity_scores(store)
    finally:
        index.close()

    if report.processed == 0:
        print(f"No HTML or JSON document files found in {args.data}.")
        sys.exit(1)

    print("\n" + "=" * 50)
    print("INDEX ANALYTICS")
    print("=" * 50)
    print()
    print("| Metric                      | Value |")
    print("|-----------------------------|-------|")
    print(f"| Documents processed         | {report.processed} |")
    print(f"| Documents indexed           | {report.succeeded} |")
    print(f"| Documents rejected          | {report.failed} |")
    print(f"| Documents in store          | {num_docs} |")
    print(f"| Unique terms                | {num_terms} |")
    print(f"| Tokens indexed              | {report.total_tokens} |")
    print()
    print("=" * 50)
    print(f"\nIndex saved to: {args.db}")
    print()


if __name__ == "__main__":
    main()
