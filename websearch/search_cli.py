"""
Interactive search over a built index.

Free-text queries are ranked by TF-IDF relevance and popularity; wrap text
in double quotes for an exact phrase search. Type ``:n`` / ``:p`` to move to
the next / previous page of the last query.

Usage (from repo root, after building the index):
    python -m websearch.search_cli --db data/index.sqlite3
    python -m websearch.search_cli --db data/index.sqlite3 --query '"quick fox"' --json
"""

from __future__ import annotations

import argparse
import json
from typing import Iterable

from .config import configure_logging, get_settings
from .inverted_index import InvertedIndex
from .models import SearchResponse
from .query_engine import QueryEngine
from .store import open_store


def print_response(query: str, response: SearchResponse, page_size: int) -> None:
    if not response.total_results:
        print(f"No documents matched {query!r}.")
        return
    print(
        f"{response.total_results} results, page {response.current_page}/{response.total_pages}"
    )
    offset = (response.current_page - 1) * page_size
    for rank, result in enumerate(response.results, start=offset + 1):
        print(f"{rank:3d}. score={result.score:.4f}  {result.title or '(untitled)'}")
        print(f"     {result.url}")
        if result.description:
            print(f"     {result.description}")


def run_search_loop(engine: QueryEngine, page_size: int) -> None:
    """Interactive command-line search loop."""
    print("Enter queries (quote text for phrase search). Empty line or Ctrl+C to exit.")
    last_query: str | None = None
    page = 1
    while True:
        try:
            raw_query = input("query> ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            break
        if not raw_query:
            break
        if raw_query in (":n", ":p"):
            if last_query is None:
                print("No previous query.")
                continue
            page = page + 1 if raw_query == ":n" else max(1, page - 1)
        else:
            last_query, page = raw_query, 1
        print_response(last_query, engine.search(last_query, page, page_size), page_size)


def main(argv: Iterable[str] | None = None) -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Search the web index.")
    parser.add_argument("--db", default=settings.database_path, help="Path to the SQLite index database.")
    parser.add_argument("--query", default=None, help="Run a single query and exit.")
    parser.add_argument("--page", type=int, default=1, help="Result page for --query (1-based).")
    parser.add_argument("--page-size", type=int, default=settings.page_size, help="Results per page.")
    parser.add_argument("--timeout", type=float, default=settings.fetch_timeout, help="Per-term fetch timeout (s).")
    parser.add_argument("--json", action="store_true", help="Print the response for --query as JSON.")
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level.")
    args = parser.parse_args(list(argv) if argv is not None else None)

    configure_logging(args.log_level)
    index = InvertedIndex(open_store(args.db), writer_threads=1)
    try:
        with QueryEngine(index, fetch_timeout=args.timeout) as engine:
            if args.query is not None:
                response = engine.search(args.query, args.page, args.page_size)
                if args.json:
                    print(json.dumps(response.to_dict(), indent=2, ensure_ascii=False))
                else:
                    print_response(args.query, response, args.page_size)
            else:
                run_search_loop(engine, args.page_size)
    finally:
        index.close()


if __name__ == "__main__":
    main()
