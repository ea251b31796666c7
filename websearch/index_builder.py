"""
Index builder: tokenizes documents field by field and feeds positional
postings to the inverted index.

Each document becomes one task on a thread pool. Within a document the
fields are tokenized in order (title, description, body), each numbering its
positions from 0, and every distinct term gets a single Posting carrying the
positions of all three fields.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
import logging
import os
import time
from typing import Iterable

from .documents import MAX_CONTENT_BYTES
from .errors import DocumentProcessingError, IndexClosedError, StoreError
from .inverted_index import InvertedIndex
from .models import Document, DocumentMetadata
from .posting import FIELD_ORDER, FieldType, Posting
from .store import IndexStore
from .tokenizer import tokenize

logger = logging.getLogger(__name__)


@dataclass
class BuildReport:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    total_tokens: int = 0


def _field_text(document: Document, field_type: FieldType) -> str:
    if field_type is FieldType.TITLE:
        return document.title or ""
    if field_type is FieldType.DESCRIPTION:
        return document.description or ""
    return document.content or ""


def build_postings(document: Document) -> tuple[dict[str, Posting], int]:
    """
    Tokenize each field of document and collect one Posting per term.
    Returns (term -> posting, total token count).
    """
    postings: dict[str, Posting] = {}
    total_tokens = 0
    for field_type in FIELD_ORDER:
        tokens = tokenize(_field_text(document, field_type))
        for position, term in enumerate(tokens):
            posting = postings.get(term)
            if posting is None:
                posting = postings[term] = Posting(doc_id=document.doc_id, url=document.url)
            posting.add_position(position, field_type)
        total_tokens += len(tokens)
    return postings, total_tokens


class IndexBuilder:
    """Drives the tokenizer over documents and writes the results to the index."""

    def __init__(
        self,
        index: InvertedIndex,
        store: IndexStore | None = None,
        *,
        num_threads: int | None = None,
        max_content_bytes: int = MAX_CONTENT_BYTES,
    ) -> None:
        self.index = index
        self.store = store if store is not None else index.store
        self.num_threads = num_threads or os.cpu_count() or 1
        self.max_content_bytes = max_content_bytes

    def validate(self, document: Document) -> None:
        """Raise DocumentProcessingError if document cannot be indexed."""
        if document is None:
            raise DocumentProcessingError("Document is missing")
        if not document.doc_id or not document.url:
            raise DocumentProcessingError("Document has no id or URL", document.url)
        if not any(_field_text(document, f).strip() for f in FIELD_ORDER):
            raise DocumentProcessingError("Empty document", document.url)
        size = sum(len(_field_text(document, f).encode("utf-8")) for f in FIELD_ORDER)
        if size > self.max_content_bytes:
            raise DocumentProcessingError(
                f"Document exceeds maximum size limit ({size} > {self.max_content_bytes} bytes)",
                document.url,
            )

    def index_document(self, document: Document) -> int:
        """
        Index a single document and save its metadata.
        Returns the number of tokens indexed across all fields.
        """
        self.validate(document)
        postings, total_tokens = build_postings(document)
        for term, posting in postings.items():
            self.index.add_term(term, posting)
        self.store.save_document(
            DocumentMetadata(
                doc_id=document.doc_id,
                url=document.url,
                title=document.title or "",
                description=document.description or "",
                content=document.content or "",
                total_words=total_tokens,
                links=list(document.links),
            )
        )
        logger.debug("Indexed %s: %d terms, %d tokens", document.url, len(postings), total_tokens)
        return total_tokens

    def build_index(self, documents: Iterable[Document]) -> BuildReport:
        """
        Index documents concurrently. A failing document is logged and
        counted; it never stops the others.
        """
        report = BuildReport()
        started = time.monotonic()
        with ThreadPoolExecutor(max_workers=self.num_threads, thread_name_prefix="indexer") as executor:
            futures = {executor.submit(self.index_document, doc): doc for doc in documents}
            logger.info("Indexing %d documents with %d threads", len(futures), self.num_threads)
            for future in as_completed(futures):
                document = futures[future]
                report.processed += 1
                try:
                    report.total_tokens += future.result()
                    report.succeeded += 1
                except DocumentProcessingError as e:
                    report.failed += 1
                    logger.warning("Skipping document %s: %s", getattr(document, "url", None), e)
                except (StoreError, IndexClosedError) as e:
                    report.failed += 1
                    logger.error("Could not index %s: %s", getattr(document, "url", None), e)
                except Exception:
                    report.failed += 1
                    logger.exception("Unexpected error indexing %s", getattr(document, "url", None))
        logger.info(
            "Index build finished in %.2fs: %d/%d documents indexed, %d failed, %d tokens",
            time.monotonic() - started, report.succeeded, report.processed, report.failed,
            report.total_tokens,
        )
        return report
