"""Shared test fixtures."""

from pathlib import Path
import sys

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from websearch.documents import generate_doc_id  # noqa: E402
from websearch.index_builder import IndexBuilder  # noqa: E402
from websearch.inverted_index import InvertedIndex  # noqa: E402
from websearch.models import Document  # noqa: E402
from websearch.query_engine import QueryEngine  # noqa: E402
from websearch.store import MemoryIndexStore  # noqa: E402


@pytest.fixture
def store():
    store = MemoryIndexStore()
    yield store
    store.close()


@pytest.fixture
def index(store):
    index = InvertedIndex(store, batch_size=16, queue_size=64, writer_threads=2)
    yield index
    index.close()


@pytest.fixture
def builder(index, store):
    return IndexBuilder(index, store, num_threads=4)


@pytest.fixture
def engine(index, store):
    engine = QueryEngine(index, store, fetch_timeout=5.0)
    yield engine
    engine.close()


@pytest.fixture
def make_document():
    """Factory for documents whose id is derived from the URL."""

    def _make(url, *, title="", description="", content="", links=None):
        return Document(
            doc_id=generate_doc_id(url),
            url=url,
            title=title,
            description=description,
            content=content,
            links=list(links or []),
        )

    return _make
