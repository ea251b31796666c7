"""Web search indexing and retrieval core."""

from .posting import FieldType, Posting
from .models import Document, DocumentMetadata, QueryCandidate, SearchResponse, SearchResult
from .store import IndexStore, MemoryIndexStore, SqliteIndexStore, open_store
from .inverted_index import InvertedIndex
from .index_builder import BuildReport, IndexBuilder
from .ranker import Ranker
from .query_engine import QueryEngine, parse_query, paginate
from .tokenizer import tokenize
