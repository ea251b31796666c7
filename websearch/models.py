"""Documents, stored metadata and query-time result records."""

from dataclasses import asdict, dataclass, field


@dataclass
class Document:
    """A crawled page after text extraction, ready to be indexed."""

    doc_id: str
    url: str
    title: str = ""
    description: str = ""
    content: str = ""
    links: list[str] = field(default_factory=list)


@dataclass
class DocumentMetadata:
    """Per-document record kept next to the postings."""

    doc_id: str
    url: str
    title: str = ""
    description: str = ""
    content: str = ""
    total_words: int = 0
    popularity_score: float = 0.0
    links: list[str] = field(default_factory=list)


@dataclass
class QueryCandidate:
    """
    A document surfaced by a query, scored by the ranker.
    Created per query and discarded once the response is built.
    """

    doc_id: str
    url: str
    term_frequencies: dict[str, float]
    total_words: int = 0
    popularity_score: float = 0.0
    relevance_score: float = 0.0
    score: float = 0.0
    title: str = ""
    description: str = ""


@dataclass
class SearchResult:
    doc_id: str
    url: str
    title: str
    description: str
    score: float
    popularity_score: float
    relevance_score: float

    @classmethod
    def from_candidate(cls, candidate: QueryCandidate) -> "SearchResult":
        return cls(
            doc_id=candidate.doc_id,
            url=candidate.url,
            title=candidate.title,
            description=candidate.description,
            score=candidate.score,
            popularity_score=candidate.popularity_score,
            relevance_score=candidate.relevance_score,
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SearchResponse:
    """One page of ranked results plus paging metadata."""

    results: list[SearchResult]
    total_results: int
    total_pages: int
    current_page: int

    @classmethod
    def empty(cls, page: int) -> "SearchResponse":
        return cls(results=[], total_results=0, total_pages=0, current_page=page)

    def to_dict(self) -> dict:
        return {
            "results": [r.to_dict() for r in self.results],
            "totalResults": self.total_results,
            "totalPages": self.total_pages,
            "currentPage": self.current_page,
        }
