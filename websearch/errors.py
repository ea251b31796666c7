"""Exception types shared by the indexer and the query path."""


class SearchEngineError(Exception):
    """Base class for all websearch errors."""


class DocumentProcessingError(SearchEngineError):
    """A document is malformed, empty or too large to be indexed."""

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class StoreError(SearchEngineError):
    """The posting store could not be opened or failed an operation."""


class IndexInitializationError(SearchEngineError):
    """The inverted index could not reach its store at construction time."""


class IndexClosedError(SearchEngineError):
    """An update was submitted after the index was closed."""
