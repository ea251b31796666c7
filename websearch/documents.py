"""
HTML parsing for crawled pages.
Turns raw HTML + URL into a ``Document`` (title, meta description, visible
body text, outgoing links) and loads crawl output from a data directory.
"""

import hashlib
import json
import logging
import re
import warnings
from pathlib import Path
from typing import Iterator
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, MarkupResemblesLocatorWarning, XMLParsedAsHTMLWarning

from .errors import DocumentProcessingError
from .models import Document

warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
warnings.filterwarnings("ignore", category=MarkupResemblesLocatorWarning)

logger = logging.getLogger(__name__)

MAX_CONTENT_BYTES = 100_000_000

# Removed before the body text is extracted
UNWANTED_SELECTORS = ("script", "style", "noscript", ".ads", ".comments")

_DUPLICATE_SLASHES = re.compile(r"(?<!:)/{2,}")


def generate_doc_id(url: str) -> str:
    """Stable document id: SHA-256 hex digest of the URL."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


def strip_fragment(url: str) -> str:
    """Remove URL fragment (#...)."""
    parsed = urlparse(url)
    if parsed.fragment:
        parsed = parsed._replace(fragment="")
    return parsed.geturl()


def normalize_url(href: str | None, base_url: str) -> str | None:
    """
    Resolve href against base_url and canonicalize it: no fragment,
    lowercase, no duplicate slashes, sorted query parameters.
    Returns None for empty or non-http(s) links.
    """
    if not href or not href.strip():
        return None
    href = href.strip().replace(" ", "%20").replace("|", "%7C")
    try:
        absolute = strip_fragment(urljoin(base_url, href))
    except ValueError:
        logger.debug("Failed to resolve link %r against %s", href, base_url)
        return None
    normalized = absolute.lower()
    if not normalized.startswith(("http://", "https://")):
        return None
    normalized = _DUPLICATE_SLASHES.sub("/", normalized)
    if "?" in normalized:
        base, query = normalized.split("?", 1)
        params = sorted(p for p in query.split("&") if p)
        normalized = base + ("?" + "&".join(params) if params else "")
    return normalized


def _extract_links(soup: BeautifulSoup, base_url: str) -> list[str]:
    links: list[str] = []
    seen: set[str] = set()
    for anchor in soup.find_all("a", href=True):
        normalized = normalize_url(anchor["href"], base_url)
        if normalized and normalized not in seen:
            seen.add(normalized)
            links.append(normalized)
    return links


def parse_html(html_content: str | None, url: str, *, max_bytes: int = MAX_CONTENT_BYTES) -> Document:
    """
    Parse a crawled page into a Document.
    Raises DocumentProcessingError for empty or oversized input.
    """
    if html_content is None or not html_content.strip():
        raise DocumentProcessingError("Empty or null HTML content", url)
    if len(html_content.encode("utf-8")) > max_bytes:
        raise DocumentProcessingError("Document exceeds maximum size limit", url)

    # stored in the same canonical form as the links that point at it
    url = normalize_url(url, url) or url
    soup = BeautifulSoup(html_content, "lxml")
    title = soup.title.get_text(" ", strip=True) if soup.title else ""
    meta = soup.find("meta", attrs={"name": "description"})
    description = (meta.get("content") or "").strip() if meta else ""
    links = _extract_links(soup, url)

    for element in soup.select(", ".join(UNWANTED_SELECTORS)):
        element.decompose()
    if soup.head is not None:
        soup.head.decompose()
    body = soup.body if soup.body is not None else soup
    content = body.get_text(separator=" ", strip=True)

    return Document(
        doc_id=generate_doc_id(url),
        url=url,
        title=title,
        description=description,
        content=content,
        links=links,
    )


def read_html_file(filepath: Path) -> str:
    """Read HTML file content, handling common encodings."""
    for encoding in ("utf-8", "latin-1", "cp1252"):
        try:
            return Path(filepath).read_text(encoding=encoding)
        except UnicodeDecodeError:
            continue
    raise DocumentProcessingError(f"Could not decode file: {filepath}")


def _read_doc_content_and_url(filepath: Path, root: Path) -> tuple[str, str]:
    """
    Read document content and URL from a file.
    - .json: crawler output, {"url": ..., "content": <html>}
    - .html: the URL is derived from the path relative to root.
    """
    if filepath.suffix.lower() == ".json":
        data = json.loads(filepath.read_text(encoding="utf-8"))
        if "content" not in data:
            raise DocumentProcessingError(f"JSON file has no 'content' field: {filepath}")
        url = data.get("url") or filepath.relative_to(root).as_posix()
        return data["content"], strip_fragment(url)
    return read_html_file(filepath), filepath.relative_to(root).as_posix()


def load_documents(data_dir: Path, *, max_bytes: int = MAX_CONTENT_BYTES) -> Iterator[Document]:
    """
    Yield parsed documents for every .html/.json file under data_dir.
    Unreadable or rejected files are logged and skipped.
    """
    data_dir = Path(data_dir)
    doc_files = sorted(
        list(data_dir.rglob("*.html")) + list(data_dir.rglob("*.json")),
        key=lambda p: str(p),
    )
    for filepath in doc_files:
        try:
            content, url = _read_doc_content_and_url(filepath, data_dir)
            yield parse_html(content, url, max_bytes=max_bytes)
        except (DocumentProcessingError, OSError, ValueError) as e:
            logger.warning("Skipping %s: %s", filepath, e)
