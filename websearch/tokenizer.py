"""
Tokenizer shared by the indexer and the query engine.

Pipeline: NFC normalization, extraction of special spans (emails, URLs,
numbers), placeholder substitution, lowercasing and punctuation stripping,
length/stopword filtering, Snowball stemming. Special spans are appended
verbatim (prefixed by their category) after the general tokens.
"""

import re
import threading
import unicodedata

from nltk.stem.snowball import SnowballStemmer

EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,6}", re.ASCII)
URL_PATTERN = re.compile(r"(?:https?://|www\.)[a-zA-Z0-9.-]+\.[a-zA-Z]{2,6}\S*", re.ASCII)
NUMBER_PATTERN = re.compile(r"\b\d+(?:\.\d+)?\b", re.ASCII)

EMAIL_MARKER = "_email_"
URL_MARKER = "_url_"
NUMBER_MARKER = "_num_"
PLACEHOLDERS = frozenset({EMAIL_MARKER, URL_MARKER, NUMBER_MARKER})

# (pattern, special-token prefix, placeholder), in replacement order
_SPECIAL_SPANS = (
    (EMAIL_PATTERN, "email:", EMAIL_MARKER),
    (URL_PATTERN, "url:", URL_MARKER),
    (NUMBER_PATTERN, "num:", NUMBER_MARKER),
)
SPECIAL_PREFIXES = tuple(prefix for _, prefix, _ in _SPECIAL_SPANS)

STOPWORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "by", "for",
    "from", "has", "he", "in", "is", "it", "its", "of", "on",
    "that", "the", "to", "was", "were", "will", "with", "this",
})

MIN_TOKEN_LENGTH = 2
MAX_TOKEN_LENGTH = 50
MIN_STEM_LENGTH = 4

_NON_TOKEN_CHARS = re.compile(r"[^a-z0-9_\s]")

# SnowballStemmer keeps per-call state; one instance per thread.
_local = threading.local()


def _stemmer() -> SnowballStemmer:
    stemmer = getattr(_local, "stemmer", None)
    if stemmer is None:
        stemmer = SnowballStemmer("english")
        _local.stemmer = stemmer
    return stemmer


def stem_token(word: str) -> str:
    """Return the Snowball stem of word, leaving markers and short words alone."""
    if len(word) < MIN_STEM_LENGTH or word in PLACEHOLDERS:
        return word
    return _stemmer().stem(word)


def stem_tokens(tokens: list[str]) -> list[str]:
    """Stem a list of tokens."""
    return [stem_token(t) for t in tokens]


def is_stopword(token: str) -> bool:
    return token.lower() in STOPWORDS


def is_special_token(token: str) -> bool:
    """True for the appended ``email:``/``url:``/``num:`` tokens."""
    return token.startswith(SPECIAL_PREFIXES)


def extract_special_tokens(text: str) -> list[str]:
    """
    Find emails, URLs and numbers in text.
    Returns category-prefixed tokens ordered by where they start in text.
    """
    found: list[tuple[int, str]] = []
    for pattern, prefix, _marker in _SPECIAL_SPANS:
        for match in pattern.finditer(text):
            value = match.group()
            if prefix != "num:":
                value = value.lower()
            found.append((match.start(), prefix + value))
    found.sort(key=lambda item: item[0])
    return [token for _, token in found]


def replace_special_tokens(text: str) -> str:
    """Replace special spans by their placeholder markers."""
    for pattern, _prefix, marker in _SPECIAL_SPANS:
        text = pattern.sub(f" {marker.upper()} ", text)
    return text


def _keep(token: str) -> bool:
    if not MIN_TOKEN_LENGTH <= len(token) <= MAX_TOKEN_LENGTH:
        return False
    return token in PLACEHOLDERS or not is_stopword(token)


def tokenize(text: str | None) -> list[str]:
    """
    Tokenize text into normalized, stemmed terms followed by special tokens.
    Empty or missing text gives an empty list.
    """
    if not text:
        return []
    text = unicodedata.normalize("NFC", text)
    special_tokens = extract_special_tokens(text)
    working = replace_special_tokens(text).lower()
    working = _NON_TOKEN_CHARS.sub(" ", working)
    tokens = [stem_token(t) for t in working.split() if _keep(t)]
    tokens.extend(special_tokens)
    return tokens
