"""Result snippets: the first sentence of a document that mentions a query term."""

from __future__ import annotations

from typing import Sequence

from nltk.tokenize.punkt import PunktSentenceTokenizer

from .tokenizer import PLACEHOLDERS, is_special_token

MAX_SNIPPET_LENGTH = 240
FALLBACK_LENGTH = 200

_sentences = PunktSentenceTokenizer()


def _clip(sentence: str, match_at: int) -> str:
    if len(sentence) <= MAX_SNIPPET_LENGTH:
        return sentence
    start = max(0, match_at - MAX_SNIPPET_LENGTH // 3)
    end = min(len(sentence), start + MAX_SNIPPET_LENGTH)
    if end - start < MAX_SNIPPET_LENGTH:
        start = max(0, end - MAX_SNIPPET_LENGTH)
    prefix = "..." if start > 0 else ""
    suffix = "..." if end < len(sentence) else ""
    return prefix + sentence[start:end] + suffix


def _fallback(content: str) -> str:
    spans = list(_sentences.span_tokenize(content))
    text = content[spans[0][0] : spans[0][1]].strip() if spans else content.strip()
    if len(text) > FALLBACK_LENGTH:
        return text[:FALLBACK_LENGTH] + "..."
    return text


def find_first_context_match(content: str | None, query_tokens: Sequence[str]) -> str:
    """
    Return the first sentence of content containing any query token
    (case-insensitive substring match), clipped around the match. Falls back
    to the opening sentence when nothing matches.
    """
    if not content:
        return ""
    needles = [
        t.lower() for t in query_tokens
        if t and t not in PLACEHOLDERS and not is_special_token(t)
    ]
    lowered = content.lower()
    spans = list(_sentences.span_tokenize(content))
    hits = [i for i in (lowered.find(n) for n in needles) if i >= 0]
    if hits:
        index = min(hits)
        for start, end in spans:
            if start <= index < end:
                sentence = content[start:end]
                stripped = sentence.lstrip()
                offset = index - start - (len(sentence) - len(stripped))
                return _clip(stripped.rstrip(), offset)
        return _clip(content, index).strip()
    return _fallback(content)
