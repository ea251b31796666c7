"""
Exact phrase matching over positional postings.

Candidates are (doc_id, field, position) triples. They are seeded from every
occurrence of the first phrase token and extended one token at a time: a
candidate survives step i only if token i occurs in the same document and
field at position + 1. Matching never crosses fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Sequence

from .posting import FieldType, Posting, iter_field_positions
from .tokenizer import is_special_token


class PhraseState(Enum):
    SEEDED = "seeded"
    EXTENDED = "extended"
    EMPTY = "empty"
    MATCHED = "matched"


@dataclass(frozen=True)
class Candidate:
    doc_id: str
    field_type: FieldType
    position: int


@dataclass
class PhraseMatch:
    state: PhraseState
    # number of tokens matched so far (1 after seeding)
    steps: int = 0
    # doc_id -> url of documents containing the phrase
    matches: dict[str, str] = field(default_factory=dict)


def phrase_tokens(tokens: Sequence[str]) -> list[str]:
    """Drop special tokens; they are appended after the text and have no neighbours."""
    return [t for t in tokens if not is_special_token(t)]


def _seed(postings: Sequence[Posting]) -> tuple[set[Candidate], dict[str, str]]:
    candidates: set[Candidate] = set()
    urls: dict[str, str] = {}
    for posting in postings:
        urls.setdefault(posting.doc_id, posting.url)
        for field_type, position in iter_field_positions(posting):
            candidates.add(Candidate(posting.doc_id, field_type, position))
    return candidates, urls


def extend(candidates: set[Candidate], postings: Sequence[Posting]) -> set[Candidate]:
    """Advance every candidate that is immediately followed by the next token."""
    by_doc = {p.doc_id: p for p in postings}
    position_sets: dict[tuple[str, FieldType], set[int]] = {}
    survivors: set[Candidate] = set()
    for candidate in candidates:
        posting = by_doc.get(candidate.doc_id)
        if posting is None:
            continue
        key = (candidate.doc_id, candidate.field_type)
        positions = position_sets.get(key)
        if positions is None:
            positions = position_sets[key] = set(posting.positions(candidate.field_type))
        if candidate.position + 1 in positions:
            survivors.add(Candidate(candidate.doc_id, candidate.field_type, candidate.position + 1))
    return survivors


def match_phrase(tokens: Sequence[str], postings_by_term: Mapping[str, Sequence[Posting]]) -> PhraseMatch:
    """
    Find documents where tokens occur consecutively within one field.
    postings_by_term must hold the postings of every token; missing or empty
    entries end the match as EMPTY.
    """
    if not tokens:
        return PhraseMatch(PhraseState.EMPTY)

    first = postings_by_term.get(tokens[0]) or []
    candidates, urls = _seed(first)
    if not candidates:
        return PhraseMatch(PhraseState.EMPTY)
    result = PhraseMatch(PhraseState.SEEDED, steps=1)

    for token in tokens[1:]:
        postings = postings_by_term.get(token) or []
        if not postings:
            return PhraseMatch(PhraseState.EMPTY, steps=result.steps)
        candidates = extend(candidates, postings)
        if not candidates:
            return PhraseMatch(PhraseState.EMPTY, steps=result.steps)
        result = PhraseMatch(PhraseState.EXTENDED, steps=result.steps + 1)

    matched_docs = sorted({c.doc_id for c in candidates})
    return PhraseMatch(
        PhraseState.MATCHED,
        steps=result.steps,
        matches={doc_id: urls.get(doc_id, "") for doc_id in matched_docs},
    )
