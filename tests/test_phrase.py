"""Tests for positional phrase matching."""

from websearch.phrase import PhraseState, extend, match_phrase, phrase_tokens, Candidate
from websearch.posting import FieldType, Posting


def posting(doc_id, **positions):
    p = Posting(doc_id=doc_id, url=f"https://example.com/{doc_id}")
    for name, values in positions.items():
        for value in values:
            p.add_position(value, FieldType[name.upper()])
    return p


POSTINGS = {
    "quick": [posting("a", body=[0]), posting("b", body=[0])],
    "brown": [posting("a", body=[1])],
    "fox": [posting("a", body=[2]), posting("b", body=[1])],
    "hello": [posting("a", title=[0])],
    "world": [posting("a", title=[1])],
}


def test_consecutive_tokens_match():
    match = match_phrase(["quick", "fox"], POSTINGS)
    assert match.state is PhraseState.MATCHED
    assert match.steps == 2
    assert match.matches == {"b": "https://example.com/b"}


def test_three_token_phrase():
    match = match_phrase(["quick", "brown", "fox"], POSTINGS)
    assert match.state is PhraseState.MATCHED
    assert list(match.matches) == ["a"]


def test_order_matters():
    match = match_phrase(["brown", "quick"], POSTINGS)
    assert match.state is PhraseState.EMPTY
    assert match.steps == 1


def test_missing_token_ends_empty():
    assert match_phrase(["quick", "zebra"], POSTINGS).state is PhraseState.EMPTY
    assert match_phrase(["zebra", "quick"], POSTINGS).state is PhraseState.EMPTY
    assert match_phrase([], POSTINGS).state is PhraseState.EMPTY


def test_single_token_matches_every_document_containing_it():
    match = match_phrase(["fox"], POSTINGS)
    assert match.state is PhraseState.MATCHED
    assert list(match.matches) == ["a", "b"]


def test_phrase_matches_within_title():
    match = match_phrase(["hello", "world"], POSTINGS)
    assert list(match.matches) == ["a"]


def test_phrase_never_crosses_fields():
    postings = {
        "end": [posting("d", title=[1])],
        "start": [posting("d", body=[2])],
    }
    assert match_phrase(["end", "start"], postings).state is PhraseState.EMPTY


def test_extend_advances_only_adjacent_candidates():
    candidates = {Candidate("a", FieldType.BODY, 0), Candidate("a", FieldType.BODY, 5)}
    survivors = extend(candidates, [posting("a", body=[1, 3])])
    assert survivors == {Candidate("a", FieldType.BODY, 1)}


def test_phrase_tokens_drop_special_tokens():
    assert phrase_tokens(["call", "_num_", "num:555"]) == ["call", "_num_"]
