"""
Posting data structures.

A posting links one term to one document and records, per document field,
the positions at which the term occurs. Positions are indices into that
field's own token sequence, so every field numbers from 0.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator


class FieldType(Enum):
    """Document fields, valued by their relevance weight."""

    TITLE = 3.0
    DESCRIPTION = 1.5
    BODY = 1.0

    @property
    def weight(self) -> float:
        return self.value


# Tokenization order for a document's fields.
FIELD_ORDER = (FieldType.TITLE, FieldType.DESCRIPTION, FieldType.BODY)


@dataclass
class Posting:
    """
    A term's occurrences in one document.
    - doc_id: document identifier
    - url: document URL, carried so results can be shown without a lookup
    - field_positions: FieldType -> sorted token positions within that field
    """

    doc_id: str
    url: str
    field_positions: dict[FieldType, list[int]] = field(default_factory=dict)

    def add_position(self, position: int, field_type: FieldType) -> None:
        positions = self.field_positions.setdefault(field_type, [])
        if position in positions:
            return
        positions.append(position)
        if len(positions) > 1 and positions[-2] > position:
            positions.sort()

    def positions(self, field_type: FieldType | None = None) -> list[int]:
        """Positions in one field, or all positions across fields."""
        if field_type is not None:
            return self.field_positions.get(field_type, [])
        return [p for positions in self.field_positions.values() for p in positions]

    @property
    def field_types(self) -> list[FieldType]:
        return [f for f in FIELD_ORDER if self.field_positions.get(f)]

    @property
    def frequency(self) -> int:
        return sum(len(p) for p in self.field_positions.values())

    def field_frequency(self, field_type: FieldType) -> int:
        return len(self.field_positions.get(field_type, []))

    @property
    def weight(self) -> float:
        """Sum over fields of field weight times occurrence count."""
        return sum(f.weight * len(p) for f, p in self.field_positions.items())

    def merge(self, other: "Posting") -> None:
        """Union other's positions into this posting, field by field."""
        if other.doc_id != self.doc_id:
            raise ValueError(f"Cannot merge postings of {other.doc_id!r} into {self.doc_id!r}")
        for field_type, positions in other.field_positions.items():
            if not positions:
                continue
            current = self.field_positions.get(field_type, [])
            self.field_positions[field_type] = sorted(set(current).union(positions))

    def copy(self) -> "Posting":
        return Posting(
            doc_id=self.doc_id,
            url=self.url,
            field_positions={f: list(p) for f, p in self.field_positions.items()},
        )

    def to_dict(self) -> dict:
        """Serialize to a JSON-compatible dict."""
        return {
            "doc_id": self.doc_id,
            "url": self.url,
            "field_positions": {f.name: list(p) for f, p in self.field_positions.items() if p},
            "weight": self.weight,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Posting":
        posting = cls(doc_id=data["doc_id"], url=data.get("url") or "")
        for name, positions in (data.get("field_positions") or {}).items():
            field_type = FieldType[name]
            posting.field_positions[field_type] = sorted(set(int(p) for p in positions))
        return posting

    def __repr__(self) -> str:
        fields = ", ".join(f"{f.name}={self.field_positions[f]}" for f in self.field_types)
        return f"Posting(doc_id={self.doc_id!r}, url={self.url!r}, weight={self.weight}, {{{fields}}})"


def merge_updates(updates: list[tuple[str, Posting]]) -> list[tuple[str, Posting]]:
    """
    Collapse a batch of (term, posting) updates so each (term, doc_id) pair
    is written once, with the union of all its positions.
    Input postings are not modified.
    """
    merged: dict[tuple[str, str], Posting] = {}
    for term, posting in updates:
        key = (term, posting.doc_id)
        existing = merged.get(key)
        if existing is None:
            merged[key] = posting.copy()
        else:
            existing.merge(posting)
    return [(term, posting) for (term, _doc_id), posting in merged.items()]


def iter_field_positions(posting: Posting) -> Iterator[tuple[FieldType, int]]:
    """Yield (field, position) pairs of a posting in field order."""
    for field_type in posting.field_types:
        for position in posting.field_positions[field_type]:
            yield field_type, position
