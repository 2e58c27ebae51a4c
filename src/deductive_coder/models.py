"""Core data types shared by every component."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class CodeDefinition:
    """One entry of the codebook."""

    id: str
    """Unique id, assigned by the codebook loader."""

    name: str
    """Short label shown to the user."""

    definition: str
    """Free-text definition (may include examples)."""

    color: str
    """Hex color used for highlights and badges."""

    def as_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "name": self.name,
            "definition": self.definition,
            "color": self.color,
        }


@dataclass(frozen=True, slots=True)
class TextRange:
    """A ``[start, end)`` character range in the canonical document."""

    start: int
    end: int

    def __len__(self) -> int:
        return max(0, self.end - self.start)


@dataclass(frozen=True, slots=True)
class CodedSpan:
    """A tagged character range.

    Spans are never edited in place. ``codes`` is ordered: the first id is the
    primary code used for highlight color, but two spans carrying the same
    codes in a different order code the same thing.
    """

    id: str
    text: str
    """Cached ``document[start:end]`` at creation time."""

    codes: tuple[str, ...]
    start: int
    end: int

    @property
    def primary_code(self) -> str:
        return self.codes[0]

    @property
    def range(self) -> TextRange:
        return TextRange(self.start, self.end)

    def has_code(self, code_id: str) -> bool:
        return code_id in self.codes

    def same_coding(self, other: CodedSpan) -> bool:
        """True when *other* covers the same range with the same set of codes."""
        return (
            self.start == other.start
            and self.end == other.end
            and set(self.codes) == set(other.codes)
        )
