"""Highlight composition.

Partitions a document (or each of its paragraphs) into a linear sequence of
plain and highlighted segments. The segments of a block always concatenate
back to exactly the block's slice of the document, with no character added
or lost.

Only one highlight style exists per character position, so overlapping spans
collapse into a single highlighted segment styled by the span that sorts
first (start ascending, then shorter first, then insertion order).
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from .models import CodedSpan, CodeDefinition

DEFAULT_HIGHLIGHT_COLOR = "#3b82f6"

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


@dataclass(slots=True)
class Segment:
    """A run of characters sharing one style."""

    text: str
    start: int
    """Document offset of the first character."""

    end: int
    color: str | None = None
    """Highlight color, ``None`` for plain text."""

    code_id: str | None = None
    """Primary code of the span that styles this segment."""

    span_id: str | None = None

    @property
    def kind(self) -> str:
        return "plain" if self.color is None else "highlighted"

    @property
    def highlighted(self) -> bool:
        return self.color is not None


@dataclass(slots=True)
class RenderBlock:
    """One rendered unit: the whole document, or a single paragraph."""

    start: int
    end: int
    segments: list[Segment] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(seg.text for seg in self.segments)


def split_paragraphs(text: str) -> list[tuple[int, int]]:
    """Return ``(start, end)`` bounds of the paragraphs in *text*.

    Paragraphs are separated by blank lines (a newline, optional whitespace,
    and another newline). Empty paragraphs are dropped, so a document that is
    entirely whitespace has no paragraphs.
    """
    bounds: list[tuple[int, int]] = []
    pos = 0
    for match in _PARAGRAPH_BREAK.finditer(text):
        if match.start() > pos:
            bounds.append((pos, match.start()))
        pos = match.end()
    if pos < len(text):
        bounds.append((pos, len(text)))
    return [(s, e) for s, e in bounds if text[s:e].strip()]


def sort_spans(spans: Iterable[CodedSpan]) -> list[CodedSpan]:
    """Render order: start ascending, shorter first, then original order."""
    return sorted(spans, key=lambda s: (s.start, s.end - s.start))


class HighlightCompositor:
    """Turn a document plus coded spans into render blocks.

    With ``paragraphs=True`` the document is first split on blank lines and
    every paragraph becomes its own block; spans crossing a paragraph
    boundary are not rendered in either paragraph.
    """

    def __init__(
        self,
        codebook: Sequence[CodeDefinition] = (),
        paragraphs: bool = False,
        default_color: str = DEFAULT_HIGHLIGHT_COLOR,
    ) -> None:
        self._colors = {code.id: code.color for code in codebook}
        self.paragraphs = paragraphs
        self.default_color = default_color

    def color_for(self, code_id: str) -> str:
        return self._colors.get(code_id, self.default_color)

    def compose(self, document: str, spans: Iterable[CodedSpan]) -> list[RenderBlock]:
        ordered = sort_spans(spans)

        if not self.paragraphs:
            return [self._sweep(document, 0, len(document), ordered)]

        blocks: list[RenderBlock] = []
        for para_start, para_end in split_paragraphs(document):
            inside = [s for s in ordered if s.start >= para_start and s.end <= para_end]
            blocks.append(self._sweep(document, para_start, para_end, inside))
        return blocks

    def _sweep(
        self,
        document: str,
        block_start: int,
        block_end: int,
        ordered: list[CodedSpan],
    ) -> RenderBlock:
        """Left-to-right sweep over spans already in render order."""
        block = RenderBlock(start=block_start, end=block_end)
        segments = block.segments
        cursor = block_start
        current: Segment | None = None  # last highlighted segment, if it ends at cursor

        for span in ordered:
            start = min(max(span.start, block_start), block_end)
            end = min(max(span.end, block_start), block_end)
            if start >= end or end <= cursor:
                continue

            if current is not None and start < cursor:
                # Overlap: grow the earlier-sorted highlight, keep its style.
                current.text += document[cursor:end]
                current.end = end
                cursor = end
                continue

            if start > cursor:
                segments.append(Segment(document[cursor:start], cursor, start))
            code_id = span.primary_code
            current = Segment(
                document[start:end],
                start,
                end,
                color=self.color_for(code_id),
                code_id=code_id,
                span_id=span.id,
            )
            segments.append(current)
            cursor = end

        if cursor < block_end:
            segments.append(Segment(document[cursor:block_end], cursor, block_end))
        return block
