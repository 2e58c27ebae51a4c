"""Selection-to-offset mapping.

A selection made on a rendered view is described by two points, each naming a
render block, a segment (text node) within that block, and a character offset
within that segment. Because a block's segments concatenate to exactly the
block's slice of the document, the number of rendered characters before the
earlier point, plus the block's own start offset, is the document offset of
the selection start.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from .compositor import RenderBlock
from .models import TextRange

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SelectionPoint:
    """One boundary of a selection."""

    block: int
    """Index of the render block."""

    node: int
    """Index of the segment inside the block."""

    offset: int
    """Character offset inside the segment."""


@dataclass(frozen=True, slots=True)
class Selection:
    """A live selection; anchor and focus may come in either order."""

    anchor: SelectionPoint
    focus: SelectionPoint

    @property
    def collapsed(self) -> bool:
        return self.anchor == self.focus


@runtime_checkable
class SelectionProvider(Protocol):
    """Source of the user's current selection (a GUI, a test double...)."""

    def get_current_selection(self) -> Selection | None: ...


def _rendered_offset(block: RenderBlock, point: SelectionPoint) -> int:
    """Characters rendered in *block* before *point*, clamped to the block."""
    segments = block.segments
    if not segments:
        return 0
    if point.node >= len(segments):
        return sum(len(seg.text) for seg in segments)
    node = max(point.node, 0)
    before = sum(len(seg.text) for seg in segments[:node])
    return before + min(max(point.offset, 0), len(segments[node].text))


def map_selection(
    blocks: Sequence[RenderBlock],
    selection: Selection | None,
    trim_leading: bool = False,
) -> TextRange | None:
    """Map *selection* to a document range.

    The end offset is ``start + len(selected_text.strip())``: trailing
    whitespace is cut from the range, while leading whitespace stays at the
    start unless *trim_leading* is set, in which case the start moves past it
    and ``document[start:end]`` equals the trimmed selection.

    Returns ``None`` for a missing, collapsed or whitespace-only selection, and
    for a selection spanning two blocks (paragraphs), which cannot be mapped
    reliably.
    """
    if selection is None or selection.collapsed:
        return None

    anchor, focus = selection.anchor, selection.focus
    if anchor.block != focus.block:
        logger.warning(
            "Ignoring selection across blocks %d and %d", anchor.block, focus.block
        )
        return None
    if not 0 <= anchor.block < len(blocks):
        logger.warning("Selection refers to unknown block %d", anchor.block)
        return None

    block = blocks[anchor.block]
    first, last = sorted((_rendered_offset(block, anchor), _rendered_offset(block, focus)))
    selected = block.text[first:last]
    trimmed = selected.strip()
    if not trimmed:
        return None

    start = block.start + first
    if trim_leading:
        start += len(selected) - len(selected.lstrip())
    return TextRange(start, start + len(trimmed))


class OffsetMapper:
    """Reads the current selection from a provider and maps it to offsets."""

    def __init__(self, provider: SelectionProvider, trim_leading: bool = False) -> None:
        self._provider = provider
        self.trim_leading = trim_leading

    def current_range(self, blocks: Sequence[RenderBlock]) -> TextRange | None:
        return map_selection(
            blocks, self._provider.get_current_selection(), trim_leading=self.trim_leading
        )
