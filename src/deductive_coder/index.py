"""The span index: owner of every coded span in a session."""

from __future__ import annotations

import bisect
import logging
from collections.abc import Callable, Iterator, Sequence

from .compositor import sort_spans
from .errors import CrossParagraphSpanError, InvalidSpanError
from .models import CodedSpan

logger = logging.getLogger(__name__)


class SpanIndex:
    """Ordered collection of validated coded spans.

    Insertion order is preserved for listing and export. A render-ordered
    view (start ascending, shorter first) is rebuilt lazily after each
    mutation and backs the position queries.

    Overlapping spans are accepted; a user may knowingly code the same region
    twice. Malformed spans never get in.
    """

    def __init__(
        self,
        document_length: int,
        paragraph_bounds: Sequence[tuple[int, int]] | None = None,
    ) -> None:
        self.document_length = document_length
        self._paragraph_bounds = list(paragraph_bounds) if paragraph_bounds is not None else None
        self._paragraph_starts = [s for s, _ in self._paragraph_bounds or []]
        self._spans: dict[str, CodedSpan] = {}
        self._sorted: list[CodedSpan] | None = None
        self._sorted_starts: list[int] = []
        self._listeners: list[Callable[[SpanIndex], None]] = []
        self.version = 0

    def __len__(self) -> int:
        return len(self._spans)

    def __iter__(self) -> Iterator[CodedSpan]:
        return iter(list(self._spans.values()))

    def __contains__(self, span_id: object) -> bool:
        return span_id in self._spans

    @property
    def spans(self) -> list[CodedSpan]:
        """All spans in insertion order."""
        return list(self._spans.values())

    def get(self, span_id: str) -> CodedSpan | None:
        return self._spans.get(span_id)

    def subscribe(self, callback: Callable[[SpanIndex], None]) -> None:
        """Call *callback* after every mutation."""
        self._listeners.append(callback)

    # -- mutation ----------------------------------------------------------

    def validate(self, span: CodedSpan) -> None:
        """Raise :class:`InvalidSpanError` if *span* may not be added."""
        if not span.codes:
            raise InvalidSpanError("A coded span needs at least one code")
        if len(set(span.codes)) != len(span.codes):
            raise InvalidSpanError(f"Duplicate codes in span: {list(span.codes)}")
        if not 0 <= span.start < span.end <= self.document_length:
            raise InvalidSpanError(
                f"Invalid span range [{span.start}, {span.end}) "
                f"for a document of length {self.document_length}"
            )
        if span.id in self._spans:
            raise InvalidSpanError(f"Span id {span.id!r} already exists")
        if self._paragraph_bounds is not None and self._paragraph_of(span) is None:
            raise CrossParagraphSpanError(
                f"Span [{span.start}, {span.end}) is not contained in a single paragraph"
            )

    def add(self, span: CodedSpan) -> CodedSpan:
        self.validate(span)
        self._spans[span.id] = span
        self._changed()
        return span

    def remove(self, span_id: str) -> bool:
        """Remove a span by id. Unknown ids are ignored and return ``False``."""
        if self._spans.pop(span_id, None) is None:
            logger.debug("remove(%r): no such span", span_id)
            return False
        self._changed()
        return True

    def clear(self) -> None:
        if self._spans:
            self._spans.clear()
            self._changed()

    # -- queries -----------------------------------------------------------

    def sorted_spans(self) -> list[CodedSpan]:
        """Spans in render order."""
        if self._sorted is None:
            self._sorted = sort_spans(self._spans.values())
            self._sorted_starts = [s.start for s in self._sorted]
        return list(self._sorted)

    def spans_containing(self, offset: int) -> list[CodedSpan]:
        """Spans whose range includes character *offset*, in render order."""
        return self.spans_overlapping(offset, offset + 1)

    def spans_overlapping(self, start: int, end: int) -> list[CodedSpan]:
        """Spans sharing at least one character with ``[start, end)``."""
        if start >= end:
            return []
        ordered = self.sorted_spans()
        # Only spans starting before ``end`` can overlap.
        stop = bisect.bisect_left(self._sorted_starts, end)
        return [s for s in ordered[:stop] if s.end > start]

    # -- internals ---------------------------------------------------------

    def _paragraph_of(self, span: CodedSpan) -> tuple[int, int] | None:
        i = bisect.bisect_right(self._paragraph_starts, span.start) - 1
        if i < 0:
            return None
        para_start, para_end = self._paragraph_bounds[i]
        if span.start >= para_start and span.end <= para_end:
            return para_start, para_end
        return None

    def _changed(self) -> None:
        self._sorted = None
        self.version += 1
        for callback in list(self._listeners):
            callback(self)
