"""Coding session: selection -> code confirmation -> span index.

State machine::

    IDLE --select_text--> SELECTION_PENDING --confirm_codes / cancel--> IDLE

Only one selection is pending at a time; selecting again discards the
previous one first. Each pending selection carries a generation number, and
suggestion results are delivered only if their generation still matches the
pending selection when they arrive.
"""

from __future__ import annotations

import functools
import logging
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum

from .compositor import DEFAULT_HIGHLIGHT_COLOR, HighlightCompositor, RenderBlock, split_paragraphs
from .errors import InvalidSpanError, NoPendingSelectionError
from .index import SpanIndex
from .models import CodedSpan, CodeDefinition, TextRange
from .selection import OffsetMapper
from .stats import CodeStat, StatsSummary, compute_code_stats, summarize
from .suggestions import Suggestion, SuggestionService, describe_codebook, match_suggestions

logger = logging.getLogger(__name__)

UNKNOWN_CODE_COLOR = "#000000"


class SessionState(Enum):
    IDLE = "idle"
    SELECTION_PENDING = "selection_pending"


@dataclass
class PendingSelection:
    """A selection waiting for the user to pick codes."""

    range: TextRange
    text: str
    """``document[range.start:range.end]``."""

    context: str
    """Text around the selection, for display and suggestions."""

    generation: int
    selected_codes: list[str] = field(default_factory=list)
    suggestions: list[Suggestion] = field(default_factory=list)
    suggestion_error: str | None = None
    """Advisory message from the last failed suggestion request."""

    suggestions_loading: bool = False

    request_token: int = 0
    """Bumped by every suggestion request; only the latest one is delivered."""


def _timestamp_id() -> str:
    return str(time.time_ns() // 1_000_000)


class CodingSession:
    """Owns the span index for one document and one codebook."""

    def __init__(
        self,
        document: str,
        codebook: Sequence[CodeDefinition],
        *,
        paragraphs: bool = False,
        context_window: int = 200,
        default_color: str = DEFAULT_HIGHLIGHT_COLOR,
        suggester: SuggestionService | None = None,
        executor: Executor | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.document = document
        self.codebook = list(codebook)
        self._codes = {code.id: code for code in self.codebook}
        self.context_window = context_window
        self.compositor = HighlightCompositor(
            self.codebook, paragraphs=paragraphs, default_color=default_color
        )
        self.index = SpanIndex(
            len(document),
            paragraph_bounds=split_paragraphs(document) if paragraphs else None,
        )
        self.index.subscribe(self._invalidate)

        self._suggester = suggester
        self._executor = executor
        self._owns_executor = False
        self._id_factory = id_factory or _timestamp_id

        self._lock = threading.RLock()
        self._pending: PendingSelection | None = None
        self._generation = 0
        self._render_cache: list[RenderBlock] | None = None
        self._stats_cache: list[CodeStat] | None = None

    def __enter__(self) -> CodingSession:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Shut down the suggestion executor if the session created it."""
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
            self._owns_executor = False

    # -- state -------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return SessionState.IDLE if self._pending is None else SessionState.SELECTION_PENDING

    @property
    def pending(self) -> PendingSelection | None:
        return self._pending

    @property
    def spans(self) -> list[CodedSpan]:
        return self.index.spans

    @property
    def paragraphs(self) -> bool:
        return self.compositor.paragraphs

    def get_code(self, code_id: str) -> CodeDefinition | None:
        return self._codes.get(code_id)

    # -- selection ---------------------------------------------------------

    def context_for(self, text_range: TextRange) -> str:
        start = max(0, text_range.start - self.context_window)
        end = min(len(self.document), text_range.end + self.context_window)
        return self.document[start:end]

    def select_text(self, text_range: TextRange) -> PendingSelection:
        """Open the code picker for *text_range*, discarding any pending one."""
        with self._lock:
            if self._pending is not None:
                self._discard_pending("replaced by a new selection")
            self._generation += 1
            self._pending = PendingSelection(
                range=text_range,
                text=self.document[text_range.start : text_range.end],
                context=self.context_for(text_range),
                generation=self._generation,
            )
            logger.debug(
                "Selection %d pending at [%d, %d)",
                self._generation,
                text_range.start,
                text_range.end,
            )
            return self._pending

    def select_from(self, mapper: OffsetMapper) -> PendingSelection | None:
        """Select whatever the mapper's provider currently reports, if anything."""
        text_range = mapper.current_range(self.render())
        if text_range is None:
            return None
        return self.select_text(text_range)

    def toggle_code(self, code_id: str) -> list[str]:
        pending = self._require_pending()
        if code_id not in self._codes:
            raise InvalidSpanError(f"Unknown code id {code_id!r}")
        if code_id in pending.selected_codes:
            pending.selected_codes.remove(code_id)
        else:
            pending.selected_codes.append(code_id)
        return list(pending.selected_codes)

    def accept_suggestion(self, suggestion: Suggestion) -> list[str]:
        """Add a suggested code to the picked codes (never removes one)."""
        pending = self._require_pending()
        if suggestion.code_id in self._codes and suggestion.code_id not in pending.selected_codes:
            pending.selected_codes.append(suggestion.code_id)
        return list(pending.selected_codes)

    def confirm_codes(self, code_ids: Sequence[str] | None = None) -> CodedSpan:
        """Create a span for the pending selection and return to idle.

        Uses the picked codes when *code_ids* is not given. On any validation
        error the selection stays pending.
        """
        with self._lock:
            pending = self._require_pending()
            codes = tuple(pending.selected_codes if code_ids is None else code_ids)
            if not codes:
                raise InvalidSpanError("Select at least one code")
            unknown = [c for c in codes if c not in self._codes]
            if unknown:
                raise InvalidSpanError(f"Unknown code ids: {unknown}")

            span = CodedSpan(
                id=self._new_span_id(),
                text=pending.text,
                codes=codes,
                start=pending.range.start,
                end=pending.range.end,
            )
            self.index.add(span)
            self._pending = None
            self._generation += 1
            logger.info("Coded [%d, %d) with %s", span.start, span.end, ", ".join(codes))
            return span

    def cancel(self) -> None:
        with self._lock:
            if self._pending is not None:
                self._discard_pending("canceled")

    def remove_span(self, span_id: str) -> bool:
        return self.index.remove(span_id)

    # -- suggestions -------------------------------------------------------

    def request_suggestions(self) -> Future | None:
        """Ask the suggestion service about the pending selection.

        Returns immediately. When the result arrives it only fills
        ``pending.suggestions``; a result for a selection that has since been
        confirmed, canceled or replaced is dropped, and so is a result
        overtaken by a newer request for the same selection.
        """
        pending = self._require_pending()
        if self._suggester is None:
            pending.suggestion_error = "Suggestions are not configured"
            return None

        with self._lock:
            pending.request_token += 1
            token = (pending.generation, pending.request_token)
            pending.suggestions = []
            pending.suggestion_error = None
            pending.suggestions_loading = True

        future = self._get_executor().submit(
            self._fetch_suggestions,
            describe_codebook(self.codebook),
            pending.text,
            pending.context,
        )
        future.add_done_callback(functools.partial(self._deliver_suggestions, token))
        return future

    def _fetch_suggestions(self, description: str, text: str, context: str) -> list[Suggestion]:
        payload = self._suggester.suggest(description, text, context)
        return match_suggestions(payload, self.codebook)

    def _deliver_suggestions(self, token: tuple[int, int], future: Future) -> None:
        with self._lock:
            pending = self._pending
            if pending is None or (pending.generation, pending.request_token) != token:
                logger.debug("Discarding stale suggestions for selection %d request %d", *token)
                return
            pending.suggestions_loading = False
            if future.cancelled():
                pending.suggestions = []
                return
            exc = future.exception()
            if exc is not None:
                logger.warning("Suggestion request failed: %s", exc)
                pending.suggestions = []
                pending.suggestion_error = str(exc) or type(exc).__name__
                return
            pending.suggestions = future.result()

    def _get_executor(self) -> Executor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="suggestions")
            self._owns_executor = True
        return self._executor

    # -- derived views -----------------------------------------------------

    def render(self) -> list[RenderBlock]:
        if self._render_cache is None:
            self._render_cache = self.compositor.compose(self.document, self.index.spans)
        return self._render_cache

    def code_stats(self) -> list[CodeStat]:
        if self._stats_cache is None:
            self._stats_cache = compute_code_stats(self.codebook, self.index.spans)
        return list(self._stats_cache)

    def summary(self) -> StatsSummary:
        return summarize(self.code_stats(), len(self.index))

    def describe_code(self, code_id: str) -> dict[str, str]:
        code = self._codes.get(code_id)
        if code is None:
            return {"id": code_id, "name": "Unknown", "definition": "", "color": UNKNOWN_CODE_COLOR}
        return code.as_dict()

    def results(self) -> list[dict]:
        """The full result set, in coding order."""
        return [
            {
                "text": span.text,
                "codes": [self.describe_code(code_id) for code_id in span.codes],
                "position": {"start": span.start, "end": span.end},
            }
            for span in self.index.spans
        ]

    # -- internals ---------------------------------------------------------

    def _require_pending(self) -> PendingSelection:
        if self._pending is None:
            raise NoPendingSelectionError("No text is selected")
        return self._pending

    def _discard_pending(self, reason: str) -> None:
        logger.debug("Selection %d %s", self._pending.generation, reason)
        self._pending = None
        self._generation += 1

    def _new_span_id(self) -> str:
        span_id = self._id_factory()
        candidate, n = span_id, 1
        while candidate in self.index:
            candidate = f"{span_id}-{n}"
            n += 1
        return candidate

    def _invalidate(self, index: SpanIndex) -> None:
        self._render_cache = None
        self._stats_cache = None
