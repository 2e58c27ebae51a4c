"""deductive-coder: span coding of text documents against a codebook."""

from .compositor import HighlightCompositor, RenderBlock, Segment, split_paragraphs
from .errors import (
    CrossParagraphSpanError,
    DeductiveCoderError,
    InvalidSpanError,
    NoPendingSelectionError,
    SchemaError,
    SessionNotReadyError,
    SuggestionError,
)
from .index import SpanIndex
from .models import CodedSpan, CodeDefinition, TextRange
from .selection import OffsetMapper, Selection, SelectionPoint, SelectionProvider, map_selection
from .session import CodingSession, PendingSelection, SessionState
from .stats import CodeStat, StatsSummary, compute_code_stats, summarize
from .suggestions import OpenRouterSuggester, Suggestion, match_suggestions

__version__ = "0.1.0"

__all__ = [
    "CodeDefinition",
    "CodedSpan",
    "TextRange",
    "SpanIndex",
    "HighlightCompositor",
    "RenderBlock",
    "Segment",
    "split_paragraphs",
    "OffsetMapper",
    "Selection",
    "SelectionPoint",
    "SelectionProvider",
    "map_selection",
    "CodingSession",
    "PendingSelection",
    "SessionState",
    "CodeStat",
    "StatsSummary",
    "compute_code_stats",
    "summarize",
    "OpenRouterSuggester",
    "Suggestion",
    "match_suggestions",
    "DeductiveCoderError",
    "InvalidSpanError",
    "CrossParagraphSpanError",
    "NoPendingSelectionError",
    "SchemaError",
    "SuggestionError",
    "SessionNotReadyError",
    "load_codebook",
    "ExportFormat",
    "ExportOptions",
    "export_results",
    "open_session",
    "save_upload",
]

# Names whose modules pull in pandas / rich; imported on first access.
_LAZY_NAMES = {
    "load_codebook": "codebook",
    "ExportFormat": "export",
    "ExportOptions": "export",
    "export_results": "export",
    "open_session": "store",
    "save_upload": "store",
}


def __getattr__(name: str):
    if name in _LAZY_NAMES:
        # Cache on module to avoid repeated imports
        import importlib
        import sys

        module = importlib.import_module(f".{_LAZY_NAMES[name]}", __name__)
        value = getattr(module, name)
        setattr(sys.modules[__name__], name, value)
        return value
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
