"""Per-code usage statistics."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from .models import CodedSpan, CodeDefinition


@dataclass(frozen=True, slots=True)
class CodeStat:
    """Usage of one code across all spans."""

    id: str
    name: str
    definition: str
    color: str
    count: int
    """Number of spans carrying this code."""

    percentage: float
    """``count / total spans * 100``; 0 when there are no spans."""

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "definition": self.definition,
            "color": self.color,
            "count": self.count,
            "percentage": self.percentage,
        }


@dataclass(frozen=True, slots=True)
class StatsSummary:
    total_segments: int
    codes_used: int
    most_used: CodeStat | None
    """Top code, or ``None`` when nothing has been coded yet."""


def compute_code_stats(
    codebook: Sequence[CodeDefinition],
    spans: Iterable[CodedSpan],
) -> list[CodeStat]:
    """Count each code's spans, most used first.

    Ties keep codebook order (the sort is stable).
    """
    spans = list(spans)
    total = len(spans)
    stats = []
    for code in codebook:
        count = sum(1 for span in spans if code.id in span.codes)
        percentage = count / total * 100 if total else 0.0
        stats.append(
            CodeStat(
                id=code.id,
                name=code.name,
                definition=code.definition,
                color=code.color,
                count=count,
                percentage=percentage,
            )
        )
    stats.sort(key=lambda s: s.count, reverse=True)
    return stats


def summarize(stats: Sequence[CodeStat], total_spans: int) -> StatsSummary:
    used = [s for s in stats if s.count > 0]
    return StatsSummary(
        total_segments=total_spans,
        codes_used=len(used),
        most_used=used[0] if used else None,
    )
