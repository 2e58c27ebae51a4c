"""Result serialization and rendering.

Three export formats consume the same result set:

* **json**: metadata, coded segments and statistics as one document.
* **csv**: one row per coded segment.
* **txt**: a human-readable report.

Rendering turns compositor blocks into HTML (``<mark>`` per highlight) or a
``rich`` Text for terminal display.
"""

from __future__ import annotations

import html
import json
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum

import pandas as pd
from rich.text import Text

from .compositor import RenderBlock
from .errors import SchemaError
from .models import CodedSpan, CodeDefinition
from .stats import compute_code_stats


class ExportFormat(Enum):
    JSON = "json"
    CSV = "csv"
    TXT = "txt"


@dataclass(frozen=True, slots=True)
class ExportOptions:
    include_stats: bool = True
    include_definitions: bool = True
    include_positions: bool = True

    def as_dict(self) -> dict[str, bool]:
        return {
            "includeStats": self.include_stats,
            "includeDefinitions": self.include_definitions,
            "includePositions": self.include_positions,
        }


def default_filename(fmt: ExportFormat, day: date | None = None) -> str:
    day = day or date.today()
    return f"coding-results-{day.isoformat()}.{fmt.value}"


def export_results(
    fmt: ExportFormat,
    codebook: Sequence[CodeDefinition],
    spans: Sequence[CodedSpan],
    options: ExportOptions | None = None,
    document_name: str = "document.txt",
    framework_name: str = "framework.json",
    timestamp: datetime | None = None,
) -> str:
    """Serialize *spans* in the requested format."""
    options = options or ExportOptions()
    timestamp = timestamp or datetime.now()
    if fmt is ExportFormat.JSON:
        return _export_json(codebook, spans, options, document_name, framework_name, timestamp)
    if fmt is ExportFormat.CSV:
        return _export_csv(codebook, spans, options)
    return _export_txt(codebook, spans, options, document_name, framework_name, timestamp)


# ---------------------------------------------------------------------------
# Formats
# ---------------------------------------------------------------------------


def _lookup(codebook: Sequence[CodeDefinition]) -> dict[str, CodeDefinition]:
    return {code.id: code for code in codebook}


def _export_json(
    codebook: Sequence[CodeDefinition],
    spans: Sequence[CodedSpan],
    options: ExportOptions,
    document_name: str,
    framework_name: str,
    timestamp: datetime,
) -> str:
    codes = _lookup(codebook)
    results = []
    for span in spans:
        entry_codes = []
        for code_id in span.codes:
            code = codes.get(code_id)
            code_data = {"id": code_id, "name": code.name if code else "Unknown"}
            if options.include_definitions:
                code_data["definition"] = code.definition if code else ""
                code_data["color"] = code.color if code else "#000000"
            entry_codes.append(code_data)
        entry = {"text": span.text, "codes": entry_codes}
        if options.include_positions:
            entry["position"] = {"start": span.start, "end": span.end}
        results.append(entry)

    data = {
        "metadata": {
            "document": document_name,
            "framework": framework_name,
            "timestamp": timestamp.isoformat(),
            "totalSegments": len(spans),
            "exportOptions": options.as_dict(),
        },
        "results": results,
    }
    if options.include_stats:
        statistics = []
        for stat in compute_code_stats(codebook, spans):
            item = {"code": stat.name, "count": stat.count, "percentage": stat.percentage}
            if options.include_definitions:
                item["definition"] = stat.definition
                item["color"] = stat.color
            statistics.append(item)
        data["statistics"] = statistics
    return json.dumps(data, indent=2, ensure_ascii=False)


def _export_csv(
    codebook: Sequence[CodeDefinition],
    spans: Sequence[CodedSpan],
    options: ExportOptions,
) -> str:
    codes = _lookup(codebook)
    rows = []
    for span in spans:
        names = [codes[c].name if c in codes else "Unknown" for c in span.codes]
        row = {"Text": span.text, "Codes": "; ".join(names)}
        if options.include_definitions:
            row["Code Definitions"] = "; ".join(
                f"{name}: {codes[c].definition if c in codes else ''}"
                for name, c in zip(names, span.codes)
            )
        if options.include_positions:
            row["Start Position"] = span.start
            row["End Position"] = span.end
        rows.append(row)

    columns = ["Text", "Codes"]
    if options.include_definitions:
        columns.append("Code Definitions")
    if options.include_positions:
        columns += ["Start Position", "End Position"]
    return pd.DataFrame(rows, columns=columns).to_csv(index=False, lineterminator="\n")


def _export_txt(
    codebook: Sequence[CodeDefinition],
    spans: Sequence[CodedSpan],
    options: ExportOptions,
    document_name: str,
    framework_name: str,
    timestamp: datetime,
) -> str:
    codes = _lookup(codebook)
    lines = [
        "Deductive Coding Analysis Results",
        f"Generated: {timestamp:%Y-%m-%d %H:%M:%S}",
        f"Document: {document_name}",
        f"Framework: {framework_name}",
        f"Total Segments: {len(spans)}",
        "",
        "=" * 50,
        "",
        "CODED SEGMENTS:",
        "",
    ]
    for number, span in enumerate(spans, start=1):
        lines.append(f'{number}. "{span.text}"')
        names = [codes[c].name if c in codes else "Unknown" for c in span.codes]
        lines.append(f"   Codes: {', '.join(names)}")
        if options.include_definitions:
            for code_id in span.codes:
                code = codes.get(code_id)
                if code is not None:
                    lines.append(f"   - {code.name}: {code.definition}")
        if options.include_positions:
            lines.append(f"   Position: {span.start}-{span.end}")
        lines.append("")

    if options.include_stats:
        lines += ["=" * 50, "", "CODING STATISTICS:", ""]
        for stat in compute_code_stats(codebook, spans):
            lines.append(f"{stat.name}: {stat.count} times ({stat.percentage:.1f}%)")
            if options.include_definitions:
                lines.append(f"  Definition: {stat.definition}")
            lines.append("")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Loading a previous JSON export
# ---------------------------------------------------------------------------


def spans_from_export(data: str, document: str) -> list[CodedSpan]:
    """Rebuild spans from a JSON export (needs positions and code ids).

    Span text is re-read from *document*; span ids are the result's position
    in the export.
    """
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError as exc:
        raise SchemaError(f"Spans file is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise SchemaError("Spans file must be a JSON export object")

    spans = []
    for number, result in enumerate(parsed.get("results", []), start=1):
        try:
            position = result["position"]
            start, end = int(position["start"]), int(position["end"])
            codes = tuple(str(code["id"]) for code in result["codes"])
        except (KeyError, TypeError, ValueError) as exc:
            raise SchemaError(f"Result {number} lacks a position or code ids") from exc
        spans.append(
            CodedSpan(id=str(number), text=document[start:end], codes=codes, start=start, end=end)
        )
    return spans


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def render_html(blocks: Sequence[RenderBlock]) -> str:
    """Render blocks as HTML, one ``<p>`` per block."""
    parts = ['<div class="coded-document" style="white-space: pre-wrap; line-height: 1.8">']
    for block in blocks:
        parts.append(f'<p data-start="{block.start}">')
        for seg in block.segments:
            text = html.escape(seg.text)
            if not seg.highlighted:
                parts.append(f"<span>{text}</span>")
                continue
            color = html.escape(seg.color, quote=True)
            code_id = html.escape(seg.code_id or "", quote=True)
            parts.append(
                f'<mark data-code="{code_id}" data-start="{seg.start}" data-end="{seg.end}" '
                f'title="Code: {code_id}" '
                f'style="background-color: {color}25; border-left: 3px solid {color}; '
                f'color: {color}">{text}</mark>'
            )
        parts.append("</p>")
    parts.append("</div>")
    return "\n".join(parts)


def render_rich(blocks: Sequence[RenderBlock]) -> Text:
    """Render blocks as a ``rich`` Text, paragraphs separated by a blank line."""
    out = Text()
    for i, block in enumerate(blocks):
        if i:
            out.append("\n\n")
        for seg in block.segments:
            out.append(seg.text, style=f"bold {seg.color}" if seg.highlighted else None)
    return out
