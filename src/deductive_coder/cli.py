"""
deductive-coder command line.

Usage:
  deductive-coder <command> [options]

Commands:
  render   Show a document with its coded spans highlighted.
  stats    Per-code usage statistics for a set of coded spans.
  export   Write coded spans as JSON, CSV or plain text.
  suggest  Ask the suggestion service which codes fit a text range.

Coded spans are read from a previous JSON export (``--spans``).
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .codebook import load_codebook
from .config import CoderConfig
from .errors import CrossParagraphSpanError, DeductiveCoderError, SuggestionError
from .export import (
    ExportFormat,
    ExportOptions,
    default_filename,
    export_results,
    render_html,
    render_rich,
    spans_from_export,
)
from .models import TextRange
from .session import CodingSession
from .suggestions import OpenRouterSuggester

logger = logging.getLogger(__name__)

console = Console()


def _read_text(path: str) -> str:
    # newline="" keeps "\r\n" intact so offsets match the file exactly
    with open(path, encoding="utf-8-sig", newline="") as f:
        return f.read()


def _build_session(args: argparse.Namespace, config: CoderConfig, **kwargs) -> CodingSession:
    document = _read_text(args.text)
    codebook = load_codebook(args.codebook, palette=config.palette or None)
    session = CodingSession(
        document,
        codebook,
        paragraphs=getattr(args, "paragraphs", False) or config.paragraphs,
        context_window=config.context_window,
        default_color=config.default_color,
        **kwargs,
    )
    skipped = 0
    if getattr(args, "spans", None):
        for span in spans_from_export(_read_text(args.spans), document):
            try:
                session.index.add(span)
            except CrossParagraphSpanError as exc:
                # flat-mode exports may hold spans that cannot render per paragraph
                logger.warning("Skipping imported span %s: %s", span.id, exc)
                skipped += 1
        if skipped:
            console.print(
                f"[yellow]Skipped {skipped} span(s) crossing a paragraph boundary[/yellow]"
            )
    return session


def cmd_render(args: argparse.Namespace, config: CoderConfig) -> int:
    session = _build_session(args, config)
    blocks = session.render()
    if args.html:
        Path(args.html).write_text(render_html(blocks), encoding="utf-8")
        console.print(f"Wrote [bold]{args.html}[/bold]")
    else:
        console.print(render_rich(blocks))
    return 0


def cmd_stats(args: argparse.Namespace, config: CoderConfig) -> int:
    session = _build_session(args, config)
    summary = session.summary()

    table = Table(title="Coding Statistics")
    table.add_column("Code")
    table.add_column("Count", justify="right")
    table.add_column("%", justify="right")
    for stat in session.code_stats():
        table.add_row(f"[{stat.color}]●[/] {stat.name}", str(stat.count), f"{stat.percentage:.1f}")
    console.print(table)
    console.print(f"Total segments: {summary.total_segments}  Codes used: {summary.codes_used}")
    if summary.most_used is not None:
        console.print(
            f"Most used code: [bold]{summary.most_used.name}[/bold] "
            f"({summary.most_used.count} times)"
        )
    return 0


def cmd_export(args: argparse.Namespace, config: CoderConfig) -> int:
    session = _build_session(args, config)
    fmt = ExportFormat(args.format)
    options = ExportOptions(
        include_stats=not args.no_stats,
        include_definitions=not args.no_definitions,
        include_positions=not args.no_positions,
    )
    content = export_results(
        fmt,
        session.codebook,
        session.spans,
        options,
        document_name=Path(args.text).name,
        framework_name=Path(args.codebook).name,
    )
    output = args.output or default_filename(fmt)
    if output == "-":
        sys.stdout.write(content)
    else:
        Path(output).write_text(content, encoding="utf-8")
        console.print(f"Wrote [bold]{output}[/bold] ({len(session.spans)} segments)")
    return 0


def cmd_suggest(args: argparse.Namespace, config: CoderConfig) -> int:
    suggester = OpenRouterSuggester.from_config(config)
    try:
        with _build_session(args, config, suggester=suggester) as session:
            pending = session.select_text(TextRange(args.start, args.end))
            console.print(f'Selected: "{escape(pending.text)}"')
            future = session.request_suggestions()
            try:
                suggestions = future.result()
            except SuggestionError as exc:
                console.print(f"[yellow]No suggestions:[/yellow] {escape(str(exc))}")
                return 1
    finally:
        suggester.close()

    if not suggestions:
        console.print("No matching codes suggested.")
        return 0
    table = Table(title="AI Suggestions")
    table.add_column("Code")
    table.add_column("Confidence", justify="right")
    table.add_column("Explanation")
    for suggestion in suggestions:
        table.add_row(suggestion.code_name, f"{suggestion.confidence}/10", suggestion.explanation)
    console.print(table)
    return 0


def _add_inputs(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("text", help="Document to code (UTF-8 .txt)")
    parser.add_argument("codebook", help="Codebook CSV with 'code' and 'definition' columns")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deductive-coder",
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"deductive-coder {__version__}")
    parser.add_argument("--config", help="Extra YAML config file (highest priority)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(title="commands", metavar="<command>", dest="command")
    subparsers.required = True

    p = subparsers.add_parser("render", help="Show highlighted document")
    _add_inputs(p)
    p.add_argument("--spans", help="JSON export with coded spans")
    p.add_argument("--paragraphs", action="store_true", help="Render paragraph by paragraph")
    p.add_argument("--html", help="Write HTML to this file instead of the terminal")
    p.set_defaults(func=cmd_render)

    p = subparsers.add_parser("stats", help="Per-code statistics")
    _add_inputs(p)
    p.add_argument("--spans", required=True, help="JSON export with coded spans")
    p.set_defaults(func=cmd_stats)

    p = subparsers.add_parser("export", help="Export coded spans")
    _add_inputs(p)
    p.add_argument("--spans", required=True, help="JSON export with coded spans")
    p.add_argument("--format", choices=[f.value for f in ExportFormat], default="json")
    p.add_argument("--output", "-o", help="Output file ('-' for stdout)")
    p.add_argument("--no-stats", action="store_true")
    p.add_argument("--no-definitions", action="store_true")
    p.add_argument("--no-positions", action="store_true")
    p.set_defaults(func=cmd_export)

    p = subparsers.add_parser("suggest", help="AI code suggestions for a text range")
    _add_inputs(p)
    p.add_argument("--start", type=int, required=True)
    p.add_argument("--end", type=int, required=True)
    p.set_defaults(func=cmd_suggest)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        config = CoderConfig(path=args.config)
        return args.func(args, config)
    except (DeductiveCoderError, OSError) as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
