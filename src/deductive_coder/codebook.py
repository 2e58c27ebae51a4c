"""Codebook loading.

A codebook is tabular input with (at least) a ``code`` and a ``definition``
column. Header matching ignores case and surrounding whitespace; any other
columns are ignored.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import IO

import pandas as pd

from .errors import SchemaError
from .models import CodeDefinition

logger = logging.getLogger(__name__)

DEFAULT_PALETTE = [
    "#3b82f6",
    "#10b981",
    "#f59e0b",
    "#ef4444",
    "#8b5cf6",
    "#06b6d4",
    "#84cc16",
    "#f97316",
]

REQUIRED_COLUMNS = ("code", "definition")


def read_codebook_frame(source: str | Path | IO[str]) -> pd.DataFrame:
    """Read a codebook CSV into a DataFrame of strings."""
    try:
        frame = pd.read_csv(
            source,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=False,
            skipinitialspace=True,
            encoding="utf-8-sig",
        )
    except pd.errors.EmptyDataError as exc:
        raise SchemaError("Codebook file is empty") from exc
    # Blank lines come back as NaN rows even with keep_default_na=False
    return frame.fillna("")


def codebook_from_frame(
    df: pd.DataFrame,
    palette: Sequence[str] | None = None,
) -> list[CodeDefinition]:
    """Build code definitions from a DataFrame.

    Ids are ``code_<n>`` where ``n`` is the 1-based data row number, and
    colors cycle through *palette* by the same row number, so both stay
    stable when an incomplete row is skipped.

    Raises:
        SchemaError: If the ``code`` or ``definition`` column is missing.
    """
    palette = list(palette or DEFAULT_PALETTE)
    columns = {str(c).strip().lower(): c for c in df.columns}
    missing = [name for name in REQUIRED_COLUMNS if name not in columns]
    if missing:
        raise SchemaError('CSV must contain "code" and "definition" columns')

    code_col, def_col = columns["code"], columns["definition"]
    codes: list[CodeDefinition] = []
    for row_number, (name, definition) in enumerate(
        zip(df[code_col], df[def_col]), start=1
    ):
        name = str(name).strip()
        definition = str(definition).strip()
        if not name or not definition:
            logger.debug("Skipping codebook row %d: empty code or definition", row_number)
            continue
        codes.append(
            CodeDefinition(
                id=f"code_{row_number}",
                name=name,
                definition=definition,
                color=palette[(row_number - 1) % len(palette)],
            )
        )
    return codes


def load_codebook(
    source: str | Path | IO[str],
    palette: Sequence[str] | None = None,
) -> list[CodeDefinition]:
    """Load a codebook CSV from a path or text buffer."""
    return codebook_from_frame(read_codebook_frame(source), palette=palette)


def codebook_to_json(codebook: Sequence[CodeDefinition]) -> str:
    """Serialize to the framework JSON kept in the session store."""
    return json.dumps({"codes": [code.as_dict() for code in codebook]}, ensure_ascii=False)


def codebook_from_json(data: str) -> list[CodeDefinition]:
    """Parse framework JSON (``{"codes": [...]}``)."""
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError as exc:
        raise SchemaError(f"Code framework is not valid JSON: {exc}") from exc
    entries = parsed.get("codes", []) if isinstance(parsed, dict) else []
    try:
        return [
            CodeDefinition(
                id=str(entry["id"]),
                name=str(entry["name"]),
                definition=str(entry.get("definition", "")),
                color=str(entry.get("color", DEFAULT_PALETTE[0])),
            )
            for entry in entries
        ]
    except (KeyError, TypeError, AttributeError) as exc:
        raise SchemaError(f"Malformed code framework entry: {exc}") from exc

