"""Session key-value store.

The upload step writes the document, the code framework JSON and the two
uploaded file names under fixed keys; a coding session is then opened from
the store and never writes back to it.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator, MutableMapping, Sequence
from pathlib import Path

from .codebook import codebook_from_json, codebook_to_json
from .errors import SchemaError, SessionNotReadyError
from .models import CodeDefinition
from .session import CodingSession

logger = logging.getLogger(__name__)

TEXT_DOCUMENT_KEY = "textDocument"
CODE_FRAMEWORK_KEY = "codeFramework"
TEXT_FILE_NAME_KEY = "textFileName"
CODE_FILE_NAME_KEY = "codeFileName"

DEFAULT_DOCUMENT_NAME = "document.txt"
DEFAULT_FRAMEWORK_NAME = "framework.json"


class JsonFileStore(MutableMapping):
    """A string-to-string mapping persisted as one JSON object on disk."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._data: dict[str, str] = {}
        if self.path.exists():
            loaded = json.loads(self.path.read_text(encoding="utf-8") or "{}")
            if not isinstance(loaded, dict):
                raise ValueError(f"Store file {self.path} must contain a JSON object")
            self._data = {str(k): str(v) for k, v in loaded.items()}

    def __getitem__(self, key: str) -> str:
        return self._data[key]

    def __setitem__(self, key: str, value: str) -> None:
        self._data[key] = value
        self._flush()

    def __delitem__(self, key: str) -> None:
        del self._data[key]
        self._flush()

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._data, ensure_ascii=False), encoding="utf-8")


def save_upload(
    store: MutableMapping,
    document: str,
    codebook: Sequence[CodeDefinition],
    document_name: str = DEFAULT_DOCUMENT_NAME,
    framework_name: str = DEFAULT_FRAMEWORK_NAME,
) -> None:
    """Record an uploaded document and codebook for a new session."""
    store[TEXT_DOCUMENT_KEY] = document
    store[CODE_FRAMEWORK_KEY] = codebook_to_json(codebook)
    store[TEXT_FILE_NAME_KEY] = document_name
    store[CODE_FILE_NAME_KEY] = framework_name


def file_names(store: MutableMapping) -> tuple[str, str]:
    """Original ``(document, framework)`` file names, with defaults."""
    return (
        store.get(TEXT_FILE_NAME_KEY) or DEFAULT_DOCUMENT_NAME,
        store.get(CODE_FILE_NAME_KEY) or DEFAULT_FRAMEWORK_NAME,
    )


def open_session(store: MutableMapping, **session_kwargs) -> CodingSession:
    """Start a coding session from the store.

    Raises:
        SessionNotReadyError: If the document or framework is missing or the
            framework cannot be parsed.
    """
    document = store.get(TEXT_DOCUMENT_KEY)
    framework = store.get(CODE_FRAMEWORK_KEY)
    if not document or not framework:
        raise SessionNotReadyError("Upload a document and a code framework first")
    try:
        codebook = codebook_from_json(framework)
    except (ValueError, SchemaError) as exc:
        logger.error("Error parsing code framework: %s", exc)
        raise SessionNotReadyError(f"Stored code framework is invalid: {exc}") from exc
    return CodingSession(document, codebook, **session_kwargs)
