"""AI code suggestions.

The suggestion service is an external text classifier reached over an
OpenAI-compatible Chat Completions API. From the session's point of view it
is a plain function: ``(codebook description, selected text, context)`` in,
a ``{"suggestions": [...]}`` payload out. Every failure surfaces as
:class:`SuggestionError`; the session turns that into "no suggestions".
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from .errors import SuggestionError
from .models import CodeDefinition

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "openai/gpt-4o-mini"

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*")
_FENCE_CLOSE = re.compile(r"\s*```$")

PROMPT_TEMPLATE = """You are a qualitative research coding assistant. Analyze the selected text and suggest relevant codes from the codebook.

CODEBOOK:
{codebook}

SELECTED TEXT: "{selected_text}"

CONTEXT: {context}

TASK: Find the most relevant codes from the codebook that apply to the selected text. Even if the text is short or unclear, try to identify potential connections.

IMPORTANT INSTRUCTIONS:
1. Be generous in your suggestions - if there's any possible connection, suggest it
2. For short or unclear text, consider what the text might be referring to
3. Provide 1-3 suggestions maximum
4. Always include confidence scores (1-10)
5. If no clear connection exists, suggest the most general applicable code

RESPONSE FORMAT (JSON only):
{{
  "suggestions": [
    {{
      "codeName": "exact code name from codebook",
      "explanation": "why this code applies",
      "confidence": 8
    }}
  ]
}}

Always respond with valid JSON. Include at least one suggestion unless absolutely no connection exists."""


@dataclass(frozen=True, slots=True)
class Suggestion:
    """A suggested code, matched against the codebook."""

    code_id: str
    code_name: str
    explanation: str
    confidence: int
    """1 (weak) to 10 (strong)."""


class SuggestionService(Protocol):
    """Anything that can propose codes for a piece of text."""

    def suggest(self, codebook_description: str, selected_text: str, context: str) -> dict: ...


def find_code_by_name(codebook: Sequence[CodeDefinition], name: str) -> CodeDefinition | None:
    """Case-insensitive lookup by code name."""
    wanted = name.strip().lower()
    for code in codebook:
        if code.name.lower() == wanted:
            return code
    return None


def describe_codebook(codebook: Sequence[CodeDefinition]) -> str:
    return "\n".join(f"- {code.name}: {code.definition}" for code in codebook)


def build_prompt(codebook_description: str, selected_text: str, context: str) -> str:
    return PROMPT_TEMPLATE.format(
        codebook=codebook_description,
        selected_text=selected_text,
        context=context or "No additional context provided",
    )


def parse_response_content(content: str) -> dict:
    """Parse model output, tolerating a Markdown code fence around the JSON."""
    body = content.strip()
    if body.startswith("```"):
        body = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", body))
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError as exc:
        raise SuggestionError(f"Suggestion response is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise SuggestionError("Suggestion response must be a JSON object")
    return parsed


def _confidence(value: Any) -> int:
    try:
        score = int(round(float(value)))
    except (TypeError, ValueError, OverflowError):
        return 1
    return min(max(score, 1), 10)


def match_suggestions(payload: Any, codebook: Sequence[CodeDefinition]) -> list[Suggestion]:
    """Match raw suggestions to codebook entries.

    Names match case-insensitively. Entries naming an unknown code, or
    lacking a ``codeName``, are dropped. A code suggested twice keeps its
    first entry. The result is ranked by confidence, highest first.

    Raises:
        SuggestionError: If *payload* has no ``suggestions`` list.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("suggestions"), list):
        raise SuggestionError("Suggestion response has no 'suggestions' list")

    matched: list[Suggestion] = []
    seen: set[str] = set()
    for entry in payload["suggestions"]:
        if not isinstance(entry, dict) or not isinstance(entry.get("codeName"), str):
            continue
        code = find_code_by_name(codebook, entry["codeName"])
        if code is None:
            logger.debug("Dropping suggestion for unknown code %r", entry["codeName"])
            continue
        if code.id in seen:
            continue
        seen.add(code.id)
        matched.append(
            Suggestion(
                code_id=code.id,
                code_name=code.name,
                explanation=str(entry.get("explanation", "")),
                confidence=_confidence(entry.get("confidence")),
            )
        )
    matched.sort(key=lambda s: s.confidence, reverse=True)
    return matched


class OpenRouterSuggester:
    """Suggestion service backed by an OpenAI-compatible chat endpoint."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.5,
        max_tokens: int = 800,
        timeout: float = 30.0,
        site_url: str = "https://deductive-coder.local",
        site_name: str = "DeductiveCoder",
        client: httpx.Client | None = None,
    ) -> None:
        self._api_key = api_key
        self._url = base_url.rstrip("/") + "/chat/completions"
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._site_url = site_url
        self._site_name = site_name
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout))

    @classmethod
    def from_config(cls, config, client: httpx.Client | None = None) -> OpenRouterSuggester:
        """Build from a :class:`~deductive_coder.config.CoderConfig`."""
        settings = config.suggestions
        return cls(
            config.api_key,
            base_url=settings.get("base_url", DEFAULT_BASE_URL),
            model=settings.get("model", DEFAULT_MODEL),
            temperature=float(settings.get("temperature", 0.5)),
            max_tokens=int(settings.get("max_tokens", 800)),
            timeout=float(settings.get("timeout", 30.0)),
            site_url=config.site_url,
            site_name=config.site_name,
            client=client,
        )

    def close(self) -> None:
        self._client.close()

    def suggest(self, codebook_description: str, selected_text: str, context: str) -> dict:
        if not self._api_key:
            raise SuggestionError("API key not configured properly")
        if not selected_text.strip():
            raise SuggestionError("No text selected")
        if not codebook_description.strip():
            raise SuggestionError("No code framework loaded")

        prompt = build_prompt(codebook_description, selected_text, context)
        try:
            response = self._client.post(
                self._url,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "HTTP-Referer": self._site_url,
                    "X-Title": self._site_name,
                    "Content-Type": "application/json",
                },
                json={
                    "model": self.model,
                    "messages": [{"role": "user", "content": prompt}],
                    "temperature": self.temperature,
                    "max_tokens": self.max_tokens,
                },
            )
        except httpx.HTTPError as exc:
            raise SuggestionError(f"Suggestion request failed: {exc}") from exc

        if response.status_code >= 400:
            detail = " ".join((response.text or "").split())[:500]
            raise SuggestionError(f"API request failed: {response.status_code} - {detail}")

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise SuggestionError("No response content received") from exc
        if not content:
            raise SuggestionError("No response content received")

        return parse_response_content(content)
