"""Isolate the JSON payload embedded in a free-form completion.

Models are asked to answer with bare JSON but routinely wrap it in Markdown
fences or surround it with prose.  :func:`extract` recovers the payload with
a fixed, documented heuristic:

1. Any well-formed JSON document is returned untouched, scalars included;
   deciding whether it is a usable payload is the validator's job.
2. Otherwise fences are stripped, the text is sliced from the earliest
   opening delimiter to the matching latest closing delimiter, whitespace is
   normalized, and the result is parsed again.

The outer-span heuristic does not track nesting depth, so stray braces or
brackets in the prose around the payload can widen the slice and make the
final parse fail.  Such responses are reported as
:class:`~codeforge.errors.ExtractionFailure` rather than repaired.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from codeforge.errors import ExtractionFailure, excerpt

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

# ```json, ```javascript, ``` ... both opening (with tag) and closing fences.
_FENCE_PATTERN = re.compile(r"```[A-Za-z0-9_+-]*")
# Inline-code backticks hugging a JSON container: `{...}` or `[...]`.
_INLINE_OPEN_PATTERN = re.compile(r"`(?=\s*[\[{])")
_INLINE_CLOSE_PATTERN = re.compile(r"(?<=[\]}])(\s*)`")

_CONTROL_WS_PATTERN = re.compile(r"[\n\r\t]")
_WS_RUN_PATTERN = re.compile(r"\s+")
_QUOTE_BEFORE_CONTAINER = re.compile(r'"\s+([{\[])')
_CONTAINER_BEFORE_QUOTE = re.compile(r'([}\]])\s+"')


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------

def _is_json(text: str) -> bool:
    """True when *text* parses as a JSON document as-is."""
    try:
        json.loads(text)
    except (json.JSONDecodeError, RecursionError):
        return False
    return True


def strip_fences(text: str) -> str:
    """Remove Markdown code-fence delimiters and inline-code backticks."""
    cleaned = _FENCE_PATTERN.sub("", text)
    cleaned = _INLINE_OPEN_PATTERN.sub("", cleaned)
    cleaned = _INLINE_CLOSE_PATTERN.sub(r"\1", cleaned)
    return cleaned


def find_json_span(text: str) -> tuple[int, int] | None:
    """Return ``(start, end)`` of the outermost JSON container, or ``None``.

    Objects span from the first ``{`` to the last ``}``; arrays from the
    first ``[`` to the last ``]``.  When both exist the container whose
    opening delimiter comes first wins.
    """
    candidates: list[tuple[int, int]] = []
    for opener, closer in (("{", "}"), ("[", "]")):
        start = text.find(opener)
        end = text.rfind(closer)
        if start != -1 and end > start:
            candidates.append((start, end + 1))
    if not candidates:
        return None
    return min(candidates, key=lambda span: span[0])


def normalize_whitespace(text: str) -> str:
    """Collapse whitespace the way the JSON re-parse expects it.

    Literal newlines, tabs and carriage returns are dropped (they are not
    legal inside JSON strings anyway), remaining runs collapse to a single
    space, and spaces wedged between a quote and a nested container are
    removed.
    """
    cleaned = _CONTROL_WS_PATTERN.sub("", text)
    cleaned = _WS_RUN_PATTERN.sub(" ", cleaned)
    cleaned = _QUOTE_BEFORE_CONTAINER.sub(r'"\1', cleaned)
    cleaned = _CONTAINER_BEFORE_QUOTE.sub(r'\1"', cleaned)
    return cleaned.strip()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def extract(raw: str) -> str:
    """Return valid JSON text isolated from the completion *raw*.

    Raises:
        ExtractionFailure: If the input is empty, contains no JSON container,
            or the cleaned slice still does not parse.
    """
    if raw is None or not raw.strip():
        raise ExtractionFailure("Empty response from completion service")

    if _is_json(raw):
        return raw

    cleaned = strip_fences(raw)
    span = find_json_span(cleaned)
    if span is None:
        logger.warning("No JSON container in completion: %r", excerpt(raw, 200))
        raise ExtractionFailure("No JSON payload found in completion", raw=raw)

    candidate = normalize_whitespace(cleaned[span[0]:span[1]])

    try:
        json.loads(candidate)
    except (json.JSONDecodeError, RecursionError) as exc:
        logger.warning(
            "Cleaned completion is still not JSON (%s): %r", exc, excerpt(raw, 200)
        )
        raise ExtractionFailure(f"Invalid JSON in completion: {exc}", raw=raw) from exc

    return candidate


def parse(raw: str) -> Any:
    """Extract and decode the JSON payload of *raw* in one step."""
    return json.loads(extract(raw))
