"""
Best-effort reply text extraction.

Model providers return loosely structured payloads. Rather than guess at a
schema, the result is run through a short, ordered chain of shape matchers;
the first one that recovers non-empty text wins.

    "plain string"                         -> itself
    [a, b, ...]                            -> first entry that yields text
    {"text": "..."}                        -> text
    {"content": [{"text": ...}, ...]}      -> pieces joined with spaces
    {"response"|"output"|"result"|"results": x} -> recurse into x
"""

from __future__ import annotations

from typing import Any, Callable

FALLBACK_REPLY = "I am momentarily lost in counterpoint. Please try again."

_NESTED_KEYS = ("response", "output", "result", "results")


def _from_string(obj: Any) -> str | None:
    if isinstance(obj, str):
        return obj or None
    return None


def _from_list(obj: Any) -> str | None:
    if isinstance(obj, (list, tuple)):
        for entry in obj:
            value = extract_text(entry)
            if value:
                return value
    return None


def _from_text_field(obj: Any) -> str | None:
    if isinstance(obj, dict):
        text = obj.get("text")
        if isinstance(text, str) and text:
            return text
    return None


def _from_content_pieces(obj: Any) -> str | None:
    if isinstance(obj, dict) and isinstance(obj.get("content"), list):
        pieces = []
        for piece in obj["content"]:
            text = piece.get("text") if isinstance(piece, dict) else None
            pieces.append("" if text is None else str(text))
        joined = " ".join(pieces).strip()
        if joined:
            return joined
    return None


def _from_nested(obj: Any) -> str | None:
    if isinstance(obj, dict):
        # First populated wrapper key decides; later keys are not consulted.
        for key in _NESTED_KEYS:
            if obj.get(key):
                return extract_text(obj[key])
    return None


_MATCHERS: tuple[Callable[[Any], str | None], ...] = (
    _from_string,
    _from_list,
    _from_text_field,
    _from_content_pieces,
    _from_nested,
)


def extract_text(result: Any) -> str | None:
    """Return the first non-empty text recoverable from `result`, else None."""
    if not result:
        return None
    for matcher in _MATCHERS:
        value = matcher(result)
        if value:
            return value
    return None


def extract_reply(result: Any) -> str:
    """Extracted, stripped reply text, or the fallback apology."""
    text = (extract_text(result) or "").strip()
    return text or FALLBACK_REPLY
