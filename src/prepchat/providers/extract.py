from __future__ import annotations
import json
from typing import Any, Optional

from prepchat.core.errors import ApiError
from prepchat.core.models import ProviderFamily

GENERIC_TEXT_FIELDS = ("text", "result", "output", "generated_text")


def _dig(obj: Any, *path) -> Optional[str]:
    cur = obj
    for key in path:
        try:
            cur = cur[key]
        except (KeyError, IndexError, TypeError):
            return None
    return cur if isinstance(cur, str) else None


def _dump(body: Any) -> str:
    if isinstance(body, str):
        return body
    return json.dumps(body, ensure_ascii=False)


def _custom(body: Any) -> str:
    for path in (
        ("choices", 0, "message", "content"),
        ("content", 0, "text"),
        ("candidates", 0, "content", "parts", 0, "text"),
    ):
        text = _dig(body, *path)
        if text:
            return text
    if isinstance(body, dict):
        for key in GENERIC_TEXT_FIELDS:
            value = body.get(key)
            if value:
                return value if isinstance(value, str) else _dump(value)
    return _dump(body)


def extract_full_text(family: ProviderFamily, body: Any) -> str:
    """Final text from a complete (non-streaming) response body."""
    if family is ProviderFamily.CUSTOM:
        return _custom(body)

    if family is ProviderFamily.GENERIC:
        text = _dig(body, "choices", 0, "message", "content")
        return text if text is not None else _dump(body)

    if family in (ProviderFamily.OPENAI, ProviderFamily.MISTRAL):
        text = _dig(body, "choices", 0, "message", "content")
    elif family is ProviderFamily.ANTHROPIC:
        text = _dig(body, "content", 0, "text")
    elif family is ProviderFamily.GEMINI:
        text = _dig(body, "candidates", 0, "content", "parts", 0, "text")
    elif family is ProviderFamily.OLLAMA:
        text = _dig(body, "response")
        if text is None:
            text = _dig(body, "message", "content")
    else:
        text = None

    if text is None:
        raise ApiError(f"Unexpected {family.value} response shape: {_dump(body)[:200]}")
    return text
