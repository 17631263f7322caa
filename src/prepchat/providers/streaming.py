from __future__ import annotations
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Union

from prepchat.core.models import ProviderFamily
from prepchat.providers import ollama

logger = logging.getLogger(__name__)

DONE = "[DONE]"

Chunk = Union[str, bytes]


def _dig(obj: Any, *path: Union[str, int]) -> Optional[str]:
    cur = obj
    for key in path:
        try:
            cur = cur[key]
        except (KeyError, IndexError, TypeError):
            return None
    return cur if isinstance(cur, str) else None


def _openai_delta(obj: Any) -> Optional[str]:
    return _dig(obj, "choices", 0, "delta", "content")


def _anthropic_delta(obj: Any) -> Optional[str]:
    return _dig(obj, "delta", "text")


def _gemini_delta(obj: Any) -> Optional[str]:
    return _dig(obj, "candidates", 0, "content", "parts", 0, "text")


def _fallback_delta(obj: Any) -> Optional[str]:
    # OpenAI (Mistral shares its path), Anthropic, then Gemini
    for fn in (_openai_delta, _anthropic_delta, _gemini_delta):
        piece = fn(obj)
        if piece:
            return piece
    return None


_SSE_PATHS: Dict[ProviderFamily, Callable[[Any], Optional[str]]] = {
    ProviderFamily.OPENAI: _openai_delta,
    ProviderFamily.MISTRAL: _openai_delta,
    ProviderFamily.ANTHROPIC: _anthropic_delta,
    ProviderFamily.GEMINI: _gemini_delta,
    ProviderFamily.GENERIC: _fallback_delta,
    ProviderFamily.CUSTOM: _fallback_delta,
}


def _looks_like_sse(text: str) -> bool:
    stripped = text.lstrip()
    return stripped.startswith(("data:", "event:", ":", "{"))


class StreamChunkProcessor:
    """
    Turns raw network chunks into text deltas for one stream.

    Holds a little state between chunks so Ollama repairs (markdown markers,
    code fences) can see across chunk boundaries; call flush() once the
    stream ends to get whatever was held back.
    """

    def __init__(self, family: ProviderFamily, model_hint: Optional[str] = None):
        self.family = family
        self.model_hint = model_hint
        self.profile = ollama.select_profile(model_hint) if family is ProviderFamily.OLLAMA else None
        self._carry = ""
        self._at_line_start = True

    def process(self, raw_chunk: Chunk) -> str:
        """Delta for one chunk; "" when the chunk carries no text or cannot be read."""
        try:
            text = raw_chunk.decode("utf-8", errors="replace") if isinstance(raw_chunk, bytes) else str(raw_chunk)
            if self.family is ProviderFamily.OLLAMA:
                return self._ollama(text)
            return self._sse(text)
        except Exception:
            logger.exception("Error processing %s stream chunk; skipping it", self.family.value)
            return ""

    def flush(self) -> str:
        out, self._carry = self._carry, ""
        return out

    # SSE providers

    def _sse(self, text: str) -> str:
        generic = self.family in (ProviderFamily.GENERIC, ProviderFamily.CUSTOM)
        if generic and not _looks_like_sse(text):
            # some custom endpoints stream bare text
            return text

        extract = _SSE_PATHS.get(self.family, _fallback_delta)
        pieces: List[str] = []
        for line in text.splitlines():
            line = line.strip()
            if not line or line.startswith((":", "event:", "id:", "retry:")):
                continue
            if line.startswith("data:"):
                line = line[5:].strip()
            if not line or line == DONE:
                continue
            try:
                obj = json.loads(line)
            except ValueError:
                logger.debug("Skipping unparseable stream line: %.80s", line)
                continue
            piece = extract(obj)
            if piece:
                pieces.append(piece)
        return "".join(pieces)

    # Ollama NDJSON

    def _ollama(self, text: str) -> str:
        profile = self.profile or ollama.select_profile(self.model_hint)
        pieces: List[str] = []
        for line in text.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except ValueError:
                if profile.filter_metadata:
                    pieces.append(ollama.regex_response(line))
                else:
                    logger.debug("Skipping unparseable Ollama line: %.80s", line)
                continue
            pieces.append(self._ollama_text(obj, profile))
        return self._repair("".join(pieces), profile)

    @staticmethod
    def _ollama_text(obj: Any, profile: ollama.OllamaModelProfile) -> str:
        if not isinstance(obj, dict):
            return ""
        if profile.filter_metadata:
            obj = {k: v for k, v in obj.items() if k not in ollama.METADATA_KEYS}
        piece = obj.get(profile.text_field)
        if not isinstance(piece, str):
            piece = _dig(obj, "message", "content") or ""
        if profile.filter_metadata:
            piece = ollama.strip_control_tokens(piece)
        return piece

    def _repair(self, text: str, profile: ollama.OllamaModelProfile) -> str:
        if profile.special_parsing is None:
            return text
        text = self._carry + text
        self._carry = ""
        if profile.special_parsing == "markdown":
            text, self._carry = ollama.hold_back_markdown(text)
        elif profile.special_parsing == "code_fence":
            text, self._carry = ollama.hold_back_fence(text)
            text = ollama.fix_fence_lines(text, self._at_line_start)
        if text:
            self._at_line_start = text.endswith("\n")
        return text


def extract_delta(raw_chunk: Chunk, family: ProviderFamily, model_hint: Optional[str] = None) -> str:
    """Stateless form: one chunk in, its full text out."""
    proc = StreamChunkProcessor(family, model_hint)
    return proc.process(raw_chunk) + proc.flush()


class LineBuffer:
    """
    Network reads split lines anywhere; this hands out only complete lines
    (newline kept) and keeps the tail for the next read.
    """

    def __init__(self):
        self._tail = ""

    def feed(self, text: str) -> str:
        data = self._tail + text
        cut = data.rfind("\n")
        if cut < 0:
            self._tail = data
            return ""
        self._tail = data[cut + 1:]
        return data[: cut + 1]

    def flush(self) -> str:
        out, self._tail = self._tail, ""
        return out
