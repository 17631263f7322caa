from __future__ import annotations
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

# Keys Ollama attaches to every /api/generate object besides the text itself.
METADATA_KEYS = frozenset({
    "model", "created_at", "done", "done_reason", "context", "total_duration",
    "load_duration", "prompt_eval_count", "prompt_eval_duration", "eval_count",
    "eval_duration",
})

# Chat-template tokens Qwen builds sometimes echo into the response text.
_QWEN_CONTROL = re.compile(r"<\|(?:im_start|im_end|endoftext)\|>(?:assistant|user|system)?\n?")

_RESPONSE_RX = re.compile(r'"response"\s*:\s*"((?:[^"\\]|\\.)*)"')


@dataclass(frozen=True)
class OllamaModelProfile:
    """
    Per model family knobs for Ollama.
    special_parsing: None, "markdown" (Gemma) or "code_fence" (DeepSeek).
    """
    name: str
    text_field: str = "response"
    filter_metadata: bool = False
    special_parsing: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)


PROFILES: Tuple[OllamaModelProfile, ...] = (
    OllamaModelProfile(
        name="gemma",
        special_parsing="markdown",
        params={"temperature": 0.7, "top_p": 0.9, "top_k": 40, "repeat_penalty": 1.1},
    ),
    OllamaModelProfile(
        name="qwen",
        filter_metadata=True,
        params={"temperature": 0.7, "top_p": 0.8, "top_k": 20, "repeat_penalty": 1.05, "num_ctx": 8192},
    ),
    OllamaModelProfile(
        name="deepseek",
        special_parsing="code_fence",
        params={"temperature": 0.6, "top_p": 0.95, "num_ctx": 8192},
    ),
    OllamaModelProfile(
        name="llama",
        params={"temperature": 0.7, "top_p": 0.9, "top_k": 40, "repeat_penalty": 1.1},
    ),
    OllamaModelProfile(
        name="mistral",
        params={"temperature": 0.7, "top_p": 0.9, "top_k": 50},
    ),
)

_DEFAULT = PROFILES[3]


def select_profile(model_name: Optional[str]) -> OllamaModelProfile:
    """First profile whose name is contained in the model name wins; llama otherwise."""
    lowered = (model_name or "").lower()
    for profile in PROFILES:
        if profile.name in lowered:
            return profile
    return _DEFAULT


def generation_options(model_name: Optional[str]) -> Dict[str, Any]:
    return dict(select_profile(model_name).params)


def build_prompt(messages: List[Dict[str, Any]], system_prompt: str) -> str:
    parts: List[str] = []
    if system_prompt:
        parts.append(f"System: {system_prompt}")
    for m in messages:
        role = m.get("role")
        label = {"system": "System", "assistant": "Assistant"}.get(role, "User")
        parts.append(f"{label}: {m.get('content', '')}")
    parts.append("Assistant:")
    return "\n\n".join(parts)


def strip_control_tokens(text: str) -> str:
    return _QWEN_CONTROL.sub("", text)


def regex_response(raw: str) -> str:
    """Pull the "response" string out of a fragment that is not valid JSON."""
    found = _RESPONSE_RX.findall(raw)
    out: List[str] = []
    for escaped in found:
        try:
            out.append(json.loads(f'"{escaped}"'))
        except ValueError:
            out.append(escaped)
    return "".join(out)


def _trailing_run(text: str, chars: str) -> int:
    n = 0
    for ch in reversed(text):
        if ch not in chars:
            break
        n += 1
    return n


def hold_back_markdown(text: str) -> Tuple[str, str]:
    """
    Split off emphasis markers dangling at the end of a chunk so that "**" split
    as "*" + "*" across two chunks is emitted as one marker.
    Returns (emit_now, carry).
    """
    n = _trailing_run(text, "*_")
    if n == 0 or n >= 3:
        return text, ""
    return text[:-n], text[-n:]


def hold_back_fence(text: str) -> Tuple[str, str]:
    """Same idea for code fences: a run of one or two backticks at the end is held back."""
    n = _trailing_run(text, "`")
    if n == 0 or n >= 3:
        return text, ""
    return text[:-n], text[-n:]


def fix_fence_lines(text: str, at_line_start: bool) -> str:
    """Fences glued to preceding text ("foo```python") are moved onto their own line."""
    out: List[str] = []
    i = 0
    line_start = at_line_start
    while i < len(text):
        if text.startswith("```", i):
            if not line_start:
                out.append("\n")
            out.append("```")
            i += 3
            line_start = False
            continue
        ch = text[i]
        out.append(ch)
        line_start = ch == "\n"
        i += 1
    return "".join(out)
