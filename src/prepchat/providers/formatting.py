from __future__ import annotations
from typing import Any, Dict, Iterable, List

from prepchat.core.models import ProviderFamily
from prepchat.providers import ollama

MAX_TOKENS = 4000

Message = Dict[str, Any]


def sendable(messages: Iterable[Message]) -> List[Message]:
    """Drop messages whose content is empty or whitespace; providers reject them."""
    out: List[Message] = []
    for m in messages:
        content = m.get("content")
        if isinstance(content, str) and content.strip():
            out.append({"role": m.get("role", "user"), "content": content})
    return out


def _openai_shape(model: str, messages: List[Message], system_prompt: str, stream: bool) -> Dict[str, Any]:
    return {
        "model": model,
        "max_tokens": MAX_TOKENS,
        "messages": [{"role": "system", "content": system_prompt}, *messages],
        "stream": stream,
    }


def format_request(
    family: ProviderFamily,
    messages: Iterable[Message],
    system_prompt: str,
    model: str,
    stream: bool = False,
) -> Dict[str, Any]:
    """
    Build the provider-specific JSON body.
    'model' is already resolved (see registry.resolve_model).
    """
    msgs = sendable(messages)

    if family is ProviderFamily.ANTHROPIC:
        # Anthropic rejects system-role entries inside messages; they join the top-level prompt
        system_parts = [system_prompt] + [m["content"] for m in msgs if m["role"] == "system"]
        return {
            "model": model,
            "max_tokens": MAX_TOKENS,
            "system": "\n\n".join(p for p in system_parts if p),
            "messages": [
                {"role": m["role"], "content": m["content"]}
                for m in msgs
                if m["role"] in ("user", "assistant")
            ],
            "stream": stream,
        }

    if family is ProviderFamily.GEMINI:
        contents = [{"role": "user", "parts": [{"text": system_prompt}]}]
        for m in msgs:
            role = "user" if m["role"] == "system" else m["role"]
            contents.append({"role": role, "parts": [{"text": m["content"]}]})
        return {"model": model, "contents": contents}

    if family is ProviderFamily.OLLAMA:
        return {
            "model": model,
            "prompt": ollama.build_prompt(msgs, system_prompt),
            "stream": stream,
            "options": ollama.generation_options(model),
        }

    # OpenAI, Mistral, generic OpenAI-compatible and custom endpoints
    return _openai_shape(model, msgs, system_prompt, stream)
