# tests/unit/test_formatting.py

from __future__ import annotations
import sys
from pathlib import Path

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from prepchat.core.models import ProviderFamily
from prepchat.providers import ollama
from prepchat.providers.formatting import MAX_TOKENS, format_request

HISTORY = [
    {"role": "user", "content": "Hi"},
    {"role": "assistant", "content": "Hello"},
    {"role": "system", "content": "Current context: closures"},
    {"role": "user", "content": "What is a closure?"},
]


def test_anthropic_lifts_system_prompt():
    body = format_request(ProviderFamily.ANTHROPIC, HISTORY, "Be nice", "claude-x", stream=True)
    assert body["system"] == "Be nice\n\nCurrent context: closures"
    assert body["model"] == "claude-x"
    assert body["max_tokens"] == MAX_TOKENS
    assert body["stream"] is True
    assert all(m["role"] in ("user", "assistant") for m in body["messages"])
    assert [m["content"] for m in body["messages"]] == ["Hi", "Hello", "What is a closure?"]


def test_openai_prepends_system_message():
    body = format_request(ProviderFamily.OPENAI, HISTORY, "Be nice", "gpt-x")
    assert body["messages"][0] == {"role": "system", "content": "Be nice"}
    assert body["messages"][1:] == HISTORY
    assert body["max_tokens"] == MAX_TOKENS
    assert body["stream"] is False


def test_mistral_generic_and_custom_share_openai_shape():
    reference = format_request(ProviderFamily.OPENAI, HISTORY, "S", "m", stream=True)
    for family in (ProviderFamily.MISTRAL, ProviderFamily.GENERIC, ProviderFamily.CUSTOM):
        assert format_request(family, HISTORY, "S", "m", stream=True) == reference


def test_gemini_contents():
    body = format_request(ProviderFamily.GEMINI, HISTORY, "S", "gemini-x")
    contents = body["contents"]
    assert contents[0] == {"role": "user", "parts": [{"text": "S"}]}
    assert contents[3] == {"role": "user", "parts": [{"text": "Current context: closures"}]}
    assert all("system" != c["role"] for c in contents)
    assert "messages" not in body


def test_ollama_flattens_prompt_and_picks_options():
    msgs = [
        {"role": "user", "content": "Hi"},
        {"role": "assistant", "content": "Hello"},
        {"role": "user", "content": "Q"},
    ]
    body = format_request(ProviderFamily.OLLAMA, msgs, "S", "qwen2.5:7b", stream=True)
    assert body["prompt"] == "System: S\n\nUser: Hi\n\nAssistant: Hello\n\nUser: Q\n\nAssistant:"
    assert body["options"] == ollama.select_profile("qwen").params
    assert body["stream"] is True
    assert body["model"] == "qwen2.5:7b"


def test_blank_messages_are_never_sent():
    msgs = [
        {"role": "user", "content": "   "},
        {"role": "assistant", "content": ""},
        {"role": "user", "content": "real"},
    ]
    for family in ProviderFamily:
        body = format_request(family, msgs, "S", "m")
        text = repr(body)
        assert "'   '" not in text
        assert "real" in text
    assert format_request(ProviderFamily.OPENAI, msgs, "S", "m")["messages"][1:] == [{"role": "user", "content": "real"}]


def test_anthropic_system_without_history_context():
    body = format_request(ProviderFamily.ANTHROPIC, HISTORY[:2], "Be nice", "claude-x")
    assert body["system"] == "Be nice"
    assert "Current context" not in repr(body["messages"])
