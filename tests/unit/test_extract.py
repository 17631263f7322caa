# tests/unit/test_extract.py

from __future__ import annotations
import json
import sys
from pathlib import Path
import pytest

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from prepchat.core.errors import ApiError
from prepchat.core.models import ProviderFamily
from prepchat.providers.extract import extract_full_text

OPENAI_BODY = {"choices": [{"message": {"role": "assistant", "content": "from openai"}}]}
ANTHROPIC_BODY = {"content": [{"type": "text", "text": "from claude"}]}
GEMINI_BODY = {"candidates": [{"content": {"parts": [{"text": "from gemini"}]}}]}


def test_known_families():
    assert extract_full_text(ProviderFamily.OPENAI, OPENAI_BODY) == "from openai"
    assert extract_full_text(ProviderFamily.MISTRAL, OPENAI_BODY) == "from openai"
    assert extract_full_text(ProviderFamily.ANTHROPIC, ANTHROPIC_BODY) == "from claude"
    assert extract_full_text(ProviderFamily.GEMINI, GEMINI_BODY) == "from gemini"
    assert extract_full_text(ProviderFamily.OLLAMA, {"response": "from ollama", "done": True}) == "from ollama"
    assert extract_full_text(ProviderFamily.OLLAMA, {"message": {"content": "chat api"}}) == "chat api"


def test_wrong_shape_for_known_family_raises():
    with pytest.raises(ApiError):
        extract_full_text(ProviderFamily.ANTHROPIC, OPENAI_BODY)


def test_generic_falls_back_to_raw_json():
    assert extract_full_text(ProviderFamily.GENERIC, OPENAI_BODY) == "from openai"
    assert json.loads(extract_full_text(ProviderFamily.GENERIC, {"weird": 1})) == {"weird": 1}


@pytest.mark.parametrize("body,expected", [
    (OPENAI_BODY, "from openai"),
    (ANTHROPIC_BODY, "from claude"),
    (GEMINI_BODY, "from gemini"),
    ({"text": "t"}, "t"),
    ({"result": "r"}, "r"),
    ({"output": "o"}, "o"),
    ({"generated_text": "g"}, "g"),
])
def test_custom_known_shapes(body, expected):
    assert extract_full_text(ProviderFamily.CUSTOM, body) == expected


def test_custom_priority_and_last_resort():
    both = {**ANTHROPIC_BODY, **OPENAI_BODY}
    assert extract_full_text(ProviderFamily.CUSTOM, both) == "from openai"
    raw = {"data": [1, 2]}
    assert json.loads(extract_full_text(ProviderFamily.CUSTOM, raw)) == raw
    assert extract_full_text(ProviderFamily.CUSTOM, "plain text body") == "plain text body"
