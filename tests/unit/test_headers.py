# tests/unit/test_headers.py

from __future__ import annotations
import logging
import sys
from pathlib import Path

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from prepchat.core.models import ProviderFamily
from prepchat.providers.headers import ANTHROPIC_VERSION, build_headers


def test_known_families():
    h = build_headers(ProviderFamily.ANTHROPIC, "sk-ant-1").headers
    assert h == {"Content-Type": "application/json", "x-api-key": "sk-ant-1", "anthropic-version": ANTHROPIC_VERSION}

    for fam in (ProviderFamily.OPENAI, ProviderFamily.MISTRAL, ProviderFamily.GENERIC):
        assert build_headers(fam, "k").headers == {"Content-Type": "application/json", "Authorization": "Bearer k"}

    assert build_headers(ProviderFamily.GEMINI, "g").headers == {"Content-Type": "application/json", "x-goog-api-key": "g"}
    assert build_headers(ProviderFamily.OLLAMA, "ignored").headers == {"Content-Type": "application/json"}


def test_custom_headers_passthrough_adds_content_type():
    res = build_headers(ProviderFamily.CUSTOM, "k", '{"X-Token": "abc"}')
    assert res.warning is None
    assert res.headers == {"X-Token": "abc", "Content-Type": "application/json"}


def test_custom_headers_keep_user_content_type():
    res = build_headers(ProviderFamily.CUSTOM, "k", '{"content-type": "application/vnd.api+json"}')
    assert res.headers == {"content-type": "application/vnd.api+json"}


def test_custom_headers_parse_failure_falls_back(caplog):
    with caplog.at_level(logging.WARNING):
        res = build_headers(ProviderFamily.CUSTOM, "k", "{not json")
    assert res.headers == {"Content-Type": "application/json", "Authorization": "Bearer k"}
    assert res.warning
    assert "custom headers" in caplog.text.lower()

    res = build_headers(ProviderFamily.CUSTOM, "k", '["a", "b"]')
    assert res.warning and res.headers["Authorization"] == "Bearer k"


def test_custom_without_headers_uses_bearer():
    res = build_headers(ProviderFamily.CUSTOM, "k", "")
    assert res.headers["Authorization"] == "Bearer k"
    assert res.warning is None
