# tests/unit/test_config_loader.py

from __future__ import annotations
import sys
from pathlib import Path
import pytest
from textwrap import dedent

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from prepchat.config_loader import load_config, ConfigError  # type: ignore


def write_yaml(p: Path, text: str) -> Path:
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(dedent(text).lstrip("\n").rstrip() + "\n", encoding="utf-8")
    return p


def test_load_config_ok(tmp_path: Path):
    cfg = write_yaml(
        tmp_path / "config" / "default.yaml",
        """
        transport: { mode: DIRECT, timeout: 30 }
        storage: { backend: FILE, dir: sessions }
        chat: { provider: " GPT-4o ", stream: true }
        """,
    )
    data = load_config(cfg)
    assert data["transport"]["mode"] == "direct"    # normalised
    assert data["storage"]["backend"] == "file"     # normalised
    assert data["chat"]["provider"] == "gpt-4o"
    # loader leaves paths as provided (bootstrap resolves them)
    assert data["storage"]["dir"] == "sessions"


def test_shipped_default_config_loads():
    data = load_config(Path(__file__).resolve().parents[2] / "config" / "default.yaml")
    assert data["transport"]["mode"] == "direct"
    assert data["chat"]["provider"] == "gpt-3.5-turbo"


def test_load_config_missing_key(tmp_path: Path):
    cfg = write_yaml(
        tmp_path / "config" / "default.yaml",
        """
        transport: { mode: direct }
        storage: { backend: file, dir: sessions }
        chat: { stream: true }               # missing provider
        """,
    )
    with pytest.raises(ConfigError, match="chat.provider"):
        load_config(cfg)


def test_load_config_type_error(tmp_path: Path):
    cfg = write_yaml(
        tmp_path / "config" / "default.yaml",
        """
        transport: { mode: direct }
        storage: { backend: file, dir: sessions }
        chat: { provider: gpt-4, stream: "yes" }   # wrong type
        """,
    )
    with pytest.raises(ConfigError):
        load_config(cfg)


@pytest.mark.parametrize("transport", [
    "{ mode: carrier-pigeon }",
    "{ mode: proxied }",                  # proxied needs proxy_url
    "{ mode: direct, timeout: soon }",
])
def test_bad_transport_section(tmp_path: Path, transport: str):
    cfg = write_yaml(
        tmp_path / "c.yaml",
        f"""
        transport: {transport}
        storage: {{ backend: file, dir: sessions }}
        chat: {{ provider: gpt-4, stream: false }}
        """,
    )
    with pytest.raises(ConfigError):
        load_config(cfg)


def test_unknown_backend_and_missing_file(tmp_path: Path):
    cfg = write_yaml(
        tmp_path / "c.yaml",
        """
        transport: { mode: direct }
        storage: { backend: s3, dir: sessions }
        chat: { provider: gpt-4, stream: false }
        """,
    )
    with pytest.raises(ConfigError):
        load_config(cfg)
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "absent.yaml")
