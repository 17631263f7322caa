# src/prepchat/config_loader.py

from __future__ import annotations
from pathlib import Path
from typing import Any, Dict
import yaml

from prepchat.transport.http import TransportMode


class ConfigError(ValueError):
    pass


def _require(d: Dict[str, Any], dotted: str, typ: type) -> Any:
    cur: Any = d
    for k in dotted.split("."):
        if not isinstance(cur, dict) or k not in cur:
            raise ConfigError(f"Missing config key: {dotted}")
        cur = cur[k]
    if typ is bool and not isinstance(cur, bool):
        raise ConfigError(f"'{dotted}' must be a boolean")
    if typ is str and not isinstance(cur, str):
        raise ConfigError(f"'{dotted}' must be a string")
    return cur


def load_config(path: Path) -> Dict[str, Any]:
    if not path or not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    raw = yaml.safe_load(path.read_text())
    if not isinstance(raw, dict) or not raw:
        raise ConfigError(f"Config is empty or invalid YAML: {path}")

    # Validate required keys (no defaults here)
    _require(raw, "transport.mode", str)           # 'direct' or 'proxied'
    _require(raw, "storage.backend", str)          # 'file' or 'none'
    _require(raw, "storage.dir", str)              # path string
    _require(raw, "chat.provider", str)
    _require(raw, "chat.stream", bool)

    # Normalise enumerations
    mode = str(raw["transport"]["mode"]).lower()
    backend = str(raw["storage"]["backend"]).lower()
    valid_modes = [m.value for m in TransportMode]
    if mode not in valid_modes:
        raise ConfigError(f"Unknown transport.mode '{mode}' (expected one of {valid_modes}).")
    if backend not in ("file", "none"):
        raise ConfigError(f"Unknown storage.backend '{backend}' (expected 'file' or 'none').")
    if mode == TransportMode.PROXIED.value:
        _require(raw, "transport.proxy_url", str)
    timeout = raw["transport"].get("timeout")
    if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float))):
        raise ConfigError("'transport.timeout' must be a number")

    raw["transport"]["mode"] = mode
    raw["storage"]["backend"] = backend
    raw["chat"]["provider"] = raw["chat"]["provider"].strip().lower()

    # Leave paths as provided; resolve them later in bootstrap/composition
    return raw
