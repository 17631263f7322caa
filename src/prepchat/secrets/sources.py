# src/prepchat/secrets/sources.py

from __future__ import annotations
from typing import Protocol, Optional, Dict, Iterable, List, Union
import getpass, logging, os, subprocess, sys

import keyring as _keyring
from keyring.errors import KeyringError

from prepchat.core.models import ProviderFamily

logger = logging.getLogger(__name__)

# Service name per provider family; generic providers are keyed by their own id prefix.
FAMILY_SERVICES = {
    ProviderFamily.OPENAI: "openai",
    ProviderFamily.ANTHROPIC: "anthropic",
    ProviderFamily.GEMINI: "gemini",
    ProviderFamily.MISTRAL: "mistral",
    ProviderFamily.CUSTOM: "custom",
}
GENERIC_SERVICES = {
    "deepseek": "deepseek",
    "grok": "xai",
    "llama": "llama",
}


def service_for(provider_id: str, family: ProviderFamily) -> Optional[str]:
    """Default secret service for a provider; None for Ollama, which needs no key."""
    if family is ProviderFamily.OLLAMA:
        return None
    if family is ProviderFamily.GENERIC:
        pid = provider_id.lower()
        return next((svc for prefix, svc in GENERIC_SERVICES.items() if pid.startswith(prefix)), pid)
    return FAMILY_SERVICES[family]


class SecretSource(Protocol):
    def get(self, service: str) -> Optional[str]: ...


class EnvSource:
    def get(self, service: str) -> Optional[str]:
        # 1) exact env var name
        val = os.getenv(service)
        if val:
            return val.strip()
        # 2) derived names: ANTHROPIC_API_KEY, ANTHROPIC
        for key in (f"{service.upper()}_API_KEY", service.upper()):
            val = os.getenv(key)
            if val:
                return val.strip()
        return None


class SystemKeyringSource:
    def get(self, service: str) -> Optional[str]:
        try:
            cred = _keyring.get_credential(service, None)
            if cred and getattr(cred, "password", None):
                return cred.password.strip()
        except KeyringError as e:
            logger.debug("keyring credential lookup failed for %s: %s", service, e)
        for account in ("API_KEY", f"{service.upper()}_API_KEY", "default", service, getpass.getuser()):
            try:
                val = _keyring.get_password(service, account)
            except KeyringError as e:
                logger.debug("keyring password lookup failed for %s/%s: %s", service, account, e)
                continue
            if val:
                return val.strip()
        if sys.platform == "darwin":
            p = subprocess.run(
                ["security", "find-generic-password", "-s", service, "-w"],
                capture_output=True, text=True, check=False
            )
            if p.returncode == 0 and p.stdout.strip():
                return p.stdout.strip()
        return None


_ALLOWED_METHODS = {"env", "keyring"}


def _normalise_methods(method: Union[str, Iterable[str]]) -> List[str]:
    methods = [method] if isinstance(method, str) else list(method)
    norm = []
    for m in methods:
        key = str(m).strip().lower()
        if key not in _ALLOWED_METHODS:
            raise ValueError(f"Unknown secrets method '{m}'. Allowed: {sorted(_ALLOWED_METHODS)}")
        if key not in norm:
            norm.append(key)
    return norm


def build_secret_sources(method: Union[str, Iterable[str]]) -> List[SecretSource]:
    sources: List[SecretSource] = []
    for name in _normalise_methods(method):
        if name == "env":
            sources.append(EnvSource())
        elif name == "keyring":
            sources.append(SystemKeyringSource())
    return sources


class SecretsResolver:
    """
    Resolve provider API keys using one or more methods in order.
    mapping: provider id -> service name or env var, overriding service_for()
      e.g. { "gpt-4o": "OPENAI_WORK_KEY", "other": "my-gateway" }
    """
    def __init__(self, method: Union[str, Iterable[str]], mapping: Optional[Dict[str, str]] = None):
        self._sources = build_secret_sources(method)
        self._map = {str(k).lower(): str(v) for k, v in (mapping or {}).items()}

    def api_key(self, provider_id: str, family: ProviderFamily) -> Optional[str]:
        service = self._map.get(provider_id.lower()) or service_for(provider_id, family)
        if not service:
            return None
        for src in self._sources:
            val = src.get(service)
            if val:
                return val
        return None
