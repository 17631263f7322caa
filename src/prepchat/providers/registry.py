from __future__ import annotations
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional

from prepchat.core.errors import MissingConfiguration, UnsupportedProvider
from prepchat.core.models import ProviderConfig, ProviderFamily

CUSTOM_IDS = ("other", "custom")

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
OPENAI_URL = "https://api.openai.com/v1/chat/completions"
OLLAMA_URL = "http://localhost:11434/api/generate"

_F = ProviderFamily

# id, endpoint, model, family, label
_BUILTINS = (
    ("claude-3-5-sonnet", ANTHROPIC_URL, "claude-3-5-sonnet-20240620", _F.ANTHROPIC, "Claude 3.5 Sonnet"),
    ("claude-3-7-sonnet", ANTHROPIC_URL, "claude-3-7-sonnet-20250219", _F.ANTHROPIC, "Claude 3.7 Sonnet"),
    ("claude-3-opus", ANTHROPIC_URL, "claude-3-opus-20240229", _F.ANTHROPIC, "Claude 3 Opus"),
    ("claude-3-haiku", ANTHROPIC_URL, "claude-3-haiku-20240307", _F.ANTHROPIC, "Claude 3 Haiku"),
    ("gpt-4", OPENAI_URL, "gpt-4-turbo-2024-04-09", _F.OPENAI, "GPT-4 Turbo"),
    ("gpt-4o", OPENAI_URL, "gpt-4o-2024-05-13", _F.OPENAI, "GPT-4o"),
    ("gpt-3.5-turbo", OPENAI_URL, "gpt-3.5-turbo-0613", _F.OPENAI, "GPT-3.5 Turbo"),
    ("gpt-o1", OPENAI_URL, "gpt-o1-2024-05-13", _F.OPENAI, "GPT-o1"),
    ("mistral-large", "https://api.mistral.ai/v1/chat/completions", "mistral-large-latest", _F.MISTRAL, "Mistral Large"),
    ("gemini-1.5-pro",
     "https://generativelanguage.googleapis.com/v1beta/models/gemini-1.5-pro",
     "gemini-1.5-pro-latest", _F.GEMINI, "Gemini 1.5 Pro"),
    ("deepseek-reasoner", "https://api.deepseek.com/chat/completions", "deepseek-reasoner:latest", _F.GENERIC, "DeepSeek Reasoner"),
    ("grok-3", "https://api.grok.xai.com/v1/completions", "grok-3", _F.GENERIC, "Grok 3"),
    ("llama-3", "https://api.llama.ai/v1/chat/completions", "llama-3-70b-8192", _F.GENERIC, "Llama 3"),
    ("ollama-llama", OLLAMA_URL, "llama3.2", _F.OLLAMA, "Ollama: Llama 3.2"),
    ("ollama-gemma", OLLAMA_URL, "gemma3", _F.OLLAMA, "Ollama: Gemma 3"),
    ("ollama-qwen", OLLAMA_URL, "qwen2.5", _F.OLLAMA, "Ollama: Qwen 2.5"),
    ("ollama-deepseek", OLLAMA_URL, "deepseek-r1", _F.OLLAMA, "Ollama: DeepSeek R1"),
    ("ollama-mistral", OLLAMA_URL, "mistral", _F.OLLAMA, "Ollama: Mistral"),
    ("other", "", "", _F.CUSTOM, "Other..."),
)


class ProviderRegistry:
    """
    Immutable table of provider id -> ProviderConfig.
    Build one at start-up (see default_registry) and pass it to whatever needs it;
    tests build their own with only the entries they care about.
    """

    def __init__(self, configs: Iterable[ProviderConfig]):
        table: Dict[str, ProviderConfig] = {}
        for cfg in configs:
            table[cfg.id.lower()] = cfg
        self._table: Mapping[str, ProviderConfig] = MappingProxyType(table)

    def __contains__(self, provider_id: str) -> bool:
        return self._key(provider_id) in self._table

    def __iter__(self):
        return iter(self._table.values())

    def __len__(self) -> int:
        return len(self._table)

    @staticmethod
    def _key(provider_id: str) -> str:
        key = (provider_id or "").strip().lower()
        # "custom" is an alias of the "other" entry
        return "other" if key in CUSTOM_IDS else key

    def ids(self) -> List[str]:
        return [cfg.id for cfg in self._table.values()]

    def lookup(self, provider_id: str) -> ProviderConfig:
        cfg = self._table.get(self._key(provider_id))
        if cfg is None:
            raise UnsupportedProvider(f"Unsupported AI provider: {provider_id}")
        return cfg

    def lookup_endpoint(self, provider_id: str) -> str:
        cfg = self.lookup(provider_id)
        if cfg.family is ProviderFamily.CUSTOM or not cfg.endpoint_url:
            raise MissingConfiguration(f"Provider '{provider_id}' needs an explicit endpoint")
        return cfg.endpoint_url

    def lookup_model_id(self, provider_id: str) -> str:
        return self.lookup(provider_id).model_id

    def resolve(
        self,
        provider_id: str,
        custom_endpoint: Optional[str] = None,
        custom_model: Optional[str] = None,
    ) -> ProviderConfig:
        """
        Return the config to call. For the custom provider the caller-supplied
        endpoint and model replace the empty table entry; both are required.
        """
        cfg = self.lookup(provider_id)
        if cfg.family is not ProviderFamily.CUSTOM:
            if not cfg.endpoint_url:
                raise UnsupportedProvider(f"Unsupported AI provider: {provider_id}")
            return cfg

        endpoint = (custom_endpoint or "").strip()
        model = (custom_model or "").strip()
        if not endpoint:
            raise MissingConfiguration("Custom endpoint is required for custom provider")
        if not model:
            raise MissingConfiguration("Custom model is required for custom provider")
        return ProviderConfig(id=cfg.id, endpoint_url=endpoint, model_id=model, family=cfg.family, label=cfg.label)


def resolve_model(cfg: ProviderConfig, version: Optional[str] = None, custom_model: Optional[str] = None) -> str:
    """
    Model id to put in the request body.
    An explicit version always wins. Ollama and custom providers then honour the
    custom model field before falling back to the registry default.
    """
    if version and version.strip() and version.strip() != "latest":
        return version.strip()
    if cfg.family in (ProviderFamily.OLLAMA, ProviderFamily.CUSTOM) and custom_model and custom_model.strip():
        return custom_model.strip()
    return cfg.model_id


def default_registry() -> ProviderRegistry:
    return ProviderRegistry(
        ProviderConfig(id=pid, endpoint_url=url, model_id=model, family=family, label=label)
        for pid, url, model, family, label in _BUILTINS
    )
