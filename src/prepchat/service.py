from __future__ import annotations
import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from prepchat.core.errors import ChatError, ConnectionTestError, MissingCredential
from prepchat.core.models import ProviderConfig, ProviderFamily
from prepchat.core.ports import ChunkCallback
from prepchat.providers.formatting import format_request
from prepchat.providers.headers import build_headers
from prepchat.providers.registry import ProviderRegistry, resolve_model
from prepchat.transport.http import CancelToken, ChatTransport, PreparedRequest

logger = logging.getLogger(__name__)

TEST_PROMPT = "Hello, this is a connection test. Please respond with 'OK'."

_GEMINI_KEY = re.compile(r"^[a-zA-Z0-9_-]+$")


def default_system_prompt(topic: Optional[str] = None) -> str:
    topic = topic or "programming"
    return (
        f"You are a helpful {topic} education assistant. \n"
        f"Your goal is to help the student understand {topic} concepts and programming techniques.\n"
        "Provide clear, accurate, and concise explanations.\n"
        "When explaining code, use simple examples that illustrate the concept clearly.\n"
        "If you don't know something, say so rather than making up an answer.\n"
        "Format your responses using markdown for readability."
    )


class ChatService:
    """
    Provider-agnostic entry point: validates the call, formats it for the
    provider family and hands it to the transport.
    """

    def __init__(self, registry: ProviderRegistry, transport: ChatTransport):
        self.registry = registry
        self.transport = transport

    def prepare(
        self,
        history: Iterable[Dict[str, Any]],
        provider_id: str,
        api_key: Optional[str],
        system_prompt: Optional[str] = None,
        model_version: Optional[str] = None,
        custom_model: Optional[str] = None,
        custom_endpoint: Optional[str] = None,
        custom_headers: Optional[str] = None,
        topic: Optional[str] = None,
        *,
        stream: bool = False,
    ) -> PreparedRequest:
        """
        Build the transport-ready request. All configuration and credential
        errors surface here, before anything touches the network.
        """
        cfg = self.registry.lookup(provider_id)
        if cfg.family is not ProviderFamily.OLLAMA and not (api_key and api_key.strip()):
            raise MissingCredential("API key is required")
        cfg = self.registry.resolve(provider_id, custom_endpoint, custom_model)

        model = resolve_model(cfg, model_version, custom_model)
        body = format_request(
            cfg.family,
            history,
            system_prompt or default_system_prompt(topic),
            model,
            stream,
        )
        headers, warning = build_headers(cfg.family, (api_key or "").strip(), custom_headers)
        if warning:
            logger.warning("Using fallback headers for '%s': %s", cfg.id, warning)

        return PreparedRequest(
            endpoint=cfg.endpoint_url,
            body=body,
            headers=headers,
            family=cfg.family,
            model=model,
        )

    def send_message(
        self,
        history: Iterable[Dict[str, Any]],
        provider_id: str,
        api_key: Optional[str],
        system_prompt: Optional[str] = None,
        model_version: Optional[str] = None,
        custom_model: Optional[str] = None,
        custom_endpoint: Optional[str] = None,
        custom_headers: Optional[str] = None,
        topic: Optional[str] = None,
        on_chunk: Optional[ChunkCallback] = None,
        *,
        stream: bool = False,
        cancel: Optional[CancelToken] = None,
    ) -> str:
        request = self.prepare(
            history,
            provider_id,
            api_key,
            system_prompt,
            model_version,
            custom_model,
            custom_endpoint,
            custom_headers,
            topic,
            stream=stream,
        )
        return self.dispatch(request, stream=stream, on_chunk=on_chunk, cancel=cancel)

    def dispatch(
        self,
        request: PreparedRequest,
        *,
        stream: bool = False,
        on_chunk: Optional[ChunkCallback] = None,
        cancel: Optional[CancelToken] = None,
    ) -> str:
        logger.debug("Sending %s request to %s (model=%s, stream=%s)",
                     request.family.value, request.endpoint, request.model, stream)
        return self.transport.send(request, stream=stream, on_delta=on_chunk, cancel=cancel)

    def validate_api_key(self, provider_id: str, api_key: Optional[str]) -> bool:
        """Cheap format check on a key; says nothing about whether the provider accepts it."""
        cfg = self.registry.lookup(provider_id)
        return key_looks_valid(cfg, api_key)

    def test_connection(
        self,
        provider_id: str,
        api_key: Optional[str],
        custom_model: Optional[str] = None,
        custom_endpoint: Optional[str] = None,
        custom_headers: Optional[str] = None,
    ) -> bool:
        if not self.validate_api_key(provider_id, api_key):
            raise ConnectionTestError("Invalid API key format")
        try:
            request = self.prepare(
                [{"role": "user", "content": TEST_PROMPT}],
                provider_id,
                api_key,
                custom_model=custom_model,
                custom_endpoint=custom_endpoint,
                custom_headers=custom_headers,
            )
            body = self.transport.post_json(request)
        except ChatError as e:
            logger.error("API connection test failed: %s", e)
            raise ConnectionTestError(f"Connection test failed: {e}") from e
        return bool(body)


def key_looks_valid(cfg: ProviderConfig, api_key: Optional[str]) -> bool:
    if cfg.family is ProviderFamily.OLLAMA:
        return True
    if not api_key or not api_key.strip():
        return False
    if cfg.family is ProviderFamily.CUSTOM:
        return True
    if cfg.family is ProviderFamily.ANTHROPIC:
        return api_key.startswith("sk-ant")
    if cfg.family is ProviderFamily.OPENAI:
        return api_key.startswith("sk-")
    if cfg.family is ProviderFamily.GEMINI:
        return len(api_key) > 20 and bool(_GEMINI_KEY.match(api_key))
    return len(api_key) > 20


def provider_labels(registry: ProviderRegistry) -> List[Dict[str, str]]:
    return [{"value": cfg.id, "label": cfg.label or cfg.id} for cfg in registry]
