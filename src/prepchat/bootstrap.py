from __future__ import annotations
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import httpx
from dotenv import load_dotenv

from .config_loader import ConfigError, load_config
from .core.chat_session import SETTINGS_KEY, ChatSession
from .core.errors import UnsupportedProvider
from .providers.registry import ProviderRegistry, default_registry
from .secrets.sources import SecretsResolver
from .service import ChatService
from .storage.kv import JsonFileStorage, MemoryStorage
from .transport.http import DEFAULT_PROXY_URL, ChatTransport, TransportMode

logger = logging.getLogger(__name__)


def build_transport(cfg: Dict[str, Any], client: Optional[httpx.Client] = None) -> ChatTransport:
    tcfg = cfg["transport"]
    return ChatTransport(
        TransportMode(tcfg["mode"]),
        tcfg.get("proxy_url") or DEFAULT_PROXY_URL,
        client=client,
        timeout=tcfg.get("timeout"),
    )


def build_app(
    config_path: Path,
    repo_root: Optional[Path] = None,
    *,
    registry: Optional[ProviderRegistry] = None,
    client: Optional[httpx.Client] = None,
) -> Dict[str, Any]:
    """
    Composition root: load YAML, build registry + transport + service, and
    restore the chat session from storage.
    Returns: dict with cfg, paths, registry, transport, service, session, topic.
    """
    load_dotenv()
    cfg = load_config(config_path)
    config_dir = config_path.resolve().parent
    repo_root = repo_root or Path(__file__).resolve().parents[2]

    # ----- Providers -----
    registry = registry or default_registry()
    chat_cfg = cfg["chat"]
    try:
        provider_cfg = registry.lookup(chat_cfg["provider"])
    except UnsupportedProvider as e:
        raise ConfigError(str(e)) from e

    # ----- Transport + service -----
    transport = build_transport(cfg, client=client)
    service = ChatService(registry, transport)

    # ----- Storage -----
    backend = cfg["storage"]["backend"]
    sdir_path = Path(cfg["storage"]["dir"])
    sessions_dir = (repo_root / sdir_path).resolve() if not sdir_path.is_absolute() else sdir_path
    storage = JsonFileStorage(sessions_dir) if backend == "file" else MemoryStorage()

    # ----- Session -----
    first_run = storage.load(SETTINGS_KEY) is None
    session = ChatSession.load(service, storage)
    settings = session.settings
    if first_run:
        # config only seeds settings; afterwards the saved settings win
        settings.provider = provider_cfg.id
        settings.use_streaming = bool(chat_cfg["stream"])
        settings.system_prompt = chat_cfg.get("system_prompt") or ""
        settings.custom_endpoint = chat_cfg.get("custom_endpoint") or ""
        settings.custom_model = chat_cfg.get("custom_model") or ""
        settings.version = chat_cfg.get("version") or ""
    elif settings.provider not in registry:
        logger.warning("Saved provider '%s' is unknown; using '%s'", settings.provider, provider_cfg.id)
        settings.provider = provider_cfg.id

    # ----- Secrets -----
    if not settings.has_api_key:
        secrets_cfg = cfg.get("secrets") or {}
        resolver = SecretsResolver(method=secrets_cfg.get("method", "env"), mapping=secrets_cfg.get("mapping"))
        current = registry.lookup(settings.provider)
        key = resolver.api_key(current.id, current.family)
        if key:
            settings.api_key = key
        else:
            logger.debug("No API key found for provider '%s'", current.id)

    return {
        "cfg": cfg,
        "paths": {"config_dir": config_dir, "repo_root": repo_root, "sessions_dir": sessions_dir},
        "registry": registry,
        "transport": transport,
        "service": service,
        "store": session.store,
        "session": session,
        "settings": settings,
        "topic": chat_cfg.get("topic"),
    }
