from __future__ import annotations
import datetime as dt
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4

Role = Literal["system", "user", "assistant"]

DEFAULT_TITLE = "New Conversation"
TITLE_LIMIT = 30


def utc_now() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


class ProviderFamily(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    MISTRAL = "mistral"
    OLLAMA = "ollama"
    GENERIC = "generic"
    CUSTOM = "custom"


@dataclass(frozen=True)
class ProviderConfig:
    id: str
    endpoint_url: str
    model_id: str
    family: ProviderFamily
    label: str = ""


@dataclass(frozen=True)
class ChatMessage:
    role: Role
    content: str
    id: str = field(default_factory=lambda: uuid4().hex)
    timestamp: str = field(default_factory=utc_now)

    def with_content(self, content: str) -> "ChatMessage":
        return replace(self, content=content)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "role": self.role, "content": self.content, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
        return cls(
            role=data.get("role", "user"),
            content=data.get("content", "") or "",
            id=data.get("id") or uuid4().hex,
            timestamp=data.get("timestamp") or utc_now(),
        )


@dataclass
class Conversation:
    id: str
    title: str = DEFAULT_TITLE
    messages: List[ChatMessage] = field(default_factory=list)
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "messages": [m.to_dict() for m in self.messages],
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Conversation":
        return cls(
            id=str(data["id"]),
            title=data.get("title") or DEFAULT_TITLE,
            messages=[ChatMessage.from_dict(m) for m in data.get("messages") or []],
            timestamp=data.get("timestamp") or utc_now(),
        )


@dataclass
class StreamingSession:
    """In-progress assistant reply. Owns the text until it is committed."""
    conversation_id: str
    message_id: str
    text: str = ""


@dataclass
class Settings:
    provider: str = "gpt-3.5-turbo"
    api_key: str = ""
    version: str = ""
    custom_model: str = ""
    custom_endpoint: str = ""
    custom_headers: str = ""
    system_prompt: str = ""
    use_streaming: bool = False
    terms_accepted: bool = False
    active_conversation_id: Optional[str] = None

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "apiKey": self.api_key,
            "version": self.version,
            "customModel": self.custom_model,
            "customEndpoint": self.custom_endpoint,
            "customHeaders": self.custom_headers,
            "systemPrompt": self.system_prompt,
            "useStreaming": self.use_streaming,
            "termsAccepted": self.terms_accepted,
            "activeConversationId": self.active_conversation_id,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Settings":
        data = data or {}
        return cls(
            provider=data.get("provider") or "gpt-3.5-turbo",
            api_key=data.get("apiKey") or "",
            version=data.get("version") or "",
            custom_model=data.get("customModel") or "",
            custom_endpoint=data.get("customEndpoint") or "",
            custom_headers=data.get("customHeaders") or "",
            system_prompt=data.get("systemPrompt") or "",
            use_streaming=bool(data.get("useStreaming", False)),
            terms_accepted=bool(data.get("termsAccepted", False)),
            active_conversation_id=data.get("activeConversationId"),
        )
