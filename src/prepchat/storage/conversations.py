from __future__ import annotations
import logging
import threading
import time
from typing import Dict, List, Optional

from prepchat.core.errors import ConversationBusy
from prepchat.core.models import (
    DEFAULT_TITLE,
    TITLE_LIMIT,
    ChatMessage,
    Conversation,
    Role,
    StreamingSession,
    utc_now,
)
from prepchat.core.ports import KeyValueStorage

logger = logging.getLogger(__name__)

CONVERSATIONS_KEY = "chat_conversations"
DEFAULT_ID = "default"


def derive_title(content: str) -> str:
    content = content.strip()
    return content[:TITLE_LIMIT] + "..." if len(content) > TITLE_LIMIT else content


class ConversationStore:
    """
    Owns every conversation and which one is active.
    - The collection is never empty; deleting the last one creates a fresh default.
    - Persists through a KeyValueStorage after each change (not per stream delta).
    - Streaming replies go through a StreamingSession; the conversation only ever
      sees committed snapshots of the assistant message.
    """

    def __init__(self, storage: KeyValueStorage, active_id: Optional[str] = None, key: str = CONVERSATIONS_KEY):
        self._storage = storage
        self._key = key
        self._lock = threading.RLock()
        self._streams: Dict[str, StreamingSession] = {}
        self._conversations: List[Conversation] = self._load()
        self._active_id = self._conversations[0].id
        if active_id and self._find(active_id) is not None:
            self._active_id = active_id

    # ----- persistence -----

    def _load(self) -> List[Conversation]:
        raw = self._storage.load(self._key)
        convs: List[Conversation] = []
        if isinstance(raw, list):
            for item in raw:
                try:
                    convs.append(Conversation.from_dict(item))
                except (KeyError, TypeError) as e:
                    logger.warning("Skipping unreadable conversation record: %s", e)
        return convs or [Conversation(id=DEFAULT_ID)]

    def save(self) -> None:
        with self._lock:
            data = [c.to_dict() for c in self._conversations]
        self._storage.save(self._key, data)

    # ----- lookup -----

    def _find(self, conversation_id: str) -> Optional[Conversation]:
        return next((c for c in self._conversations if c.id == conversation_id), None)

    def get(self, conversation_id: Optional[str] = None) -> Conversation:
        conv = self._find(conversation_id or self._active_id)
        if conv is None:
            raise KeyError(f"Unknown conversation '{conversation_id}'")
        return conv

    @property
    def active_id(self) -> str:
        return self._active_id

    @property
    def active(self) -> Conversation:
        return self._find(self._active_id) or self._conversations[0]

    @property
    def conversations(self) -> List[Conversation]:
        return list(self._conversations)

    def sorted_conversations(self) -> List[Conversation]:
        """Newest first by last-modified time."""
        return sorted(self._conversations, key=lambda c: c.timestamp, reverse=True)

    def messages(self, conversation_id: Optional[str] = None) -> List[ChatMessage]:
        return list(self.get(conversation_id).messages)

    def chat_history(self, conversation_id: Optional[str] = None) -> List[Dict[str, str]]:
        """Provider-ready history: user and assistant turns only."""
        return [
            {"role": m.role, "content": m.content}
            for m in self.get(conversation_id).messages
            if m.role in ("user", "assistant")
        ]

    # ----- conversation lifecycle -----

    def _new_id(self) -> str:
        base = f"conv-{int(time.time() * 1000)}"
        cid, n = base, 1
        while self._find(cid) is not None:
            n += 1
            cid = f"{base}-{n}"
        return cid

    def create_conversation(self) -> str:
        with self._lock:
            conv = Conversation(id=self._new_id())
            self._conversations.append(conv)
            self._active_id = conv.id
        self.save()
        return conv.id

    def switch_conversation(self, conversation_id: str) -> bool:
        with self._lock:
            if self._find(conversation_id) is None:
                return False
            self._active_id = conversation_id
        return True

    def delete_conversation(self, conversation_id: str) -> bool:
        with self._lock:
            conv = self._find(conversation_id)
            if conv is None:
                return False
            self._conversations.remove(conv)
            self._streams.pop(conversation_id, None)
            if not self._conversations:
                self._conversations.append(Conversation(id=self._new_id()))
                self._active_id = self._conversations[0].id
            elif self._active_id == conversation_id:
                self._active_id = self._conversations[0].id
        self.save()
        return True

    def update_title(self, conversation_id: str, title: str) -> None:
        with self._lock:
            self.get(conversation_id).title = title
        self.save()

    def clear_active(self) -> None:
        with self._lock:
            conv = self.active
            conv.messages = []
            conv.title = DEFAULT_TITLE
            conv.timestamp = utc_now()
        self.save()

    def clear_all(self) -> None:
        with self._lock:
            self._streams.clear()
            self._conversations = [Conversation(id=DEFAULT_ID)]
            self._active_id = DEFAULT_ID
        self.save()

    # ----- messages -----

    def add_message(self, role: Role, content: str, conversation_id: Optional[str] = None) -> ChatMessage:
        with self._lock:
            conv = self.get(conversation_id)
            msg = ChatMessage(role=role, content=content)
            conv.messages.append(msg)
            conv.timestamp = msg.timestamp
            if role == "user" and conv.title == DEFAULT_TITLE:
                conv.title = derive_title(content)
        self.save()
        return msg

    def _replace(self, conv: Conversation, message_id: str, content: Optional[str]) -> Optional[ChatMessage]:
        for i, m in enumerate(conv.messages):
            if m.id == message_id:
                if content is None:
                    del conv.messages[i]
                    return None
                conv.messages[i] = m.with_content(content)
                return conv.messages[i]
        return None

    # ----- streaming -----

    def begin_stream(self, conversation_id: Optional[str] = None) -> StreamingSession:
        with self._lock:
            conv = self.get(conversation_id)
            if conv.id in self._streams:
                raise ConversationBusy(f"Conversation '{conv.id}' is already streaming a reply")
            placeholder = ChatMessage(role="assistant", content="")
            conv.messages.append(placeholder)
            conv.timestamp = placeholder.timestamp
            session = StreamingSession(conversation_id=conv.id, message_id=placeholder.id)
            self._streams[conv.id] = session
        self.save()
        return session

    def streaming(self, conversation_id: Optional[str] = None) -> Optional[StreamingSession]:
        return self._streams.get(conversation_id or self._active_id)

    def append_stream(self, session: StreamingSession, delta: str) -> None:
        if not delta:
            return
        with self._lock:
            session.text += delta
            conv = self._find(session.conversation_id)
            if conv is not None:
                self._replace(conv, session.message_id, session.text)

    def finalize_stream(
        self,
        session: StreamingSession,
        full_text: Optional[str] = None,
        *,
        drop_if_empty: bool = False,
    ) -> Optional[ChatMessage]:
        """
        Commit the reply and end the session. full_text, when given, replaces
        whatever was accumulated. An empty reply can be dropped from view.
        """
        with self._lock:
            text = session.text if full_text is None else full_text
            session.text = text
            self._streams.pop(session.conversation_id, None)
            conv = self._find(session.conversation_id)
            msg = None
            if conv is not None:
                keep = text if (text or not drop_if_empty) else None
                msg = self._replace(conv, session.message_id, keep)
                conv.timestamp = utc_now()
        self.save()
        return msg
