from __future__ import annotations
import logging
from typing import Dict, List, Optional

from prepchat.core.errors import ChatError, StreamCancelled
from prepchat.core.models import Settings
from prepchat.core.ports import ChunkCallback, KeyValueStorage
from prepchat.service import ChatService
from prepchat.storage.conversations import ConversationStore
from prepchat.transport.http import CancelToken

logger = logging.getLogger(__name__)

SETTINGS_KEY = "chat_settings"


class ChatSession:
    """
    Conversation state manager: records the user's turn, calls the service and
    writes the reply (streamed or buffered) back into the active conversation.

    Callers must not run two send_message calls on the same conversation at once;
    the store refuses a second stream with ConversationBusy.
    """

    def __init__(
        self,
        service: ChatService,
        store: ConversationStore,
        settings: Optional[Settings] = None,
        settings_storage: Optional[KeyValueStorage] = None,
    ):
        self.service = service
        self.store = store
        self.settings = settings or Settings()
        self._settings_storage = settings_storage
        self.context = ""
        self.is_sending = False
        self.error: Optional[str] = None

    @classmethod
    def load(cls, service: ChatService, storage: KeyValueStorage) -> "ChatSession":
        """Restore settings and conversations; an empty storage is a first run."""
        settings = Settings.from_dict(storage.load(SETTINGS_KEY))
        store = ConversationStore(storage, active_id=settings.active_conversation_id)
        return cls(service, store, settings=settings, settings_storage=storage)

    # ----- settings -----

    def save_settings(self) -> None:
        self.settings.active_conversation_id = self.store.active_id
        if self._settings_storage is not None:
            self._settings_storage.save(SETTINGS_KEY, self.settings.to_dict())

    def update_settings(self, **changes) -> None:
        for name, value in changes.items():
            if not hasattr(self.settings, name):
                raise AttributeError(f"Unknown setting '{name}'")
            setattr(self.settings, name, value)
        self.save_settings()

    def accept_terms(self) -> None:
        self.update_settings(terms_accepted=True)

    def delete_api_key(self) -> None:
        """Forget the key and every provider override."""
        self.update_settings(
            api_key="",
            custom_model="",
            custom_endpoint="",
            custom_headers="",
            version="",
            system_prompt="",
        )

    def set_context(self, context: str) -> None:
        self.context = context or ""

    # ----- conversations -----

    def new_conversation(self) -> str:
        cid = self.store.create_conversation()
        self.save_settings()
        return cid

    def switch_conversation(self, conversation_id: str) -> bool:
        ok = self.store.switch_conversation(conversation_id)
        if ok:
            self.save_settings()
        return ok

    def delete_conversation(self, conversation_id: str) -> bool:
        ok = self.store.delete_conversation(conversation_id)
        self.save_settings()
        return ok

    def clear_all(self) -> None:
        self.store.clear_all()
        self.save_settings()

    # ----- turns -----

    def _outgoing_messages(self, conversation_id: str) -> List[Dict[str, str]]:
        history = self.store.chat_history(conversation_id)
        # lesson context rides along for the opening exchange only
        if self.context and len(self.store.messages(conversation_id)) <= 2:
            history.insert(0, {
                "role": "system",
                "content": f"Current context: {self.context}\n\nPlease use this context to answer questions accurately.",
            })
        return history

    def send_message(
        self,
        content: str,
        topic: Optional[str] = None,
        on_chunk: Optional[ChunkCallback] = None,
        cancel: Optional[CancelToken] = None,
        conversation_id: Optional[str] = None,
    ) -> Optional[str]:
        """
        Run one turn. Returns the assistant text (partial text if cancelled),
        or None for blank input. Failures are written to the conversation as an
        "Error: ..." system message and re-raised.
        """
        if not content or not content.strip():
            return None

        cid = conversation_id or self.store.active_id
        self.store.add_message("user", content, cid)
        s = self.settings
        stream = bool(s.use_streaming)

        self.is_sending = True
        self.error = None
        session = None
        try:
            request = self.service.prepare(
                self._outgoing_messages(cid),
                s.provider,
                s.api_key,
                system_prompt=s.system_prompt or None,
                model_version=s.version or None,
                custom_model=s.custom_model or None,
                custom_endpoint=s.custom_endpoint or None,
                custom_headers=s.custom_headers or None,
                topic=topic,
                stream=stream,
            )

            if not stream:
                reply = self.service.dispatch(request, stream=False)
                self.store.add_message("assistant", reply, cid)
                return reply

            session = self.store.begin_stream(cid)

            def on_delta(delta: str) -> None:
                self.store.append_stream(session, delta)
                if on_chunk is not None:
                    on_chunk(delta)

            reply = self.service.dispatch(request, stream=True, on_chunk=on_delta, cancel=cancel)
            # transport text is authoritative (it may come from a buffered retry)
            self.store.finalize_stream(session, full_text=reply)
            return reply

        except StreamCancelled:
            logger.info("Stream cancelled in conversation %s", cid)
            partial = session.text if session is not None else ""
            if session is not None:
                self.store.finalize_stream(session, drop_if_empty=True)
            return partial

        except ChatError as e:
            logger.error("Failed to send message: %s", e)
            if session is not None:
                self.store.finalize_stream(session, full_text="", drop_if_empty=True)
            self.error = str(e) or "Failed to get response"
            self.store.add_message("system", f"Error: {self.error}", cid)
            raise

        except Exception:
            # caller callbacks can fail too; the conversation must not stay busy
            logger.exception("Unexpected failure while streaming into %s", cid)
            if session is not None:
                self.store.finalize_stream(session, drop_if_empty=True)
            raise

        finally:
            self.is_sending = False
