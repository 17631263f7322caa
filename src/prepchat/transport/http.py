from __future__ import annotations
import codecs
import logging
import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from prepchat.core.errors import ApiError, StreamCancelled, StreamProcessingError
from prepchat.core.models import ProviderFamily
from prepchat.providers.extract import extract_full_text
from prepchat.providers.streaming import LineBuffer, StreamChunkProcessor

logger = logging.getLogger(__name__)

DEFAULT_PROXY_URL = "http://127.0.0.1:8000/api/proxy"
LOCAL_HOSTS = ("localhost", "127.0.0.1")


class TransportMode(str, Enum):
    DIRECT = "direct"
    PROXIED = "proxied"

    @classmethod
    def for_host(cls, hostname: str) -> "TransportMode":
        """Local development talks to providers directly; anything else goes through the proxy."""
        return cls.DIRECT if (hostname or "").lower() in LOCAL_HOSTS else cls.PROXIED


class TransportState(str, Enum):
    IDLE = "idle"
    DISPATCHING = "dispatching"
    STREAMING = "streaming"
    BUFFERED = "buffered"
    COMPLETED = "completed"
    FAILED = "failed"


class CancelToken:
    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise StreamCancelled("Stream cancelled")


@dataclass(frozen=True)
class PreparedRequest:
    endpoint: str
    body: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=dict)
    family: ProviderFamily = ProviderFamily.GENERIC
    model: Optional[str] = None

    def buffered(self) -> "PreparedRequest":
        if "stream" not in self.body:
            return self
        return replace(self, body={**self.body, "stream": False})


def error_message(resp: httpx.Response) -> str:
    """Provider's own error text when the body has one, else the HTTP status text."""
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if data.get("message"):
            return str(data["message"])
        if isinstance(err, str) and err:
            return err
    return resp.reason_phrase or f"HTTP {resp.status_code}"


def remainder(text: str, delivered: str) -> str:
    """Part of text the reader has not seen yet; all of it when the streams disagree."""
    if delivered and text.startswith(delivered):
        return text[len(delivered):]
    return text


class ChatTransport:
    """
    Sends prepared requests either straight to the provider (DIRECT) or wrapped
    in a {target, data, headers, stream} envelope to the proxy (PROXIED).

    state reflects the most recent call.
    """

    def __init__(
        self,
        mode: TransportMode = TransportMode.DIRECT,
        proxy_url: str = DEFAULT_PROXY_URL,
        *,
        client: Optional[httpx.Client] = None,
        timeout: Optional[float] = None,
    ):
        self.mode = TransportMode(mode)
        self.proxy_url = proxy_url
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=timeout)
        self.state = TransportState.IDLE

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> "ChatTransport":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _target(self, request: PreparedRequest, stream: bool) -> Tuple[str, Dict[str, Any], Dict[str, str]]:
        if self.mode is TransportMode.DIRECT:
            return request.endpoint, request.body, request.headers
        envelope = {
            "target": request.endpoint,
            "data": request.body,
            "headers": request.headers,
            "stream": stream,
        }
        return self.proxy_url, envelope, {"Content-Type": "application/json"}

    def send(
        self,
        request: PreparedRequest,
        *,
        stream: bool = False,
        on_delta: Optional[Callable[[str], None]] = None,
        cancel: Optional[CancelToken] = None,
    ) -> str:
        """
        Full response text. In streaming mode deltas also go to on_delta as they
        arrive; after a proxied fallback the buffered answer (minus what was
        already delivered) goes to on_delta as one final delta.
        """
        self.state = TransportState.DISPATCHING
        sent: List[str] = []

        def deliver(delta: str) -> None:
            if not delta:
                return
            sent.append(delta)
            if on_delta is not None:
                on_delta(delta)

        try:
            if not stream:
                text = self._buffered(request)
            else:
                try:
                    text = self._stream(request, deliver, cancel)
                except (ApiError, StreamProcessingError) as e:
                    if self.mode is not TransportMode.PROXIED:
                        raise
                    logger.warning("Proxied stream failed (%s); retrying without streaming", e)
                    text = self._buffered(request.buffered())
                    deliver(remainder(text, "".join(sent)))
        except Exception:
            self.state = TransportState.FAILED
            raise
        self.state = TransportState.COMPLETED
        return text

    def post_json(self, request: PreparedRequest) -> Any:
        """Buffered call returning the decoded body (or raw text when it is not JSON)."""
        url, payload, headers = self._target(request, stream=False)
        try:
            resp = self.client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise ApiError(f"Request to {request.endpoint} failed: {e}") from e
        if not resp.is_success:
            msg = error_message(resp)
            logger.error("API error %s from %s: %s", resp.status_code, request.endpoint, msg)
            raise ApiError(msg, resp.status_code)
        try:
            return resp.json()
        except ValueError:
            return resp.text

    def _buffered(self, request: PreparedRequest) -> str:
        self.state = TransportState.BUFFERED
        return extract_full_text(request.family, self.post_json(request))

    def _stream(
        self,
        request: PreparedRequest,
        on_delta: Optional[Callable[[str], None]],
        cancel: Optional[CancelToken],
    ) -> str:
        url, payload, headers = self._target(request, stream=True)
        processor = StreamChunkProcessor(request.family, request.model)
        lines = LineBuffer()
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        full: List[str] = []

        def emit(delta: str) -> None:
            if delta:
                full.append(delta)
                if on_delta is not None:
                    on_delta(delta)

        try:
            with self.client.stream("POST", url, json=payload, headers=headers) as resp:
                if not resp.is_success:
                    resp.read()
                    msg = error_message(resp)
                    logger.error("API error %s from %s: %s", resp.status_code, request.endpoint, msg)
                    raise ApiError(msg, resp.status_code)

                self.state = TransportState.STREAMING
                try:
                    for raw in resp.iter_bytes():
                        if cancel is not None:
                            cancel.raise_if_cancelled()
                        ready = lines.feed(decoder.decode(raw))
                        if ready:
                            emit(processor.process(ready))
                    tail = lines.feed(decoder.decode(b"", final=True)) + lines.flush()
                    if tail:
                        emit(processor.process(tail))
                    emit(processor.flush())
                except httpx.HTTPError as e:
                    raise StreamProcessingError(f"Stream from {request.endpoint} broke: {e}") from e
        except httpx.HTTPError as e:
            raise ApiError(f"Request to {request.endpoint} failed: {e}") from e

        return "".join(full)
