from __future__ import annotations
from typing import Any, Callable, Optional, Protocol

ChunkCallback = Callable[[str], None]


class KeyValueStorage(Protocol):
    """
    Persistence collaborator for settings and conversations.
    load() returns None when nothing was saved yet (first run).
    """

    def load(self, key: str) -> Optional[Any]:
        ...

    def save(self, key: str, value: Any) -> None:
        ...
