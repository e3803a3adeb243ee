"""In-memory origin context for sessions that spawn sub-agents."""

from __future__ import annotations

import re
from dataclasses import dataclass

from .template import extract_topic_id


_CHAT_RE = re.compile(r"((?:group|private|channel):[^:]+)")
_PRIVATE_RE = re.compile(r":private:(\d+)")


@dataclass(frozen=True)
class OriginContext:
    parent_session_id: str
    topic_id: str | int | None = None
    chat_id: str | None = None
    sender: str | None = None

    def tag(self) -> str:
        parts: list[str] = []
        if self.topic_id is not None:
            parts.append(f"topic={self.topic_id}")
        if self.chat_id:
            parts.append(f"chat={self.chat_id}")
        if self.sender:
            parts.append(f"sender={self.sender}")
        parts.append(f"parent={self.parent_session_id}")
        return f"[origin: {', '.join(parts)}]"


def origin_from_session(session_id: str, topic_id: str | int | None = None, sender: str | None = None) -> OriginContext:
    chat = _CHAT_RE.search(session_id)
    if sender is None:
        private = _PRIVATE_RE.search(session_id)
        sender = private.group(1) if private else None
    return OriginContext(
        parent_session_id=session_id,
        topic_id=topic_id if topic_id is not None else extract_topic_id(session_id),
        chat_id=chat.group(1) if chat else None,
        sender=sender,
    )


class OriginContextStore:
    def __init__(self) -> None:
        self._contexts: dict[str, OriginContext] = {}

    def set(self, session_id: str, origin: OriginContext) -> None:
        self._contexts[session_id] = origin

    def get(self, session_id: str) -> OriginContext | None:
        return self._contexts.get(session_id)

    def clear(self, session_id: str) -> None:
        self._contexts.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._contexts)
