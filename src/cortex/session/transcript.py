"""The session transcript.

Messages are appended in order.  A streamed answer owns one message slot,
created up front with ``is_processing=True``; fragments are appended to
that slot by id (never to "whatever is last"), and the flag is cleared
only when the stream ends.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

log = logging.getLogger(__name__)

USER = "user"
AGENT = "agent"
SYSTEM = "system"


@dataclass
class ChatMessage:
    """One transcript entry.

    ``type`` is ``"standard"`` for hosted replies and otherwise mirrors the
    pipeline's outcome kinds (``local``, ``native_inference``, ``cognition``,
    ``error``) or ``"system"``.
    """

    sender: str
    text: str
    type: str = "standard"
    is_processing: bool = False
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Transcript:
    def __init__(self, max_messages: int | None = None) -> None:
        self._messages: list[ChatMessage] = []
        self._max_messages = max_messages

    def add(self, sender: str, text: str, type: str = "standard", is_processing: bool = False) -> ChatMessage:
        msg = ChatMessage(sender=sender, text=text, type=type, is_processing=is_processing)
        self._messages.append(msg)
        if self._max_messages and len(self._messages) > self._max_messages:
            self._messages = self._messages[-self._max_messages:]
        return msg

    def system(self, text: str, type: str = "system") -> ChatMessage:
        return self.add(SYSTEM, text, type=type)

    def get(self, message_id: str) -> ChatMessage | None:
        return next((m for m in self._messages if m.id == message_id), None)

    def update(self, message_id: str, **changes: Any) -> ChatMessage | None:
        msg = self.get(message_id)
        if msg is None:
            log.debug("Update for unknown message %s ignored.", message_id)
            return None
        for key, value in changes.items():
            setattr(msg, key, value)
        return msg

    def append_to(self, message_id: str, chunk: str) -> None:
        msg = self.get(message_id)
        if msg is None or msg.sender != AGENT:
            return
        msg.text += chunk

    def history(self, limit: int | None = None, exclude: str | None = None) -> list[ChatMessage]:
        """Recent messages, optionally without the slot *exclude*."""
        msgs = [m for m in self._messages if m.id != exclude]
        return msgs[-limit:] if limit else msgs

    def reset(self, first: ChatMessage | None = None) -> None:
        self._messages = [first] if first else []

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    @property
    def message_count(self) -> int:
        return len(self._messages)

    def __len__(self) -> int:
        return len(self._messages)
