from __future__ import annotations

from dataclasses import dataclass

from chat_sync.domain.entities.message import Message


@dataclass(frozen=True, slots=True)
class MessagePage:
    messages: tuple[Message, ...]
    next_cursor: str | None = None

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None
