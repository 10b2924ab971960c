from __future__ import annotations

from typing import Protocol

from chat_sync.application.dto.message import MessagePage
from chat_sync.domain.entities.conversation import Conversation
from chat_sync.domain.entities.message import Message


class ChatApi(Protocol):
    """REST collaborator that owns persistence."""

    async def list_conversations(self, *, limit: int = 20) -> list[Conversation]: ...

    async def list_messages(
        self,
        conversation_id: str,
        *,
        cursor: str | None = None,
        limit: int = 50,
    ) -> MessagePage:
        """Return one page, oldest-first within the page."""
        ...

    async def send_message(
        self,
        conversation_id: str,
        content: str,
        attachments: tuple[str, ...] = (),
    ) -> Message:
        """Persist a message and return it with the server id and timestamp."""
        ...

    async def mark_read(self, conversation_id: str) -> None: ...

    async def aclose(self) -> None: ...
