from __future__ import annotations

import logging
from collections import deque
from dataclasses import replace
from datetime import datetime, timezone

from chat_sync.config import settings
from chat_sync.domain.entities.conversation import Conversation
from chat_sync.domain.entities.message import Message
from chat_sync.services._observable import Observable
from chat_sync.services.history_loader import RestFallbackLoader

logger = logging.getLogger(__name__)

_NEVER = datetime.min.replace(tzinfo=timezone.utc)

ATTACHMENT_PREVIEW = "Attachment"


def _recency(conversation: Conversation) -> datetime:
    return conversation.last_message_at or _NEVER


def preview_of(message: Message) -> str:
    return message.content or ATTACHMENT_PREVIEW


class ConversationListStore(Observable):
    """Ordered conversation summaries with previews and unread counters."""

    def __init__(
        self,
        loader: RestFallbackLoader,
        local_user_id: str,
        *,
        dedup_window: int = settings.DEDUP_WINDOW,
    ) -> None:
        super().__init__()
        self._loader = loader
        self._local_user_id = local_user_id
        self._conversations: list[Conversation] = []
        self._dedup_window = dedup_window
        # Newest applied message ids per conversation; older ones fall out.
        self._applied: dict[str, deque[str]] = {}
        self.open_conversation_id: str | None = None

    def snapshot(self) -> tuple[Conversation, ...]:
        return tuple(self._conversations)

    def get(self, conversation_id: str) -> Conversation | None:
        for conversation in self._conversations:
            if conversation.id == conversation_id:
                return conversation
        return None

    @property
    def total_unread(self) -> int:
        return sum(c.unread_count for c in self._conversations)

    async def load_initial(self) -> None:
        conversations = await self._loader.load_conversations()
        self._conversations = sorted(conversations, key=_recency, reverse=True)
        self._applied = {}
        self._notify()

    refresh = load_initial

    def apply_incoming_message(self, message: Message) -> bool:
        """Fold a live message into its conversation summary.

        Messages for unknown conversations are ignored; those conversations
        appear on the next ``load_initial``. Returns whether the list changed.
        """
        index = self._index_of(message.conversation_id)
        if index is None:
            logger.debug("Ignoring message for unknown conversation %s", message.conversation_id)
            return False

        applied = self._applied.get(message.conversation_id)
        if applied is None:
            applied = self._applied[message.conversation_id] = deque(maxlen=self._dedup_window)
        if message.id in applied:
            return False
        applied.append(message.id)

        conversation = self._conversations[index]
        unread = conversation.unread_count
        if (
            message.conversation_id != self.open_conversation_id
            and not message.authored_by(self._local_user_id)
        ):
            unread += 1

        if message.created_at >= _recency(conversation):
            conversation = replace(
                conversation,
                last_message_preview=preview_of(message),
                last_message_at=message.created_at,
            )
        self._conversations[index] = replace(conversation, unread_count=unread)
        self._conversations.sort(key=_recency, reverse=True)
        self._notify()
        return True

    def clear_unread(self, conversation_id: str) -> None:
        index = self._index_of(conversation_id)
        if index is None or self._conversations[index].unread_count == 0:
            return
        self._conversations[index] = replace(self._conversations[index], unread_count=0)
        self._notify()

    def _index_of(self, conversation_id: str) -> int | None:
        for i, conversation in enumerate(self._conversations):
            if conversation.id == conversation_id:
                return i
        return None
