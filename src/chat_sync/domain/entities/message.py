from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from chat_sync.domain.value_objects.enums import MessageStatus, MessageType
from chat_sync.domain.value_objects.ids import ConversationId, MessageId, UserId


@dataclass(frozen=True, slots=True)
class Message:
    id: MessageId
    conversation_id: ConversationId
    sender_id: UserId
    content: str
    created_at: datetime
    status: MessageStatus = MessageStatus.SENT
    type: MessageType = MessageType.TEXT
    attachments: tuple[str, ...] = ()
    seen: bool = False  # local-only: the local user has read this remote-authored message

    @property
    def sort_key(self) -> tuple[datetime, str]:
        return self.created_at, self.id

    def authored_by(self, user_id: str) -> bool:
        return self.sender_id == user_id
