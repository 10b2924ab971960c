from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from chat_sync.domain.value_objects.ids import ConversationId, UserId


@dataclass(frozen=True, slots=True)
class TypingState:
    conversation_id: ConversationId
    user_id: UserId
    expires_at: datetime
