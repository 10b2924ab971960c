from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from chat_sync.domain.value_objects.ids import ConversationId, UserId


@dataclass(frozen=True, slots=True)
class Counterpart:
    """Display details of the other party, as the server describes them."""

    id: UserId
    first_name: str | None = None
    last_name: str | None = None
    avatar: str | None = None
    business_name: str | None = None

    @property
    def display_name(self) -> str:
        if self.business_name:
            return self.business_name
        full = " ".join(p for p in (self.first_name, self.last_name) if p)
        return full or self.id


@dataclass(frozen=True, slots=True)
class Conversation:
    id: ConversationId
    participant_a: UserId
    participant_b: UserId
    last_message_preview: str | None
    last_message_at: datetime | None
    unread_count: int = 0
    counterpart: Counterpart | None = None

    @property
    def participants(self) -> tuple[UserId, UserId]:
        return self.participant_a, self.participant_b

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.participant_a, self.participant_b)

    def other_party(self, user_id: str) -> UserId:
        if user_id == self.participant_a:
            return self.participant_b
        if user_id == self.participant_b:
            return self.participant_a
        raise ValueError(f"{user_id} is not a participant of conversation {self.id}")
