"""Wire schemas shared by the REST client and the live channel."""
from __future__ import annotations

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from chat_sync.domain.value_objects.enums import MessageType


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )


class MessageSchema(WireModel):
    id: str
    conversation_id: str
    sender_id: str
    content: str = ""
    type: MessageType = MessageType.TEXT
    attachments: list[str] = []
    created_at: datetime
    status: str | None = None
    is_read: bool = False


class CounterpartSchema(WireModel):
    id: str
    first_name: str | None = None
    last_name: str | None = None
    avatar: str | None = None
    business_name: str | None = None


class ConversationSchema(WireModel):
    id: str
    participant_a: str = Field(
        validation_alias=AliasChoices("participantA", "participant_a", "customerId"),
    )
    participant_b: str = Field(
        validation_alias=AliasChoices("participantB", "participant_b", "providerId"),
    )
    last_message_preview: str | None = Field(
        default=None,
        validation_alias=AliasChoices("lastMessagePreview", "last_message_preview", "lastMessage"),
    )
    last_message_at: datetime | None = None
    unread_count: int = Field(default=0, ge=0)
    participant: CounterpartSchema | None = None


class MessagePageSchema(WireModel):
    messages: list[MessageSchema] = []
    next_cursor: str | None = None


class SendMessageRequest(WireModel):
    content: str
    attachments: list[str] | None = None
