from __future__ import annotations

from datetime import datetime, timezone

from chat_sync.application.dto.message import MessagePage
from chat_sync.domain.entities.conversation import Conversation, Counterpart
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import MessageStatus
from chat_sync.domain.value_objects.ids import ConversationId, MessageId, UserId
from chat_sync.infrastructure.rest.schemas import (
    ConversationSchema,
    MessagePageSchema,
    MessageSchema,
)


def _aware(ts: datetime | None) -> datetime | None:
    if ts is not None and ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def message_to_entity(schema: MessageSchema, local_user_id: str) -> Message:
    """Map a server message to the local view of it.

    Own messages carry the server's delivery status (SENT or READ). Messages
    from the other party always arrive as SENT; the server's read flag only
    says whether the local user has already seen them.
    """
    read = schema.is_read or schema.status == MessageStatus.READ
    own = schema.sender_id == local_user_id
    return Message(
        id=MessageId(schema.id),
        conversation_id=ConversationId(schema.conversation_id),
        sender_id=UserId(schema.sender_id),
        content=schema.content,
        created_at=_aware(schema.created_at),
        status=MessageStatus.READ if own and read else MessageStatus.SENT,
        type=schema.type,
        attachments=tuple(schema.attachments),
        seen=read and not own,
    )


def page_to_dto(schema: MessagePageSchema, local_user_id: str) -> MessagePage:
    return MessagePage(
        messages=tuple(message_to_entity(m, local_user_id) for m in schema.messages),
        next_cursor=schema.next_cursor,
    )


def conversation_to_entity(schema: ConversationSchema) -> Conversation:
    counterpart = None
    if schema.participant is not None:
        p = schema.participant
        counterpart = Counterpart(
            id=UserId(p.id),
            first_name=p.first_name,
            last_name=p.last_name,
            avatar=p.avatar,
            business_name=p.business_name,
        )
    return Conversation(
        id=ConversationId(schema.id),
        participant_a=UserId(schema.participant_a),
        participant_b=UserId(schema.participant_b),
        last_message_preview=schema.last_message_preview,
        last_message_at=_aware(schema.last_message_at),
        unread_count=schema.unread_count,
        counterpart=counterpart,
    )
