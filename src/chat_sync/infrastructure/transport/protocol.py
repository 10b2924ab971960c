"""Channel envelope and event payload models."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from chat_sync.infrastructure.rest.schemas import WireModel


class Envelope(BaseModel):
    """One frame in either direction."""

    type: str  # join_room | typing_start | new_message | messages_read | ...
    data: dict[str, Any] = {}


def encode_frame(event: str, payload: dict[str, Any]) -> str:
    return Envelope(type=event, data=payload).model_dump_json()


def decode_frame(raw: str | bytes) -> tuple[str, dict[str, Any]]:
    """Raises ValueError on malformed input."""
    envelope = Envelope.model_validate_json(raw)
    return envelope.type, envelope.data


class JoinRoom(WireModel):
    user_id: str


class ConversationRef(WireModel):
    conversation_id: str


class TypingSignal(WireModel):
    conversation_id: str
    user_id: str


class UserTyping(WireModel):
    user_id: str
    conversation_id: str | None = None


class UserStoppedTyping(WireModel):
    user_id: str | None = None
    conversation_id: str | None = None


class MessagesRead(WireModel):
    conversation_id: str
    read_by: str | None = None


def dump(model: WireModel) -> dict[str, Any]:
    return model.model_dump(by_alias=True, exclude_none=True)
