from __future__ import annotations

from chat_sync.application.exceptions import ValidationError
from chat_sync.domain.entities.conversation import Conversation


def is_remote_participant(
    conversation: Conversation | None,
    user_id: str,
    local_user_id: str,
) -> bool:
    """True if ``user_id`` is the other party of a known conversation."""
    if conversation is None or user_id == local_user_id:
        return False
    return conversation.has_participant(user_id)


def assert_sendable(content: str, attachments: tuple[str, ...]) -> str:
    """Return normalized content or raise before anything is mutated."""
    content = content.strip()
    if not content and not attachments:
        raise ValidationError("Message content or attachments required")
    return content
