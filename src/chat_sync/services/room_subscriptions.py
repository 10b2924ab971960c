from __future__ import annotations

import logging

from chat_sync.application.ports.transport import Transport
from chat_sync.domain.value_objects.enums import ClientEvent
from chat_sync.infrastructure.transport.protocol import ConversationRef, JoinRoom, dump

logger = logging.getLogger(__name__)


def personal_room(user_id: str) -> str:
    return f"user_{user_id}"


def conversation_room(conversation_id: str) -> str:
    return f"conversation_{conversation_id}"


class RoomSubscriptionManager:
    """Keeps channel room membership equal to the desired set.

    The desired set is the user's personal room plus the open conversation's
    room. Joins and leaves are best-effort; the server does not keep
    membership across reconnects, so every fresh connection re-joins.
    """

    def __init__(self, transport: Transport, user_id: str) -> None:
        self._transport = transport
        self._user_id = user_id
        self._open_conversation_id: str | None = None

    @property
    def open_conversation_id(self) -> str | None:
        return self._open_conversation_id

    @property
    def desired_rooms(self) -> frozenset[str]:
        rooms = {personal_room(self._user_id)}
        if self._open_conversation_id is not None:
            rooms.add(conversation_room(self._open_conversation_id))
        return frozenset(rooms)

    def set_open_conversation(self, conversation_id: str | None) -> None:
        previous = self._open_conversation_id
        if previous == conversation_id:
            return
        self._open_conversation_id = conversation_id
        if not self._transport.is_connected:
            logger.debug("Open conversation -> %s (offline, will join on connect)", conversation_id)
            return
        if previous is not None:
            self._transport.send(
                ClientEvent.LEAVE_CONVERSATION, dump(ConversationRef(conversation_id=previous)),
            )
        if conversation_id is not None:
            self._transport.send(
                ClientEvent.JOIN_CONVERSATION, dump(ConversationRef(conversation_id=conversation_id)),
            )

    async def on_transport_connected(self) -> None:
        self._transport.send(ClientEvent.JOIN_ROOM, dump(JoinRoom(user_id=self._user_id)))
        if self._open_conversation_id is not None:
            self._transport.send(
                ClientEvent.JOIN_CONVERSATION,
                dump(ConversationRef(conversation_id=self._open_conversation_id)),
            )
        logger.info("Re-joined rooms: %s", ", ".join(sorted(self.desired_rooms)))
