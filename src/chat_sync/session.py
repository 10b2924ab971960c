"""Composition root: one ChatSession per authenticated user."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from types import TracebackType
from typing import Any, AsyncIterator, Iterable, Self

from chat_sync.application.exceptions import AppError, ValidationError
from chat_sync.application.ports.chat_api import ChatApi
from chat_sync.application.ports.timing import Clock, Scheduler, SystemClock
from chat_sync.application.ports.transport import Transport
from chat_sync.config import settings
from chat_sync.domain.value_objects.enums import ServerEvent
from chat_sync.infrastructure.rest.client import HttpChatApi
from chat_sync.infrastructure.rest.mappers import message_to_entity
from chat_sync.infrastructure.rest.schemas import MessageSchema
from chat_sync.infrastructure.transport.protocol import (
    MessagesRead,
    UserStoppedTyping,
    UserTyping,
)
from chat_sync.infrastructure.transport.ws_channel import WebSocketChannel, with_token
from chat_sync.services._tasks import BackgroundTasks
from chat_sync.services.conversation_list import ConversationListStore
from chat_sync.services.history_loader import RestFallbackLoader
from chat_sync.services.message_timeline import MessageTimelineStore, OutgoingMessage
from chat_sync.services.read_receipts import ReadReceiptSynchronizer
from chat_sync.services.room_subscriptions import RoomSubscriptionManager
from chat_sync.services.typing_presence import TypingPresenceController

logger = logging.getLogger(__name__)


class ChatSession:
    """Wires the channel, the REST collaborator and the stores together.

    Construct once per session and share; the transport is never recreated
    per conversation.
    """

    def __init__(
        self,
        user_id: str,
        api: ChatApi,
        transport: Transport,
        *,
        scheduler: Scheduler | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.user_id = user_id
        self._api = api
        self._transport = transport
        self._clock = clock or SystemClock()
        self._tasks = BackgroundTasks()
        self._connections = 0
        self._started = False

        self.loader = RestFallbackLoader(api)
        self.conversations = ConversationListStore(self.loader, user_id)
        self.rooms = RoomSubscriptionManager(transport, user_id)
        self.typing = TypingPresenceController(
            transport, user_id, self.conversations.get, scheduler=scheduler, clock=self._clock,
        )
        self.receipts = ReadReceiptSynchronizer(
            api, transport, self.conversations, user_id, self._timeline_for, tasks=self._tasks,
        )
        self.timeline: MessageTimelineStore | None = None

        transport.subscribe(ServerEvent.NEW_MESSAGE, self._on_new_message)
        transport.subscribe(ServerEvent.USER_TYPING, self._on_user_typing)
        transport.subscribe(ServerEvent.USER_STOPPED_TYPING, self._on_user_stopped_typing)
        transport.subscribe(ServerEvent.MESSAGES_READ, self._on_messages_read)
        transport.on_connect(self._on_connect)
        transport.on_disconnect(self._on_disconnect)

    @classmethod
    def from_settings(cls, user_id: str, token: str, **kwargs: Any) -> ChatSession:
        api = HttpChatApi(settings.CHAT_API_URL, token, user_id)
        transport = WebSocketChannel(with_token(settings.CHAT_WS_URL, token))
        return cls(user_id, api, transport, **kwargs)

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Seed the conversation list over REST, then go live.

        A failed seed raises and leaves the session unstarted, so calling
        ``start()`` again retries it.
        """
        if self._started:
            return
        await self.conversations.load_initial()
        self._started = True
        await self._transport.connect()

    async def aclose(self) -> None:
        self.close_conversation()
        self.typing.release_all()
        await self._transport.disconnect()
        await self._tasks.aclose()
        await self._api.aclose()
        logger.info("Chat session for %s closed", self.user_id)

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    # -- conversations -------------------------------------------------------

    @property
    def open_conversation_id(self) -> str | None:
        return self.rooms.open_conversation_id

    async def open_conversation(self, conversation_id: str) -> MessageTimelineStore:
        if self.timeline is not None and self.timeline.conversation_id == conversation_id:
            return self.timeline
        self.close_conversation()

        timeline = MessageTimelineStore(
            conversation_id,
            self.user_id,
            self.loader,
            self._api,
            clock=self._clock,
            tasks=self._tasks,
            is_current=self._is_open,
            on_confirmed=self.conversations.apply_incoming_message,
        )
        self.timeline = timeline
        self.conversations.open_conversation_id = conversation_id
        self.rooms.set_open_conversation(conversation_id)
        await self.receipts.on_conversation_opened(conversation_id)
        return timeline

    def close_conversation(self) -> None:
        timeline = self.timeline
        if timeline is None:
            return
        self.timeline = None
        timeline.close()
        self.typing.release(timeline.conversation_id)
        self.conversations.open_conversation_id = None
        self.rooms.set_open_conversation(None)

    @asynccontextmanager
    async def conversation(self, conversation_id: str) -> AsyncIterator[MessageTimelineStore]:
        """Open a conversation for the duration of the block.

        The room is left and typing state released on every exit path.
        """
        try:
            yield await self.open_conversation(conversation_id)
        finally:
            if self._timeline_for(conversation_id) is not None:
                self.close_conversation()

    def send_message(self, content: str, attachments: Iterable[str] = ()) -> OutgoingMessage:
        if self.timeline is None:
            raise ValidationError("No conversation is open")
        return self.timeline.send_optimistic(content, attachments)

    def notify_typing(self) -> None:
        if self.timeline is not None:
            self.typing.notify_typing(self.timeline.conversation_id, self.user_id)

    def _timeline_for(self, conversation_id: str) -> MessageTimelineStore | None:
        timeline = self.timeline
        if timeline is not None and timeline.conversation_id == conversation_id:
            return timeline
        return None

    def _is_open(self, conversation_id: str) -> bool:
        return self.open_conversation_id == conversation_id

    # -- channel events ------------------------------------------------------

    async def _on_new_message(self, data: dict[str, Any]) -> None:
        message = message_to_entity(MessageSchema.model_validate(data), self.user_id)
        self.conversations.apply_incoming_message(message)
        timeline = self._timeline_for(message.conversation_id)
        if timeline is not None and timeline.apply_incoming(message):
            self.receipts.acknowledge_live(message)

    async def _on_user_typing(self, data: dict[str, Any]) -> None:
        event = UserTyping.model_validate(data)
        conversation_id = event.conversation_id or self.open_conversation_id
        if conversation_id is not None:
            self.typing.on_remote_typing(conversation_id, event.user_id)

    async def _on_user_stopped_typing(self, data: dict[str, Any]) -> None:
        event = UserStoppedTyping.model_validate(data)
        conversation_id = event.conversation_id or self.open_conversation_id
        if conversation_id is not None:
            self.typing.on_remote_stopped_typing(conversation_id)

    async def _on_messages_read(self, data: dict[str, Any]) -> None:
        event = MessagesRead.model_validate(data)
        self.receipts.on_remote_read_receipt(event.conversation_id, event.read_by)

    async def _on_connect(self) -> None:
        self._connections += 1
        await self.rooms.on_transport_connected()
        if self._connections > 1 and self.timeline is not None:
            self._tasks.spawn(self._catch_up(self.timeline), name="timeline-catch-up")

    async def _on_disconnect(self) -> None:
        logger.info("Live events paused until the channel reconnects")

    async def _catch_up(self, timeline: MessageTimelineStore) -> None:
        try:
            await timeline.catch_up()
        except AppError as exc:
            logger.warning("Catch-up for %s failed: %s", timeline.conversation_id, exc)
            timeline.report_sync_error(exc)
        else:
            timeline.report_sync_error(None)
