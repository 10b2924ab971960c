from __future__ import annotations

import logging
from typing import Callable

from chat_sync.application.exceptions import AppError
from chat_sync.application.ports.chat_api import ChatApi
from chat_sync.application.ports.transport import Transport
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import ClientEvent
from chat_sync.infrastructure.transport.protocol import ConversationRef, dump
from chat_sync.services._tasks import BackgroundTasks
from chat_sync.services.conversation_list import ConversationListStore
from chat_sync.services.message_timeline import MessageTimelineStore

logger = logging.getLogger(__name__)


class ReadReceiptSynchronizer:
    """Read state on both timelines.

    As receiver: opening a conversation acknowledges it to the server, zeroes
    the unread counter, flags the other party's messages as seen and tells the
    other party. As sender: a remote receipt advances our SENT messages to READ.
    """

    def __init__(
        self,
        api: ChatApi,
        transport: Transport,
        conversations: ConversationListStore,
        local_user_id: str,
        timeline_for: Callable[[str], MessageTimelineStore | None],
        *,
        tasks: BackgroundTasks | None = None,
    ) -> None:
        self._api = api
        self._transport = transport
        self._conversations = conversations
        self._local_user_id = local_user_id
        self._timeline_for = timeline_for
        self._tasks = tasks or BackgroundTasks()
        self._acking: set[str] = set()
        self._ack_again: set[str] = set()

    async def on_conversation_opened(self, conversation_id: str) -> bool:
        """Returns whether the server acknowledged the read.

        Either failure is also left on the timeline's ``sync_error`` so a view
        can surface it; a fully successful open clears it.
        """
        timeline = self._timeline_for(conversation_id)
        error: AppError | None = None
        if timeline is not None and not timeline.loaded:
            try:
                await timeline.load_history()
            except AppError as exc:
                logger.warning("History load for %s failed: %s", conversation_id, exc)
                error = exc
            if timeline.closed:
                return False

        try:
            await self._api.mark_read(conversation_id)
        except AppError as exc:
            logger.warning("Mark-read for %s failed, unread kept: %s", conversation_id, exc)
            if timeline is not None:
                timeline.report_sync_error(exc)
            return False

        self._apply_local_read(conversation_id)
        if timeline is not None:
            timeline.report_sync_error(error)
        return True

    def on_remote_read_receipt(self, conversation_id: str, read_by: str | None = None) -> int:
        """Advance the local user's SENT messages in one conversation to READ."""
        if read_by is not None and read_by == self._local_user_id:
            return 0
        timeline = self._timeline_for(conversation_id)
        if timeline is None:
            return 0
        changed = timeline.mark_own_read()
        logger.debug("Read receipt for %s advanced %d messages", conversation_id, changed)
        return changed

    def acknowledge_live(self, message: Message) -> None:
        """Acknowledge a remote message that arrived while its conversation is open."""
        if message.authored_by(self._local_user_id):
            return
        conversation_id = message.conversation_id
        timeline = self._timeline_for(conversation_id)
        if timeline is None:
            return
        timeline.mark_remote_seen()

        if conversation_id in self._acking:
            self._ack_again.add(conversation_id)
            return
        self._acking.add(conversation_id)
        self._tasks.spawn(self._ack(conversation_id), name=f"ack-read-{conversation_id}")

    async def _ack(self, conversation_id: str) -> None:
        try:
            while True:
                self._ack_again.discard(conversation_id)
                try:
                    await self._api.mark_read(conversation_id)
                except AppError as exc:
                    logger.warning("Live mark-read for %s failed: %s", conversation_id, exc)
                    return
                self._apply_local_read(conversation_id)
                if conversation_id not in self._ack_again:
                    return
        finally:
            self._acking.discard(conversation_id)

    def _apply_local_read(self, conversation_id: str) -> None:
        self._conversations.clear_unread(conversation_id)
        timeline = self._timeline_for(conversation_id)
        if timeline is not None:
            timeline.mark_remote_seen()
        self._transport.send(
            ClientEvent.MARK_READ, dump(ConversationRef(conversation_id=conversation_id)),
        )
