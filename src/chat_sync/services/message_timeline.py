"""Per-conversation message log and the optimistic send pipeline."""
from __future__ import annotations

import asyncio
import bisect
import logging
from dataclasses import replace
from typing import Callable, Iterable

from chat_sync.application.dto.message import MessagePage
from chat_sync.application.exceptions import AppError, SendFailedError
from chat_sync.application.policies.participation import assert_sendable
from chat_sync.application.ports.chat_api import ChatApi
from chat_sync.application.ports.timing import Clock, SystemClock
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import MessageStatus
from chat_sync.domain.value_objects.ids import ConversationId, UserId, new_temp_message_id
from chat_sync.services._observable import Observable
from chat_sync.services._tasks import BackgroundTasks
from chat_sync.services.history_loader import RestFallbackLoader

logger = logging.getLogger(__name__)


def _sort_key(message: Message) -> tuple:
    return message.sort_key


class OutgoingMessage:
    """Handle for one optimistic send.

    ``status`` moves PENDING -> SENT or PENDING -> FAILED exactly once.
    ``content`` is the caller's original input, kept for retry.
    """

    def __init__(self, temp_id: str, content: str, attachments: tuple[str, ...]) -> None:
        self.temp_id = temp_id
        self.content = content
        self.attachments = attachments
        self.status = MessageStatus.PENDING
        self.message: Message | None = None
        self.error: BaseException | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def done(self) -> bool:
        return self.status != MessageStatus.PENDING

    async def confirmed(self) -> Message:
        """Wait for the server and return the confirmed message.

        Raises SendFailedError (with the original input) if the send failed.
        """
        if self._task is not None:
            try:
                await asyncio.shield(self._task)
            except asyncio.CancelledError:
                if not self._task.cancelled():
                    raise
        if self.message is None:
            raise SendFailedError(self.content, self.attachments) from self.error
        return self.message


class MessageTimelineStore(Observable):
    """Ordered, deduplicated log of one conversation's messages.

    Confirmed messages are kept sorted by (created_at, id) and never move once
    inserted. Pending sends are shown after them in submission order, because
    their server timestamp is not known yet.
    """

    def __init__(
        self,
        conversation_id: str,
        local_user_id: str,
        loader: RestFallbackLoader,
        api: ChatApi,
        *,
        clock: Clock | None = None,
        tasks: BackgroundTasks | None = None,
        is_current: Callable[[str], bool] | None = None,
        on_confirmed: Callable[[Message], object] | None = None,
    ) -> None:
        super().__init__()
        self.conversation_id = ConversationId(conversation_id)
        self._local_user_id = UserId(local_user_id)
        self._loader = loader
        self._api = api
        self._clock = clock or SystemClock()
        self._tasks = tasks or BackgroundTasks()
        self._is_current = is_current or (lambda _cid: True)
        self._on_confirmed = on_confirmed
        self._confirmed: list[Message] = []
        self._by_id: dict[str, Message] = {}
        self._pending: list[Message] = []
        self.loaded = False
        self.next_cursor: str | None = None
        self.closed = False
        self.sync_error: AppError | None = None

    # -- reads ---------------------------------------------------------------

    def snapshot(self) -> tuple[Message, ...]:
        return (*self._confirmed, *self._pending)

    def get(self, message_id: str) -> Message | None:
        found = self._by_id.get(message_id)
        if found is not None:
            return found
        return next((m for m in self._pending if m.id == message_id), None)

    @property
    def has_more(self) -> bool:
        return not self.loaded or self.next_cursor is not None

    # -- history -------------------------------------------------------------

    async def load_history(self, cursor: str | None = None) -> MessagePage | None:
        """Fetch one page and merge it. Returns None if the page was discarded.

        A page that lands after this conversation stopped being the open one
        is dropped, since switching conversations does not cancel the request.
        """
        page = await self._loader.fetch_history(self.conversation_id, cursor)
        if self.closed or not self._is_current(self.conversation_id):
            logger.debug("Discarding late history page for %s", self.conversation_id)
            return None

        if cursor is not None or not self.loaded:
            self.next_cursor = page.next_cursor
        self.loaded = True
        changed = self._merge(page.messages)
        logger.debug("Merged %d new messages into %s", changed, self.conversation_id)
        self._notify()
        return page

    async def load_older(self) -> MessagePage | None:
        if self.loaded and self.next_cursor is None:
            return None
        return await self.load_history(self.next_cursor)

    async def catch_up(self) -> MessagePage | None:
        """Re-read the newest page, e.g. after the channel was down."""
        return await self.load_history()

    def _merge(self, messages: Iterable[Message]) -> int:
        changed = 0
        for message in messages:
            if message.conversation_id != self.conversation_id:
                continue
            existing = self._by_id.get(message.id)
            if existing is None:
                self._insert(message)
                changed += 1
                continue
            # Only ever move forward: SENT -> READ, unseen -> seen.
            upgraded = existing
            if message.status == MessageStatus.READ and existing.status == MessageStatus.SENT:
                upgraded = replace(upgraded, status=MessageStatus.READ)
            if message.seen and not existing.seen:
                upgraded = replace(upgraded, seen=True)
            if upgraded is not existing:
                self._replace(upgraded)
                changed += 1
        return changed

    # -- live ----------------------------------------------------------------

    def apply_incoming(self, message: Message) -> bool:
        """Insert a live message by (created_at, id). Known ids are a no-op."""
        if message.conversation_id != self.conversation_id:
            return False
        if message.id in self._by_id:
            logger.debug("Duplicate message %s ignored", message.id)
            return False
        self._insert(message)
        self._notify()
        return True

    def _insert(self, message: Message) -> None:
        bisect.insort(self._confirmed, message, key=_sort_key)
        self._by_id[message.id] = message

    def _replace(self, message: Message) -> None:
        index = bisect.bisect_left(self._confirmed, message.sort_key, key=_sort_key)
        self._confirmed[index] = message
        self._by_id[message.id] = message

    # -- optimistic send -----------------------------------------------------

    def send_optimistic(self, content: str, attachments: Iterable[str] = ()) -> OutgoingMessage:
        """Show a PENDING entry immediately and send it in the background.

        Blank input raises ValidationError before anything is mutated.
        """
        attachments = tuple(attachments)
        body = assert_sendable(content, attachments)

        entry = Message(
            id=new_temp_message_id(),
            conversation_id=self.conversation_id,
            sender_id=self._local_user_id,
            content=body,
            created_at=self._clock.now(),
            status=MessageStatus.PENDING,
            attachments=attachments,
        )
        self._pending.append(entry)
        handle = OutgoingMessage(entry.id, content, attachments)
        handle._task = self._tasks.spawn(
            self._deliver(handle, entry), name=f"send-{entry.id}",
        )
        self._notify()
        return handle

    async def _deliver(self, handle: OutgoingMessage, entry: Message) -> None:
        try:
            confirmed = await self._api.send_message(
                self.conversation_id, entry.content, entry.attachments,
            )
        except asyncio.CancelledError as exc:
            self._fail(handle, exc)
            raise
        except Exception as exc:
            self._fail(handle, exc)
            return
        self._confirm(handle, confirmed)

    def _confirm(self, handle: OutgoingMessage, confirmed: Message) -> None:
        self._drop_pending(handle.temp_id)
        if confirmed.status != MessageStatus.READ:
            confirmed = replace(confirmed, status=MessageStatus.SENT)
        existing = self._by_id.get(confirmed.id)
        if existing is None:
            self._insert(confirmed)
        else:
            # Already delivered live while the POST was in flight.
            confirmed = existing
        handle.status = MessageStatus.SENT
        handle.message = confirmed
        logger.debug("Send %s confirmed as %s", handle.temp_id, confirmed.id)
        self._notify()
        if self._on_confirmed is not None:
            self._on_confirmed(confirmed)

    def _fail(self, handle: OutgoingMessage, exc: BaseException) -> None:
        self._drop_pending(handle.temp_id)
        handle.status = MessageStatus.FAILED
        handle.error = exc
        if isinstance(exc, (AppError, asyncio.CancelledError)):
            logger.warning("Send to %s failed: %r", self.conversation_id, exc)
        else:
            logger.error("Send to %s failed", self.conversation_id, exc_info=exc)
        self._notify()

    def _drop_pending(self, temp_id: str) -> None:
        self._pending = [m for m in self._pending if m.id != temp_id]

    # -- read state ----------------------------------------------------------

    def mark_own_read(self) -> int:
        """Advance every SENT message of the local user to READ.

        A read receipt means "read up to now", so no single message id bounds
        it. Pending sends are untouched. Returns how many changed.
        """
        changed = 0
        for i, message in enumerate(self._confirmed):
            if message.status == MessageStatus.SENT and message.authored_by(self._local_user_id):
                message = replace(message, status=MessageStatus.READ)
                self._confirmed[i] = message
                self._by_id[message.id] = message
                changed += 1
        if changed:
            self._notify()
        return changed

    def mark_remote_seen(self) -> int:
        changed = 0
        for i, message in enumerate(self._confirmed):
            if not message.seen and not message.authored_by(self._local_user_id):
                message = replace(message, seen=True)
                self._confirmed[i] = message
                self._by_id[message.id] = message
                changed += 1
        if changed:
            self._notify()
        return changed

    def report_sync_error(self, error: AppError | None) -> None:
        """Record the last background sync failure (None once a sync succeeds)."""
        if error is self.sync_error:
            return
        self.sync_error = error
        self._notify()

    def close(self) -> None:
        """Stop accepting history pages. In-flight sends still resolve."""
        self.closed = True
