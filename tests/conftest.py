"""Shared test fixtures."""
from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from chat_sync.application.dto.message import MessagePage
from chat_sync.application.exceptions import AppError
from chat_sync.application.ports.transport import EventHandler, LifecycleCallback
from chat_sync.domain.entities.conversation import Conversation
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import MessageStatus
from chat_sync.domain.value_objects.ids import ConversationId, MessageId, UserId
from chat_sync.session import ChatSession

ME = "user-me"
OTHER = "user-provider"
STRANGER = "user-stranger"

BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def at(minutes: float) -> datetime:
    return BASE_TIME + timedelta(minutes=minutes)


def make_conversation(
    conversation_id: str = "conv-1",
    *,
    participant_a: str = ME,
    participant_b: str = OTHER,
    last_message_at: datetime | None = None,
    preview: str | None = None,
    unread: int = 0,
) -> Conversation:
    return Conversation(
        id=ConversationId(conversation_id),
        participant_a=UserId(participant_a),
        participant_b=UserId(participant_b),
        last_message_preview=preview,
        last_message_at=last_message_at,
        unread_count=unread,
    )


def make_message(
    message_id: str,
    *,
    conversation_id: str = "conv-1",
    sender_id: str = OTHER,
    content: str = "hello",
    minute: float = 0,
    status: MessageStatus = MessageStatus.SENT,
    seen: bool = False,
) -> Message:
    return Message(
        id=MessageId(message_id),
        conversation_id=ConversationId(conversation_id),
        sender_id=UserId(sender_id),
        content=content,
        created_at=at(minute),
        status=status,
        seen=seen,
    )


def message_payload(message: Message) -> dict[str, Any]:
    """The new_message wire shape of a message."""
    return {
        "id": message.id,
        "conversationId": message.conversation_id,
        "senderId": message.sender_id,
        "content": message.content,
        "type": message.type.value,
        "attachments": list(message.attachments),
        "createdAt": message.created_at.isoformat(),
        "status": message.status.value,
    }


@dataclass
class FakeTransport:
    """In-memory channel: records what was sent, replays what the server pushes."""

    connected: bool = False
    sent: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    connect_calls: int = 0
    _handlers: dict[str, list[EventHandler]] = field(default_factory=dict)
    _on_connect: list[LifecycleCallback] = field(default_factory=list)
    _on_disconnect: list[LifecycleCallback] = field(default_factory=list)

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> None:
        self.connect_calls += 1
        if not self.connected:
            await self.simulate_connect()

    async def disconnect(self) -> None:
        if self.connected:
            await self.simulate_disconnect()

    def send(self, event: str, payload: dict[str, Any]) -> None:
        if self.connected:
            self.sent.append((str(event), payload))

    def subscribe(self, event: str, handler: EventHandler) -> None:
        self._handlers.setdefault(str(event), []).append(handler)

    def on_connect(self, callback: LifecycleCallback) -> None:
        self._on_connect.append(callback)

    def on_disconnect(self, callback: LifecycleCallback) -> None:
        self._on_disconnect.append(callback)

    async def simulate_connect(self) -> None:
        self.connected = True
        for callback in self._on_connect:
            await callback()

    async def simulate_disconnect(self) -> None:
        self.connected = False
        for callback in self._on_disconnect:
            await callback()

    async def deliver(self, event: str, data: dict[str, Any]) -> None:
        for handler in self._handlers.get(event, []):
            await handler(data)

    def events(self, name: str) -> list[dict[str, Any]]:
        return [payload for event, payload in self.sent if event == name]


@dataclass
class FakeChatApi:
    """In-memory REST collaborator."""

    user_id: str = ME
    conversations: list[Conversation] = field(default_factory=list)
    pages: dict[tuple[str, str | None], MessagePage] = field(default_factory=dict)
    sent: list[tuple[str, str, tuple[str, ...]]] = field(default_factory=list)
    read_calls: list[str] = field(default_factory=list)
    history_calls: list[tuple[str, str | None]] = field(default_factory=list)
    list_calls: int = 0
    fail_list: AppError | None = None
    fail_send: AppError | None = None
    fail_read: AppError | None = None
    fail_history: AppError | None = None
    send_gate: asyncio.Event | None = None
    history_gate: asyncio.Event | None = None
    closed: bool = False
    _ids: itertools.count = field(default_factory=lambda: itertools.count(1))

    async def list_conversations(self, *, limit: int = 20) -> list[Conversation]:
        self.list_calls += 1
        if self.fail_list is not None:
            raise self.fail_list
        return list(self.conversations)[:limit]

    async def list_messages(
        self,
        conversation_id: str,
        *,
        cursor: str | None = None,
        limit: int = 50,
    ) -> MessagePage:
        self.history_calls.append((conversation_id, cursor))
        if self.history_gate is not None:
            await self.history_gate.wait()
        if self.fail_history is not None:
            raise self.fail_history
        return self.pages.get((conversation_id, cursor), MessagePage(messages=()))

    async def send_message(
        self,
        conversation_id: str,
        content: str,
        attachments: tuple[str, ...] = (),
    ) -> Message:
        self.sent.append((conversation_id, content, attachments))
        if self.send_gate is not None:
            await self.send_gate.wait()
        if self.fail_send is not None:
            raise self.fail_send
        n = next(self._ids)
        return Message(
            id=MessageId(f"srv-{n}"),
            conversation_id=ConversationId(conversation_id),
            sender_id=UserId(self.user_id),
            content=content,
            created_at=at(100 + n),
            attachments=attachments,
        )

    async def mark_read(self, conversation_id: str) -> None:
        self.read_calls.append(conversation_id)
        if self.fail_read is not None:
            raise self.fail_read

    async def aclose(self) -> None:
        self.closed = True


@dataclass
class _FakeTimer:
    when: float
    seq: int
    callback: Callable[[], None]
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Virtual time: timers only fire inside ``advance``."""

    def __init__(self) -> None:
        self.now = 0.0
        self._timers: list[_FakeTimer] = []
        self._seq = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], None]) -> _FakeTimer:
        timer = _FakeTimer(self.now + delay, next(self._seq), callback)
        self._timers.append(timer)
        return timer

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [t for t in self._timers if not t.cancelled and t.when <= target + 1e-9]
            if not due:
                break
            timer = min(due, key=lambda t: (t.when, t.seq))
            self._timers.remove(timer)
            self.now = timer.when
            timer.callback()
        self.now = target


class ManualClock:
    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def api() -> FakeChatApi:
    return FakeChatApi()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def session(api, transport, scheduler, clock) -> ChatSession:
    return ChatSession(ME, api, transport, scheduler=scheduler, clock=clock)
