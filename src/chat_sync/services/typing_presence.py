from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from chat_sync.application.policies.participation import is_remote_participant
from chat_sync.application.ports.timing import Clock, Countdown, LoopScheduler, Scheduler, SystemClock
from chat_sync.application.ports.transport import Transport
from chat_sync.config import settings
from chat_sync.domain.entities.conversation import Conversation
from chat_sync.domain.entities.typing_state import TypingState
from chat_sync.domain.value_objects.enums import ClientEvent
from chat_sync.domain.value_objects.ids import ConversationId, UserId
from chat_sync.infrastructure.transport.protocol import TypingSignal, dump
from chat_sync.services._observable import Observable

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _LocalTyping:
    user_id: str
    window: Countdown
    idle: Countdown


@dataclass(slots=True)
class _RemoteTyping:
    user_id: str
    expires_at: datetime
    expiry: Countdown


class TypingPresenceController(Observable):
    """Debounced typing broadcasts out, self-expiring typing flags in.

    Outgoing: ``typing_start`` at most once per throttle window, and one
    ``typing_stop`` after the idle delay with no keystrokes. Incoming: a flag
    per conversation that clears on ``user_stopped_typing`` or, because stop
    events may be lost, on its own after the expiry delay.
    """

    def __init__(
        self,
        transport: Transport,
        local_user_id: str,
        conversations: Callable[[str], Conversation | None],
        *,
        scheduler: Scheduler | None = None,
        clock: Clock | None = None,
        throttle: float = settings.TYPING_THROTTLE_SECONDS,
        idle: float = settings.TYPING_IDLE_SECONDS,
        expiry: float = settings.TYPING_EXPIRY_SECONDS,
    ) -> None:
        super().__init__()
        self._transport = transport
        self._local_user_id = local_user_id
        self._conversations = conversations
        self._scheduler = scheduler or LoopScheduler()
        self._clock = clock or SystemClock()
        self._throttle = throttle
        self._idle = idle
        self._expiry = expiry
        self._local: dict[str, _LocalTyping] = {}
        self._remote: dict[str, _RemoteTyping] = {}

    # -- local ---------------------------------------------------------------

    def notify_typing(self, conversation_id: str, user_id: str) -> None:
        """Call on every local keystroke."""
        local = self._local.get(conversation_id)
        if local is None:
            local = _LocalTyping(
                user_id=user_id,
                window=Countdown(self._scheduler, self._throttle, lambda: None),
                idle=Countdown(self._scheduler, self._idle, lambda: self._stop_local(conversation_id)),
            )
            self._local[conversation_id] = local

        if not local.window.active:
            self._send(ClientEvent.TYPING_START, conversation_id, user_id)
            local.window.arm()
        local.idle.arm()

    def _stop_local(self, conversation_id: str) -> None:
        local = self._local.pop(conversation_id, None)
        if local is None:
            return
        local.window.cancel()
        local.idle.cancel()
        self._send(ClientEvent.TYPING_STOP, conversation_id, local.user_id)

    def _send(self, event: ClientEvent, conversation_id: str, user_id: str) -> None:
        self._transport.send(
            event, dump(TypingSignal(conversation_id=conversation_id, user_id=user_id)),
        )

    # -- remote --------------------------------------------------------------

    def is_typing(self, conversation_id: str) -> bool:
        return conversation_id in self._remote

    def typing_state(self, conversation_id: str) -> TypingState | None:
        remote = self._remote.get(conversation_id)
        if remote is None:
            return None
        return TypingState(
            conversation_id=ConversationId(conversation_id),
            user_id=UserId(remote.user_id),
            expires_at=remote.expires_at,
        )

    def on_remote_typing(self, conversation_id: str, user_id: str) -> None:
        conversation = self._conversations(conversation_id)
        if not is_remote_participant(conversation, user_id, self._local_user_id):
            logger.debug("Ignoring typing from %s in %s", user_id, conversation_id)
            return

        expires_at = self._clock.now() + timedelta(seconds=self._expiry)
        remote = self._remote.get(conversation_id)
        if remote is None:
            remote = _RemoteTyping(
                user_id=user_id,
                expires_at=expires_at,
                expiry=Countdown(self._scheduler, self._expiry, lambda: self._expire(conversation_id)),
            )
            self._remote[conversation_id] = remote
            remote.expiry.arm()
            self._notify()
            return

        remote.user_id = user_id
        remote.expires_at = expires_at
        remote.expiry.arm()

    def on_remote_stopped_typing(self, conversation_id: str) -> None:
        remote = self._remote.pop(conversation_id, None)
        if remote is None:
            return
        remote.expiry.cancel()
        self._notify()

    def _expire(self, conversation_id: str) -> None:
        if self._remote.pop(conversation_id, None) is not None:
            logger.debug("Typing indicator for %s expired", conversation_id)
            self._notify()

    # -- lifecycle -----------------------------------------------------------

    def release(self, conversation_id: str) -> None:
        """Drop all typing state of a conversation that is being closed."""
        self._stop_local(conversation_id)
        self.on_remote_stopped_typing(conversation_id)

    def release_all(self) -> None:
        for conversation_id in {*self._local, *self._remote}:
            self.release(conversation_id)
