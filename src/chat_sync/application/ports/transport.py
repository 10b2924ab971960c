from __future__ import annotations

from typing import Any, Callable, Coroutine, Protocol

EventHandler = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]
LifecycleCallback = Callable[[], Coroutine[Any, Any, None]]


class Transport(Protocol):
    """One persistent bidirectional connection per authenticated session."""

    @property
    def is_connected(self) -> bool: ...

    async def connect(self) -> None:
        """Start the connection. Calling it again while running is a no-op."""
        ...

    async def disconnect(self) -> None: ...

    def send(self, event: str, payload: dict[str, Any]) -> None:
        """Fire-and-forget. Dropped when not connected."""
        ...

    def subscribe(self, event: str, handler: EventHandler) -> None: ...

    def on_connect(self, callback: LifecycleCallback) -> None: ...

    def on_disconnect(self, callback: LifecycleCallback) -> None: ...
