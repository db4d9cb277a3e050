"""Test doubles shared by the signaling tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from fastapi.websockets import WebSocketState

from liveroom.realtime import Connection

GRACE_SECONDS = 20.0
KICK_DELAY_SECONDS = 0.25


class DummyWebSocket:
    """Records outbound frames instead of writing to a socket."""

    def __init__(self) -> None:
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []
        self.close_codes: list[int] = []

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.application_state = WebSocketState.DISCONNECTED
        self.close_codes.append(code)

    @property
    def closed(self) -> bool:
        return self.application_state == WebSocketState.DISCONNECTED

    def of_type(self, message_type: str) -> list[Any]:
        return [message["payload"] for message in self.sent if message["type"] == message_type]

    def types(self) -> list[str]:
        return [message["type"] for message in self.sent]


@dataclass
class VirtualCall:
    when: float
    seq: int
    callback: Callable[[], Awaitable[None]]
    name: str | None = None
    _cancelled: bool = field(default=False)

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled


class VirtualScheduler:
    """Scheduler driven by an explicit clock; callbacks run only in ``advance``."""

    def __init__(self) -> None:
        self.now = 0.0
        self._seq = 0
        self._calls: list[VirtualCall] = []

    def call_later(self, delay: float, callback, *, name: str | None = None) -> VirtualCall:
        call = VirtualCall(when=self.now + delay, seq=self._seq, callback=callback, name=name)
        self._seq += 1
        self._calls.append(call)
        return call

    def pending(self) -> list[VirtualCall]:
        return [call for call in self._calls if not call.cancelled()]

    async def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = sorted(
                (call for call in self.pending() if call.when <= target),
                key=lambda call: (call.when, call.seq),
            )
            if not due:
                break
            call = due[0]
            self._calls.remove(call)
            self.now = max(self.now, call.when)
            await call.callback()
        self._calls = self.pending()
        self.now = target


@dataclass
class Peer:
    connection: Connection
    websocket: DummyWebSocket

    @property
    def identity(self) -> str:
        assert self.connection.identity is not None
        return self.connection.identity

