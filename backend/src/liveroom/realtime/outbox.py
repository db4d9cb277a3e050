"""Outbound message buffering.

State changes are computed while the hub lock is held and every resulting
notification is queued here; delivery happens after the lock is released so a
slow socket never stalls other handlers. Queue order is delivery order, which
keeps per-connection ordering equal to the order of ``send`` calls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable

from fastapi.websockets import WebSocketDisconnect, WebSocketState

from ..monitoring.metrics import signaling_messages_total

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from .connections import Connection, ConnectionRegistry
    from .rooms import Room


logger = logging.getLogger(__name__)


async def safe_send_json(websocket: Any, data: dict[str, Any]) -> bool:
    """Send JSON through *websocket*, returning False if the socket is gone."""

    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("Failed to send websocket message: %s", e)
        return False


def make_message(message_type: str, payload: Any = None) -> dict[str, Any]:
    return {"type": message_type, "payload": {} if payload is None else payload}


@dataclass(slots=True)
class Outbound:
    connection: "Connection"
    message: dict[str, Any]


class Outbox:
    """Ordered list of messages waiting to be delivered."""

    def __init__(self, connections: "ConnectionRegistry") -> None:
        self._connections = connections
        self._items: list[Outbound] = []

    def __iter__(self):
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def send(self, connection: "Connection | None", message_type: str, payload: Any = None) -> bool:
        if connection is None:
            return False
        self._items.append(Outbound(connection, make_message(message_type, payload)))
        return True

    def send_to(self, identity: str | None, message_type: str, payload: Any = None) -> bool:
        """Queue a message for the live connection of *identity*, if attached."""

        return self.send(self._connections.resolve(identity), message_type, payload)

    def notify_viewers(
        self,
        room: "Room",
        message_type: str,
        payload: Any = None,
        *,
        excluding: Iterable[str] | None = None,
    ) -> int:
        """Queue the same message for every attached viewer of *room*."""

        skip = set(excluding or ())
        queued = 0
        for viewer in sorted(room.viewers):
            if viewer in skip:
                continue
            if self.send_to(viewer, message_type, payload):
                queued += 1
        return queued

    async def deliver(self) -> int:
        delivered = 0
        items, self._items = self._items, []
        for item in items:
            if await safe_send_json(item.connection.websocket, item.message):
                delivered += 1
                signaling_messages_total.labels(item.message["type"], "out").inc()
        return delivered


__all__ = ["Outbound", "Outbox", "make_message", "safe_send_json"]
