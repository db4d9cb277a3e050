"""Decode inbound envelopes and invoke the matching hub operation."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Dict

from ..errors import MalformedMessage, SignalingError, UnknownMessageType
from ..monitoring.metrics import signaling_dropped_total, signaling_messages_total
from ..signaling.messages import (
    AnchorMutePayload,
    CreateRoomPayload,
    Envelope,
    JoinRoomPayload,
    RegisterPayload,
    RejoinRoomPayload,
    TargetPayload,
    parse_envelope,
    parse_payload,
)
from ..signaling.router import RELAY_KINDS
from .mute import ANCHOR_MUTE, ANCHOR_UNMUTE
from .outbox import make_message, safe_send_json

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from .connections import Connection
    from .hub import SignalingHub


logger = logging.getLogger(__name__)

Handler = Callable[["Connection", Envelope], Awaitable[None]]


class Dispatcher:
    """Route ``{type, payload}`` envelopes to the hub.

    Every failure stays local to the connection that sent the frame: signaling
    errors are logged and dropped, anything unexpected is logged with its
    traceback and the socket keeps running.
    """

    def __init__(self, hub: "SignalingHub") -> None:
        self._hub = hub
        self._handlers: Dict[str, Handler] = {
            "register": self._register,
            "create-room": self._create_room,
            "rejoin-room": self._rejoin_room,
            "list-rooms": self._list_rooms,
            "join-room": self._join_room,
            "leave-room": self._leave_room,
            "mute-viewer": self._mute_viewer,
            "unmute-viewer": self._unmute_viewer,
            "kick-user": self._kick_user,
            ANCHOR_MUTE: self._anchor_mute,
            ANCHOR_UNMUTE: self._anchor_mute,
            "ping": self._ping,
            "pong": self._pong,
        }
        for kind in RELAY_KINDS:
            self._handlers[kind] = self._relay

    @property
    def message_types(self) -> frozenset[str]:
        return frozenset(self._handlers)

    async def dispatch(self, connection: "Connection", raw: str | bytes) -> bool:
        """Handle one frame; return True when a handler completed without error."""

        try:
            envelope = parse_envelope(raw)
        except MalformedMessage as exc:
            logger.error("Failed to parse message from %s: %s", connection.id, exc.message)
            signaling_dropped_total.labels("unknown", exc.code).inc()
            return False

        try:
            handler = self._handler_for(envelope.type)
        except UnknownMessageType as exc:
            logger.warning(exc.message)
            signaling_dropped_total.labels("unknown", exc.code).inc()
            return False

        signaling_messages_total.labels(envelope.type, "in").inc()
        logger.debug("Received message type %s from %s", envelope.type, connection.id)
        try:
            await handler(connection, envelope)
        except SignalingError as exc:
            logger.warning(
                "Dropped %s from %s (%s): %s",
                envelope.type,
                connection.identity or connection.id,
                exc.code,
                exc.message,
            )
            signaling_dropped_total.labels(envelope.type, exc.code).inc()
            return False
        except Exception:
            logger.exception(
                "Handler for %s failed on connection %s", envelope.type, connection.id
            )
            signaling_dropped_total.labels(envelope.type, "INTERNAL_ERROR").inc()
            return False
        return True

    def _handler_for(self, message_type: str) -> Handler:
        handler = self._handlers.get(message_type)
        if handler is None:
            raise UnknownMessageType(f"Unhandled message type: {message_type}")
        return handler

    # ------------------------------------------------------------------
    async def _register(self, connection: "Connection", envelope: Envelope) -> None:
        payload = parse_payload(RegisterPayload, envelope.payload)
        await self._hub.register(connection, payload.identity, payload.username)

    async def _create_room(self, connection: "Connection", envelope: Envelope) -> None:
        payload = parse_payload(CreateRoomPayload, envelope.payload)
        await self._hub.create_room(connection, payload.room_name, payload.password)

    async def _rejoin_room(self, connection: "Connection", envelope: Envelope) -> None:
        payload = parse_payload(RejoinRoomPayload, envelope.payload)
        await self._hub.rejoin_room(
            connection,
            payload.room_id,
            payload.room_name,
            payload.password,
            update_password="password" in payload.model_fields_set,
        )

    async def _list_rooms(self, connection: "Connection", envelope: Envelope) -> None:
        await self._hub.list_rooms(connection)

    async def _join_room(self, connection: "Connection", envelope: Envelope) -> None:
        payload = parse_payload(JoinRoomPayload, envelope.payload)
        await self._hub.join_room(connection, payload.room_id, payload.password)

    async def _leave_room(self, connection: "Connection", envelope: Envelope) -> None:
        await self._hub.leave_room(connection)

    async def _mute_viewer(self, connection: "Connection", envelope: Envelope) -> None:
        payload = parse_payload(TargetPayload, envelope.payload)
        await self._hub.set_viewer_muted(connection, payload.target_id, True)

    async def _unmute_viewer(self, connection: "Connection", envelope: Envelope) -> None:
        payload = parse_payload(TargetPayload, envelope.payload)
        await self._hub.set_viewer_muted(connection, payload.target_id, False)

    async def _kick_user(self, connection: "Connection", envelope: Envelope) -> None:
        payload = parse_payload(TargetPayload, envelope.payload)
        await self._hub.kick_user(connection, payload.target_id)

    async def _anchor_mute(self, connection: "Connection", envelope: Envelope) -> None:
        payload = parse_payload(AnchorMutePayload, envelope.payload)
        await self._hub.set_anchor_mute(
            connection, envelope.type == ANCHOR_MUTE, anchor_id=payload.anchor_id
        )

    async def _relay(self, connection: "Connection", envelope: Envelope) -> None:
        await self._hub.relay(connection, envelope.type, envelope.payload)

    async def _ping(self, connection: "Connection", envelope: Envelope) -> None:
        await safe_send_json(connection.websocket, make_message("pong"))

    async def _pong(self, connection: "Connection", envelope: Envelope) -> None:
        # Keepalive reply; receipt alone resets the idle timer.
        return None


__all__ = ["Dispatcher"]
