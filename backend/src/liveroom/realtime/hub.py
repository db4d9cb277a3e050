"""The signaling hub: one object owning every registry and index.

Handlers run their state changes inside a single ``asyncio.Lock`` so a handler's
mutations are atomic with respect to every other handler and to the grace
timer. Notifications are collected in an :class:`Outbox` and delivered once the
lock has been released.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, AsyncIterator, Mapping, Sequence

from fastapi import status

from ..errors import (
    InvalidState,
    NotFound,
    PasswordIncorrect,
    RejoinRejected,
    RoomNotFound,
    Unauthorized,
    ValidationFailure,
)
from ..monitoring.metrics import signaling_connections
from ..signaling.router import SignalingRouter
from .connections import ClientRole, Connection, ConnectionRegistry
from .mute import MuteController
from .outbox import Outbox
from .rooms import RoomDirectory
from .supervisor import AsyncioScheduler, ReconnectSupervisor, ScheduledCall, Scheduler

logger = logging.getLogger(__name__)

DEFAULT_GRACE_SECONDS = 20.0
DEFAULT_KICK_CLOSE_DELAY_SECONDS = 0.25
DEFAULT_KICK_REASON = "You have been removed from the room by the broadcaster"


class SignalingHub:
    """Room registry, identity bindings and signaling operations for one process."""

    def __init__(
        self,
        *,
        ice_servers: Sequence[Mapping[str, Any]] = (),
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        kick_close_delay_seconds: float = DEFAULT_KICK_CLOSE_DELAY_SECONDS,
        kick_reason: str = DEFAULT_KICK_REASON,
        room_name_max_length: int = 128,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.ice_servers = [dict(server) for server in ice_servers]
        self.kick_close_delay_seconds = float(kick_close_delay_seconds)
        self.kick_reason = kick_reason
        self.scheduler = scheduler or AsyncioScheduler()
        self.connections = ConnectionRegistry()
        self.supervisor = ReconnectSupervisor(
            self.scheduler, grace_seconds=grace_seconds, on_expire=self._expire_room
        )
        self.rooms = RoomDirectory(
            self.connections, self.supervisor, name_max_length=room_name_max_length
        )
        self.mute = MuteController(self.rooms)
        self.router = SignalingRouter(self.connections)
        self._lock = asyncio.Lock()

    @contextlib.asynccontextmanager
    async def _transaction(self) -> AsyncIterator[Outbox]:
        outbox = Outbox(self.connections)
        async with self._lock:
            yield outbox
        await outbox.deliver()

    @staticmethod
    def _identity(connection: Connection, action: str) -> str:
        if connection.identity is None:
            raise ValidationFailure(f"Connection {connection.id} must register before {action}")
        return connection.identity

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------
    async def connect(self, websocket: Any) -> Connection:
        async with self._lock:
            connection = self.connections.register(websocket)
        signaling_connections.labels().inc()
        return connection

    async def disconnect(self, connection: Connection) -> None:
        async with self._transaction() as outbox:
            if self.connections.remove(connection.id) is None:
                return
            signaling_connections.labels().dec()
            identity = connection.identity
            if identity is None:
                return
            if not self.connections.identities.release(identity, connection.id):
                logger.info(
                    "Stale connection %s of %s closed; newer binding kept", connection.id, identity
                )
                return
            self.rooms.forget_departed(identity)
            room = self.rooms.room_of(identity)
            if room is None:
                return
            if room.owner == identity:
                logger.info("Broadcaster %s of room %s disconnected", identity, room.id)
                self.rooms.broadcaster_disconnected(room, outbox)
            else:
                self.rooms.leave_room(identity, outbox, keep_mute=False)

    async def register(self, connection: Connection, identity: str | None, username: str | None) -> None:
        async with self._transaction() as outbox:
            self.connections.bind(connection.id, identity, username)
            outbox.send(
                connection,
                "registered",
                {"identity": connection.identity, "iceServers": self.ice_servers},
            )

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------
    async def create_room(self, connection: Connection, name: str | None, password: str | None = None) -> str:
        async with self._transaction() as outbox:
            identity = self._identity(connection, "create-room")
            room = self.rooms.create_room(identity, name, password, outbox)
            connection.role = ClientRole.BROADCASTER
            outbox.send(connection, "room-created", {"roomId": room.id, "roomName": room.name})
            return room.id

    async def rejoin_room(
        self,
        connection: Connection,
        room_id: str | None,
        name: str | None = None,
        password: str | None = None,
        *,
        update_password: bool = False,
    ) -> bool:
        async with self._transaction() as outbox:
            identity = self._identity(connection, "rejoin-room")
            try:
                room = self.rooms.rejoin_room(
                    identity, room_id, name, password, outbox, update_password=update_password
                )
            except RejoinRejected as exc:
                logger.warning("Rejoin of %s by %s rejected: %s", room_id, identity, exc.message)
                outbox.send(connection, "rejoin-room-failed", {"message": exc.message})
                return False
            self.connections.rebind(connection)
            connection.role = ClientRole.BROADCASTER
            outbox.send(connection, "room-rejoined", {"roomId": room.id, "roomName": room.name})
            return True

    async def list_rooms(self, connection: Connection) -> None:
        async with self._transaction() as outbox:
            outbox.send(connection, "room-list", self.rooms.list_rooms())

    async def snapshot(self) -> list[dict[str, Any]]:
        async with self._lock:
            return self.rooms.list_rooms()

    async def join_room(self, connection: Connection, room_id: str | None, password: str | None = None) -> bool:
        async with self._transaction() as outbox:
            try:
                if connection.identity is None:
                    raise InvalidState("Register before joining a room")
                room, is_muted = self.rooms.join_room(
                    connection.identity, room_id, password, outbox, username=connection.username
                )
            except (RoomNotFound, PasswordIncorrect, InvalidState) as exc:
                logger.warning("Join of %s by %s failed: %s", room_id, connection.identity, exc.code)
                outbox.send(connection, "error", {"message": exc.message, "code": exc.code})
                return False
            connection.role = ClientRole.VIEWER
            outbox.send(
                connection,
                "joined-room",
                {
                    "roomId": room.id,
                    "roomName": room.name,
                    "isAnchorMuted": room.anchor_muted,
                    "isMuted": is_muted,
                },
            )
            return True

    async def leave_room(self, connection: Connection) -> None:
        async with self._transaction() as outbox:
            identity = self._identity(connection, "leave-room")
            room = self.rooms.room_of(identity)
            if room is None:
                logger.debug("%s sent leave-room outside of any room", identity)
                return
            if room.owner == identity:
                logger.info("Broadcaster %s closed room %s", identity, room.id)
                self.rooms.close_room(room, outbox, event="closed")
            else:
                self.rooms.leave_room(identity, outbox, keep_mute=True)
            connection.role = ClientRole.NONE

    async def _expire_room(self, room_id: str, timer: ScheduledCall) -> None:
        async with self._transaction() as outbox:
            self.rooms.expire(room_id, timer, outbox)

    # ------------------------------------------------------------------
    # Mute, relay, kick
    # ------------------------------------------------------------------
    async def set_viewer_muted(self, connection: Connection, target: str | None, muted: bool) -> None:
        async with self._transaction() as outbox:
            actor = self._identity(connection, "mute-viewer")
            self.mute.set_viewer_muted(actor, target, muted, outbox)

    async def set_anchor_mute(
        self, connection: Connection, is_muted: bool, anchor_id: str | None = None
    ) -> None:
        async with self._transaction() as outbox:
            anchor = self._identity(connection, "anchor mute")
            if anchor_id and anchor_id != anchor:
                raise Unauthorized(f"{anchor} cannot change the mute state of {anchor_id}")
            self.mute.set_anchor_mute(anchor, is_muted, outbox)

    async def relay(self, connection: Connection, kind: str, payload: Mapping[str, Any]) -> None:
        async with self._transaction() as outbox:
            sender = self._identity(connection, kind)
            self.router.relay(sender, kind, payload, outbox)

    async def kick_user(self, connection: Connection, target: str | None) -> None:
        async with self._transaction() as outbox:
            actor = self._identity(connection, "kick-user")
            room = self.rooms.room_of(target)
            if room is None or target not in room.viewers:
                raise NotFound(f"{target} is not a viewer of any room")
            if room.owner != actor:
                raise Unauthorized(f"{actor} attempted to kick {target} without owning the room")
            victim = self.connections.resolve(target)
            if victim is None:
                raise NotFound(f"{target} has no live connection")
            outbox.send(victim, "kicked", {"reason": self.kick_reason})
            logger.info("Kicking %s from room %s at the request of %s", target, room.id, actor)

        async def close_victim() -> None:
            websocket = victim.websocket
            with contextlib.suppress(RuntimeError):
                await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Kicked")

        self.scheduler.call_later(
            self.kick_close_delay_seconds, close_victim, name=f"kick-{victim.id}"
        )

    async def shutdown(self) -> None:
        if isinstance(self.scheduler, AsyncioScheduler):
            await self.scheduler.shutdown()


__all__ = [
    "DEFAULT_GRACE_SECONDS",
    "DEFAULT_KICK_CLOSE_DELAY_SECONDS",
    "DEFAULT_KICK_REASON",
    "SignalingHub",
]
